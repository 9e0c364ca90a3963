"""Fan speed and slowdown from the estimated layer time.

Three bands, from fastest layer to slowest::

    elapsed <  slowdown_below_layer_time   full fan, slow the layer down
    elapsed <  fan_below_layer_time        fan interpolated max -> min
    otherwise                              fan off (or min if always on)

The slowdown factor stretches a too-short layer to last
``slowdown_below_layer_time`` seconds: ``factor = elapsed / slowdown``.
"""

from __future__ import annotations

from dataclasses import dataclass

from cooling_control.configs.loader import CoolingConfig


@dataclass(frozen=True, slots=True)
class CoolingDecision:
    """Fan speed (percent) and feed multiplier for one layer."""

    fan_speed: int
    speed_factor: float = 1.0

    @property
    def slows_down(self) -> bool:
        return self.speed_factor < 1.0


def compute_cooling(elapsed: float, config: CoolingConfig) -> CoolingDecision:
    """Apply the layer-time control law.

    Parameters
    ----------
    elapsed : float
        Estimated layer print time in seconds.
    config : CoolingConfig
        Thresholds.

    Returns
    -------
    CoolingDecision
        The first-layers override is not applied here; it depends on the
        layer index, see :func:`fan_disabled_for_layer`.
    """
    fan_speed = config.min_fan_speed if config.fan_always_on else 0
    speed_factor = 1.0

    if config.cooling:
        slowdown = config.slowdown_below_layer_time
        fan_below = config.fan_below_layer_time
        if elapsed < slowdown:
            fan_speed = config.max_fan_speed
            speed_factor = elapsed / slowdown
        elif elapsed < fan_below:
            fan_speed = int(
                config.max_fan_speed
                - (config.max_fan_speed - config.min_fan_speed)
                * (elapsed - slowdown)
                / (fan_below - slowdown)
            )

    return CoolingDecision(fan_speed=fan_speed, speed_factor=speed_factor)


def fan_disabled_for_layer(layer_id: int, config: CoolingConfig) -> bool:
    """True for the first ``disable_fan_first_layers`` layers."""
    return layer_id < config.disable_fan_first_layers
