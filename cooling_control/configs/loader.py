"""Configuration loader for the cooling post-processor.

Loads and validates ``cooling.yaml`` into typed, frozen dataclasses.
Every threshold used by the cooling buffer (fan speeds, layer-time
limits, minimum print speed) comes from the config -- nothing is
hardcoded in the buffer itself.

Speeds are stored in **mm/s** and fan speeds in **percent** throughout
Python.  Conversion to the G-code ``F`` parameter (mm/min) and to the
``M106 S`` PWM value (0-255) happens only at the G-code boundary.

Usage::

    from cooling_control.configs.loader import load_config
    cfg = load_config()                       # default path
    cfg = load_config("/custom/cooling.yaml") # explicit path
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from src.utils.fs import load_yaml

logger = logging.getLogger(__name__)

GCODE_FLAVORS = (
    "reprap",
    "repetier",
    "teacup",
    "makerware",
    "sailfish",
    "mach3",
    "machinekit",
    "smoothie",
    "no-extrusion",
)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(Exception):
    """Raised when configuration validation fails."""

    pass


# ---------------------------------------------------------------------------
# Dataclasses -- mirror the YAML structure
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CoolingConfig:
    """Fan and slowdown thresholds, read-only during a flush.

    Parameters
    ----------
    cooling : bool
        Master switch for layer-time driven fan control and slowdown.
    fan_always_on : bool
        Keep the fan at ``min_fan_speed`` even on long layers.
    min_fan_speed, max_fan_speed : int
        Fan speed range in percent.
    bridge_fan_speed : int
        Fixed fan speed (percent) inside bridge regions; 0 disables.
    fan_below_layer_time : float
        Layers shorter than this (seconds) get a proportional fan.
    slowdown_below_layer_time : float
        Layers shorter than this (seconds) run the fan at full speed and
        are slowed down to last this long.
    min_print_speed : float
        Floor for slowed-down feed rates in mm/s.
    disable_fan_first_layers : int
        Number of initial layers printed with the fan off.
    """

    cooling: bool
    fan_always_on: bool
    min_fan_speed: int
    max_fan_speed: int
    bridge_fan_speed: int
    fan_below_layer_time: float
    slowdown_below_layer_time: float
    min_print_speed: float
    disable_fan_first_layers: int

    @property
    def min_print_feed(self) -> float:
        """``min_print_speed`` in the G-code ``F`` unit (mm/min)."""
        return self.min_print_speed * 60.0


@dataclass(frozen=True)
class GCodeConfig:
    """Output dialect settings for generated commands."""

    flavor: str
    comments: bool


@dataclass(frozen=True)
class PrintConfig:
    """Complete post-processor configuration loaded from ``cooling.yaml``."""

    cooling: CoolingConfig
    gcode: GCodeConfig


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

_COOLING_DEFAULTS: dict[str, Any] = {
    "cooling": True,
    "fan_always_on": False,
    "min_fan_speed": 35,
    "max_fan_speed": 100,
    "bridge_fan_speed": 100,
    "fan_below_layer_time": 60.0,
    "slowdown_below_layer_time": 30.0,
    "min_print_speed": 10.0,
    "disable_fan_first_layers": 3,
}

_GCODE_DEFAULTS: dict[str, Any] = {
    "flavor": "reprap",
    "comments": False,
}


# ---------------------------------------------------------------------------
# Internal parsing helpers
# ---------------------------------------------------------------------------


def _parse_bool(name: str, value: Any) -> bool:
    """Accept real booleans only; ``"false"`` must not become ``True``."""
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    raise ConfigError(f"{name} must be a boolean, got {value!r}")


def _parse_cooling(data: dict[str, Any]) -> CoolingConfig:
    """Parse the ``cooling`` section, filling documented defaults."""
    unknown = set(data) - set(_COOLING_DEFAULTS)
    if unknown:
        logger.warning("Ignoring unknown cooling keys: %s", sorted(unknown))
    merged = {**_COOLING_DEFAULTS, **data}
    return CoolingConfig(
        cooling=_parse_bool("cooling.cooling", merged["cooling"]),
        fan_always_on=_parse_bool(
            "cooling.fan_always_on", merged["fan_always_on"]
        ),
        min_fan_speed=int(merged["min_fan_speed"]),
        max_fan_speed=int(merged["max_fan_speed"]),
        bridge_fan_speed=int(merged["bridge_fan_speed"]),
        fan_below_layer_time=float(merged["fan_below_layer_time"]),
        slowdown_below_layer_time=float(merged["slowdown_below_layer_time"]),
        min_print_speed=float(merged["min_print_speed"]),
        disable_fan_first_layers=int(merged["disable_fan_first_layers"]),
    )


def _parse_gcode(data: dict[str, Any]) -> GCodeConfig:
    """Parse the ``gcode`` section."""
    merged = {**_GCODE_DEFAULTS, **data}
    return GCodeConfig(
        flavor=str(merged["flavor"]).lower(),
        comments=_parse_bool("gcode.comments", merged["comments"]),
    )


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def _validate_config(cfg: PrintConfig) -> None:
    """Validate ranges and cross-field consistency.

    Raises
    ------
    ConfigError
        On any invalid combination.
    """
    c = cfg.cooling

    # -- Fan speeds are percentages -----------------------------------------
    for label, value in (
        ("min_fan_speed", c.min_fan_speed),
        ("max_fan_speed", c.max_fan_speed),
        ("bridge_fan_speed", c.bridge_fan_speed),
    ):
        if not 0 <= value <= 100:
            raise ConfigError(f"{label} must be in [0, 100], got {value}")
    if c.min_fan_speed > c.max_fan_speed:
        raise ConfigError(
            f"min_fan_speed ({c.min_fan_speed}) exceeds "
            f"max_fan_speed ({c.max_fan_speed})"
        )

    # -- Layer-time thresholds ----------------------------------------------
    if c.slowdown_below_layer_time < 0:
        raise ConfigError(
            f"slowdown_below_layer_time must be >= 0, "
            f"got {c.slowdown_below_layer_time}"
        )
    if c.fan_below_layer_time < 0:
        raise ConfigError(
            f"fan_below_layer_time must be >= 0, got {c.fan_below_layer_time}"
        )
    if c.fan_below_layer_time < c.slowdown_below_layer_time:
        logger.warning(
            "fan_below_layer_time (%.1f s) is below "
            "slowdown_below_layer_time (%.1f s); the proportional fan "
            "band is empty",
            c.fan_below_layer_time,
            c.slowdown_below_layer_time,
        )

    # -- Slowdown floor: a zero feed would stall the print ------------------
    if c.min_print_speed <= 0:
        raise ConfigError(
            f"min_print_speed must be > 0, got {c.min_print_speed}"
        )

    if c.disable_fan_first_layers < 0:
        raise ConfigError(
            f"disable_fan_first_layers must be >= 0, "
            f"got {c.disable_fan_first_layers}"
        )

    # -- Output flavor ------------------------------------------------------
    if cfg.gcode.flavor not in GCODE_FLAVORS:
        raise ConfigError(
            f"Unknown G-code flavor '{cfg.gcode.flavor}'. "
            f"Available: {list(GCODE_FLAVORS)}"
        )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def config_from_dict(data: dict[str, Any]) -> PrintConfig:
    """Build and validate a ``PrintConfig`` from an in-memory mapping.

    Parameters
    ----------
    data : dict
        Mapping with optional ``cooling`` and ``gcode`` sections, the
        same shape as ``cooling.yaml``.

    Raises
    ------
    ConfigError
        If any field has the wrong type or fails validation.
    """
    if not isinstance(data, dict):
        raise ConfigError(
            f"Configuration must be a mapping, got {type(data).__name__}"
        )
    try:
        config = PrintConfig(
            cooling=_parse_cooling(data.get("cooling") or {}),
            gcode=_parse_gcode(data.get("gcode") or {}),
        )
    except KeyError as exc:
        raise ConfigError(
            f"Missing required configuration key: {exc}"
        ) from exc
    except (TypeError, ValueError) as exc:
        raise ConfigError(
            f"Invalid configuration value: {exc}"
        ) from exc

    _validate_config(config)
    return config


def load_config(path: str | Path | None = None) -> PrintConfig:
    """Load and validate the post-processor configuration from YAML.

    Parameters
    ----------
    path : str | Path | None
        Path to ``cooling.yaml``.  ``None`` loads the default shipped
        alongside this module.

    Returns
    -------
    PrintConfig
        Fully validated, frozen configuration object.

    Raises
    ------
    ConfigError
        If any field is invalid or the file is empty.
    FileNotFoundError
        If *path* does not exist.
    """
    if path is None:
        path = Path(__file__).parent / "cooling.yaml"
    else:
        path = Path(path)

    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    logger.info("Loading configuration from %s", path)

    try:
        data: dict[str, Any] = load_yaml(path)
    except yaml.YAMLError as exc:
        raise ConfigError(str(exc)) from exc
    if data is None:
        raise ConfigError(f"Empty configuration file: {path}")

    config = config_from_dict(data)
    logger.info("Configuration loaded successfully")
    return config
