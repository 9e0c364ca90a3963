"""Fan command writer -- fan speed percent to flavor-specific G-code.

The cooling buffer never formats fan commands itself; it asks this writer.

PWM convention:
    Python stores fan speeds in **percent** (0-100).  This module
    converts to the ``M106`` PWM parameter (0-255) at the generation
    boundary::

        S_value = 255 * speed / 100

Redundant commands:
    A regular (non-bridging) call remembers the speed it set.  Asking
    for the same speed again yields an empty string so consecutive layers
    with the same fan speed do not repeat the command.  Bridge commands
    are temporary overrides: they are always emitted and never change
    the remembered speed.
"""

from __future__ import annotations

import logging

from cooling_control.configs.loader import GCODE_FLAVORS, GCodeConfig

logger = logging.getLogger(__name__)


class GCodeError(Exception):
    """Raised when a command cannot be generated for the configured flavor."""

    pass


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def format_number(value: float) -> str:
    """Format a G-code word value: 3 decimals, trailing zeros dropped."""
    text = f"{value:.3f}".rstrip("0").rstrip(".")
    return "0" if text in ("", "-0") else text


# ---------------------------------------------------------------------------
# Writer
# ---------------------------------------------------------------------------


class GCodeWriter:
    """Produce fan-speed commands for one output stream.

    Parameters
    ----------
    config : GCodeConfig
        Output flavor and comment settings.

    Raises
    ------
    GCodeError
        If the flavor is not supported.
    """

    def __init__(self, config: GCodeConfig) -> None:
        if config.flavor not in GCODE_FLAVORS:
            raise GCodeError(
                f"Unsupported G-code flavor '{config.flavor}'. "
                f"Available: {list(GCODE_FLAVORS)}"
            )
        self._cfg = config
        self._last_fan_speed: int | None = None

    @property
    def last_fan_speed(self) -> int | None:
        """Speed set by the last regular call; ``None`` until one is made."""
        return self._last_fan_speed

    def reset(self) -> None:
        """Forget the remembered speed so the next call always emits."""
        self._last_fan_speed = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def set_fan(self, speed: int, bridging: bool = False) -> str:
        """Return the command setting the part-cooling fan to *speed* percent.

        Parameters
        ----------
        speed : int
            Fan speed in percent; clamped to [0, 100].
        bridging : bool
            Temporary bridge override: always emitted, not remembered.

        Returns
        -------
        str
            One newline-terminated command, or ``""`` when a regular call
            repeats the remembered speed.
        """
        speed = max(0, min(100, int(speed)))
        if not bridging:
            if speed == self._last_fan_speed:
                return ""
            self._last_fan_speed = speed

        flavor = self._cfg.flavor
        if speed == 0:
            if flavor == "teacup":
                cmd = "M106 S0"
            elif flavor in ("makerware", "sailfish"):
                cmd = "M127"
            else:
                cmd = "M107"
            comment = "disable fan"
        else:
            if flavor in ("makerware", "sailfish"):
                cmd = "M126"
            else:
                word = "P" if flavor in ("mach3", "machinekit") else "S"
                cmd = f"M106 {word}{format_number(255.0 * speed / 100.0)}"
            comment = "enable fan"

        if self._cfg.comments:
            cmd += f" ; {comment}"
        logger.debug("Fan %d%%%s: %s", speed, " (bridge)" if bridging else "", cmd)
        return cmd + "\n"
