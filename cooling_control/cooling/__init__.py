"""
Layer cooling: accumulate per-layer G-code, then set the fan and slow
down layers that would print too fast to cool.
"""

from cooling_control.cooling.buffer import CoolingBuffer, LayerWindow, finalize_window
from cooling_control.cooling.control import (
    CoolingDecision,
    compute_cooling,
    fan_disabled_for_layer,
)
from cooling_control.cooling.markers import (
    LineKind,
    bridge_transitions,
    classify_line,
    strip_markers,
)
from cooling_control.cooling.speed import apply_speed_factor, find_feed_field

__all__ = [
    "CoolingBuffer",
    "CoolingDecision",
    "LayerWindow",
    "LineKind",
    "apply_speed_factor",
    "bridge_transitions",
    "classify_line",
    "compute_cooling",
    "fan_disabled_for_layer",
    "finalize_window",
    "find_feed_field",
    "strip_markers",
]
