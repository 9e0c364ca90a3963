"""Layer cooling buffer -- accumulate a layer, then finalize its G-code.

One printed layer is generated in pieces: one contribution per object and
one per support structure, all at the same print height.  The buffer
collects those pieces into a :class:`LayerWindow` until a producer it has
already seen in the window contributes again.  A repeat can only mean the
print height has advanced, so the window is finalized and a new one
starts with the repeating contribution.

Finalizing a window:

1. Fan speed and slowdown factor from the estimated layer time
   (:func:`~cooling_control.cooling.control.compute_cooling`).
2. Slowdown: ``G1`` lines tagged ``;_EXTRUDE_SET_SPEED`` get their feed
   scaled, except wipe moves and lines inside a bridge region.
3. Fan off on the first ``disable_fan_first_layers`` layers.
4. Layer fan command prepended.
5. Each bridge marker becomes a fan command (start: bridge speed, end:
   layer speed), or is erased when bridge fan control does not apply.
6. Every remaining marker is erased.

Single-threaded: one buffer per print job, calls serialized by the owner.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Protocol

from cooling_control.configs.loader import CoolingConfig
from cooling_control.cooling.control import compute_cooling, fan_disabled_for_layer
from cooling_control.cooling.markers import (
    BRIDGE_FAN_START,
    EXTRUDE_SET_SPEED,
    LineKind,
    bridge_transitions,
    iter_tagged_lines,
    strip_markers,
)
from cooling_control.cooling.speed import apply_speed_factor

logger = logging.getLogger(__name__)

ProducerKey = tuple[int, bool]
"""``(object_id, is_support)`` -- identifies one contribution per layer."""


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------


class ElapsedTimeSource(Protocol):
    """Print-time estimator fed with the same G-code that is appended."""

    def get_reset_elapsed_time(self) -> float:
        """Seconds accumulated since the previous call; resets the timer."""
        ...


class FanCommandWriter(Protocol):
    """Formats fan-speed commands for the output flavor."""

    def set_fan(self, speed: int, bridging: bool = False) -> str:
        """Newline-terminated command for *speed* percent (may be empty)."""
        ...


# ---------------------------------------------------------------------------
# Window state
# ---------------------------------------------------------------------------


@dataclass
class LayerWindow:
    """Everything contributed to one not-yet-finalized layer.

    Attributes
    ----------
    layer_id : int
        Layer index of the latest contribution.
    visited : set[ProducerKey]
        Producers that already contributed to this window.
    chunks : list[str]
        Contributed G-code, in order.
    elapsed : float
        Estimated print time of ``chunks`` in seconds.
    """

    layer_id: int = 0
    visited: set[ProducerKey] = field(default_factory=set)
    chunks: list[str] = field(default_factory=list)
    elapsed: float = 0.0

    @property
    def gcode(self) -> str:
        return "".join(self.chunks)

    @property
    def is_empty(self) -> bool:
        return not self.visited

    def add(self, key: ProducerKey, gcode: str, layer_id: int, elapsed: float) -> None:
        self.visited.add(key)
        self.chunks.append(gcode)
        self.layer_id = layer_id
        self.elapsed += elapsed


# ---------------------------------------------------------------------------
# Finalization
# ---------------------------------------------------------------------------


def _split_eol(line: str) -> tuple[str, str]:
    body = line.rstrip("\r\n")
    return body, line[len(body):]


def _resolve_line(
    body: str, eol: str, bridge_on: str, bridge_off: str,
) -> list[str]:
    """Erase markers from one line and insert its bridge fan commands.

    Every bridge marker on the line yields one command, in marker order.
    """
    commands = [
        bridge_on if marker == BRIDGE_FAN_START else bridge_off
        for marker in bridge_transitions(body)
    ]
    commands = [c for c in commands if c]
    if eol:
        commands = [c.rstrip("\n") + eol for c in commands]

    cleaned = strip_markers(body)
    if cleaned != body and not cleaned.strip():
        # Line carried nothing but markers
        return commands

    if not commands:
        return [cleaned + eol]
    # Fan commands go on their own lines after the command they were attached to
    return [cleaned + (eol or "\n"), *commands]


def finalize_window(
    window: LayerWindow, config: CoolingConfig, writer: FanCommandWriter,
) -> str:
    """Turn a completed window into final, marker-free G-code.

    Parameters
    ----------
    window : LayerWindow
        Detached window; not modified.
    config : CoolingConfig
        Thresholds.
    writer : FanCommandWriter
        Fan command formatter.

    Returns
    -------
    str
        Layer fan command followed by the rewritten layer G-code.
    """
    decision = compute_cooling(window.elapsed, config)
    fan_speed = decision.fan_speed
    logger.debug(
        "Layer %d estimated printing time: %.2f s (fan %d%%, speed %.1f%%)",
        window.layer_id,
        window.elapsed,
        fan_speed,
        decision.speed_factor * 100.0,
    )

    first_layers = fan_disabled_for_layer(window.layer_id, config)
    if first_layers:
        fan_speed = 0

    out = [writer.set_fan(fan_speed)]

    bridge_on = bridge_off = ""
    if config.cooling and config.bridge_fan_speed != 0 and not first_layers:
        bridge_on = writer.set_fan(config.bridge_fan_speed, bridging=True)
        bridge_off = writer.set_fan(fan_speed, bridging=True)

    floor = config.min_print_feed
    rewritten = 0
    for line, kind, in_bridge in iter_tagged_lines(
        window.gcode.splitlines(keepends=True)
    ):
        body, eol = _split_eol(line)
        if kind is LineKind.SPEED_ELIGIBLE and decision.slows_down and not in_bridge:
            body = apply_speed_factor(body, decision.speed_factor, floor)
            body = strip_markers(body, (EXTRUDE_SET_SPEED,))
            rewritten += 1
        out.extend(_resolve_line(body, eol, bridge_on, bridge_off))

    if rewritten:
        logger.debug(
            "Layer %d: slowed %d move(s) by factor %.3f",
            window.layer_id, rewritten, decision.speed_factor,
        )
    return "".join(out)


# ---------------------------------------------------------------------------
# Buffer
# ---------------------------------------------------------------------------


class CoolingBuffer:
    """Accumulate per-layer G-code and finalize it with cooling applied.

    Parameters
    ----------
    config : CoolingConfig
        Fan and slowdown thresholds.
    writer : FanCommandWriter
        Formats fan commands (e.g. :class:`~cooling_control.gcode.writer.GCodeWriter`).
    estimator : ElapsedTimeSource
        Print-time estimator that has already been fed each chunk before
        it is appended (e.g. :class:`src.utils.gcode_vm.GCodeVM`).
    """

    def __init__(
        self,
        config: CoolingConfig,
        writer: FanCommandWriter,
        estimator: ElapsedTimeSource,
    ) -> None:
        self._cfg = config
        self._writer = writer
        self._estimator = estimator
        self._window = LayerWindow()
        self.layers_flushed = 0

    @property
    def window(self) -> LayerWindow:
        """The window currently accumulating (owned by the buffer)."""
        return self._window

    @property
    def elapsed_time(self) -> float:
        """Estimated print time of the current window in seconds."""
        return self._window.elapsed

    def append(
        self, gcode: str, object_id: int, layer_id: int, is_support: bool = False,
    ) -> str:
        """Add one producer's G-code for a layer.

        Parameters
        ----------
        gcode : str
            G-code contributed by this producer.
        object_id : int
            Producer (object) index.
        layer_id : int
            Layer index of this contribution.
        is_support : bool
            True for the object's support structure.

        Returns
        -------
        str
            Finalized G-code of the previous layer when this contribution
            starts a new one, otherwise ``""``.
        """
        key: ProducerKey = (object_id, bool(is_support))
        out = ""
        if key in self._window.visited:
            # Same producer twice: the print height has advanced
            out = self.flush()

        self._window.add(
            key, gcode, layer_id, self._estimator.get_reset_elapsed_time()
        )
        return out

    def flush(self) -> str:
        """Finalize the current window and start a new one.

        Returns
        -------
        str
            Final G-code for the window; ``""`` if nothing was appended
            since the previous flush.
        """
        window = self._window
        self._window = LayerWindow(layer_id=window.layer_id)
        if window.is_empty:
            return ""
        self.layers_flushed += 1
        return finalize_window(window, self._cfg, self._writer)
