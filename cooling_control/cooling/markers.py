"""Marker protocol -- the comment tags the toolpath generator embeds.

Upstream stages annotate G-code lines with comment markers that only the
cooling buffer understands.  They are a fixed contract: the spelling
below is what the generator writes, and there is no version field, so a
changed string silently breaks the pipeline.

| Marker                 | Meaning                                          |
|------------------------|--------------------------------------------------|
| ``;_EXTRUDE_SET_SPEED`` | the line's feed rate may be scaled              |
| ``;_WIPE``              | non-printing wipe move, never scaled            |
| ``;_BRIDGE_FAN_START``  | bridge region begins: fixed fan, no scaling     |
| ``;_BRIDGE_FAN_END``    | bridge region ends                              |

Instead of scattering substring checks through the buffer, each line is
classified once into a :class:`LineKind`, and :func:`iter_tagged_lines`
runs the bridge-region state machine over a sequence of lines.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Iterable, Iterator

EXTRUDE_SET_SPEED = ";_EXTRUDE_SET_SPEED"
WIPE = ";_WIPE"
BRIDGE_FAN_START = ";_BRIDGE_FAN_START"
BRIDGE_FAN_END = ";_BRIDGE_FAN_END"

ALL_MARKERS = (EXTRUDE_SET_SPEED, WIPE, BRIDGE_FAN_START, BRIDGE_FAN_END)

# G1 / G01, but not G10 / G11 (firmware retract)
_MOTION_RE = re.compile(r"^\s*G0*1(?!\d)", re.IGNORECASE)

_BRIDGE_RE = re.compile(
    "|".join(re.escape(m) for m in (BRIDGE_FAN_START, BRIDGE_FAN_END))
)


def _marker_run_re(markers: Iterable[str]) -> re.Pattern:
    """Consecutive markers together with the blanks around them."""
    alternatives = "|".join(re.escape(m) for m in markers)
    return re.compile(rf"[ \t]*(?:(?:{alternatives})[ \t]*)+")


_ALL_MARKERS_RE = _marker_run_re(ALL_MARKERS)


class LineKind(Enum):
    """What the cooling buffer may do with a line."""

    PLAIN = "plain"
    SPEED_ELIGIBLE = "speed_eligible"
    WIPE = "wipe"
    BRIDGE_START = "bridge_start"
    BRIDGE_END = "bridge_end"


def is_motion(line: str) -> bool:
    """True for a ``G1`` linear move."""
    return _MOTION_RE.match(line) is not None


def bridge_transitions(line: str) -> list[str]:
    """Bridge markers on *line*, in the order they appear (repeats kept)."""
    return _BRIDGE_RE.findall(line)


def classify_line(line: str) -> LineKind:
    """Classify one line by the markers it carries.

    Bridge markers take precedence over everything else; with several on
    one line the last one decides, since it leaves the region state the
    following lines see.  Then wipe (a wipe move is never scaled even
    when it also carries ``;_EXTRUDE_SET_SPEED``).  Only a ``G1`` move
    can be speed eligible.
    """
    transitions = bridge_transitions(line)
    if transitions:
        if transitions[-1] == BRIDGE_FAN_START:
            return LineKind.BRIDGE_START
        return LineKind.BRIDGE_END
    if WIPE in line:
        return LineKind.WIPE
    if EXTRUDE_SET_SPEED in line and is_motion(line):
        return LineKind.SPEED_ELIGIBLE
    return LineKind.PLAIN


def iter_tagged_lines(
    lines: Iterable[str],
) -> Iterator[tuple[str, LineKind, bool]]:
    """Yield ``(line, kind, in_bridge)`` in input order.

    ``in_bridge`` is the bridge-region flag after the line's own
    transitions: a start marker sets it, an end marker clears it, and
    the last bridge marker on the line wins.  An end marker without a
    preceding start leaves it cleared.
    """
    in_bridge = False
    for line in lines:
        kind = classify_line(line)
        if kind is LineKind.BRIDGE_START:
            in_bridge = True
        elif kind is LineKind.BRIDGE_END:
            in_bridge = False
        yield line, kind, in_bridge


def strip_markers(line: str, markers: Iterable[str] = ALL_MARKERS) -> str:
    """Erase marker text from a line body (no line terminator).

    A run of markers and the blanks around it collapses to one space
    between text, or to nothing at either end of the line.  A line
    without markers is returned unchanged.
    """
    if markers is ALL_MARKERS:
        pattern = _ALL_MARKERS_RE
    else:
        markers = tuple(markers)
        if not markers:
            return line
        pattern = _marker_run_re(markers)

    def _collapse(match: re.Match) -> str:
        if match.start() == 0 or match.end() == len(line):
            return ""
        run = match.group()
        return " " if run[0] in " \t" or run[-1] in " \t" else ""

    return pattern.sub(_collapse, line)


def has_markers(text: str) -> bool:
    """True if any protocol marker appears in *text*."""
    return any(marker in text for marker in ALL_MARKERS)
