"""Feed-rate rewriting for slowed-down layers.

A slowed layer keeps every move, only its ``F`` word changes.  The
rewrite is textual and surgical: the digits of the feed value are
replaced and every other character of the line, comment and line
terminator included, is left exactly as it was.

Units:
    ``F`` values and the floor are both in mm/min, the unit of the
    G-code word.  Callers convert ``min_print_speed`` (mm/s) with
    ``CoolingConfig.min_print_feed``.
"""

from __future__ import annotations

import logging
import re

from cooling_control.gcode.writer import format_number

logger = logging.getLogger(__name__)

# Whitespace-delimited F token; the value ends at whitespace or the end
# of the command part
_FEED_RE = re.compile(
    r"(?<!\S)[Ff]([-+]?(?:\d+(?:\.\d*)?|\.\d+))(?=\s|$)"
)


def _command_end(line: str) -> int:
    """Index where the command part of *line* ends (comment or terminator)."""
    comment = line.find(";")
    if comment >= 0:
        return comment
    return len(line.rstrip("\r\n"))


def find_feed_field(line: str) -> tuple[int, int, float] | None:
    """Locate the numeric text of the feed-rate word.

    Parameters
    ----------
    line : str
        G-code line, with or without terminator.

    Returns
    -------
    tuple[int, int, float] | None
        ``(start, end, value)`` where ``line[start:end]`` is the number
        after the ``F``; ``None`` if the command part has no feed word.
    """
    match = _FEED_RE.search(line, 0, _command_end(line))
    if match is None:
        return None
    return match.start(1), match.end(1), float(match.group(1))


def apply_speed_factor(line: str, factor: float, floor: float) -> str:
    """Scale the feed rate of *line* by *factor*, never below *floor*.

    Parameters
    ----------
    line : str
        G-code line carrying an ``F`` word.
    factor : float
        Multiplier, at most 1.0 when called by the cooling buffer.
    floor : float
        Lower bound for the new feed, mm/min.

    Returns
    -------
    str
        The line with only the feed digits replaced.  A line without a
        feed word is returned unchanged.
    """
    field = find_feed_field(line)
    if field is None:
        logger.debug("No feed word to scale in %r", line.rstrip("\r\n"))
        return line
    start, end, value = field
    new_value = max(value * factor, floor)
    return line[:start] + format_number(new_value) + line[end:]
