"""Offline G-code virtual machine for print-time estimation.

Provides:
    - Time estimation: feeds and distances at constant velocity, plus dwells
    - Modal state: position, feed, G90/G91, M82/M83, G20/G21, G92

The cooling buffer asks this VM how long each appended chunk of a layer
takes to print. The VM is fed the same text that is appended, and the
buffer reads the accumulated time with :meth:`GCodeVM.get_reset_elapsed_time`,
which zeroes it so that the next chunk starts from nothing.

Acceleration and jerk are not modelled: every move runs at its commanded
feed for its whole length. Layer times are therefore underestimated for
short zig-zag moves, which errs on the side of more cooling.

Usage:
    from src.utils import gcode_vm, validators

    profile = validators.load_machine_profile("machine.yaml")
    vm = gcode_vm.GCodeVM(profile)
    vm.execute(layer_gcode)
    seconds = vm.get_reset_elapsed_time()
"""

from typing import Dict, Tuple
import logging
import math
import re

from . import validators

logger = logging.getLogger(__name__)

_WORD_RE = re.compile(r'([A-Z])\s*([-+]?(?:\d+(?:\.\d*)?|\.\d+))', re.IGNORECASE)
_MOTION_RE = re.compile(r'^G0*([01])(?!\d)', re.IGNORECASE)
_COMMAND_RE = re.compile(r'^([GM])0*(\d+)(?!\d)', re.IGNORECASE)

INCH_MM = 25.4


# ============================================================================
# G-CODE VM
# ============================================================================

class GCodeVM:
    """Offline G-code virtual machine for print-time estimation.

    Parameters
    ----------
    profile : validators.MachineProfileV1
        Machine profile (rapid speed, default feed, initial units)

    Attributes
    ----------
    pos : Tuple[float, float, float]
        Current position (X, Y, Z) in mm
    e : float
        Current extruder position in mm (absolute extruder frame)
    feed : float
        Current modal feed rate (mm/min)
    elapsed_time : float
        Estimated seconds since the last reset of the timer
    move_count : int
        Number of motion commands executed since the last full reset
    """

    def __init__(self, profile: validators.MachineProfileV1):
        self.profile = profile
        self.reset()

    def reset(self) -> None:
        """Reset machine state and timer to the initial configuration."""
        self.pos: Tuple[float, float, float] = (0.0, 0.0, 0.0)
        self.e: float = 0.0
        self.feed: float = self.profile.feeds.default_feed_mm_s * 60.0
        self.absolute_mode: bool = True
        self.absolute_extrusion: bool = True
        self.units_scale: float = INCH_MM if self.profile.units == "inch" else 1.0
        self.elapsed_time: float = 0.0
        self.move_count: int = 0

    def get_reset_elapsed_time(self) -> float:
        """Return the seconds accumulated since the last call and zero the timer.

        Only the timer is reset; position and modal state carry over so the
        next chunk continues from where this one ended.
        """
        elapsed = self.elapsed_time
        self.elapsed_time = 0.0
        return elapsed

    @staticmethod
    def parse_words(line: str) -> Dict[str, float]:
        """Parse letter words (X, Y, Z, E, F, P, S, ...) from a G-code line.

        Parameters
        ----------
        line : str
            G-code line without comment

        Returns
        -------
        Dict[str, float]
            Upper-case letter -> value. The command word itself is included
            (``G1 X5`` gives ``{'G': 1.0, 'X': 5.0}``); first occurrence wins.

        Notes
        -----
        Accepts numbers like X.5 (leading decimal point).
        """
        words: Dict[str, float] = {}
        for match in _WORD_RE.finditer(line):
            letter = match.group(1).upper()
            if letter not in words:
                words[letter] = float(match.group(2))
        return words

    def execute(self, gcode: str) -> float:
        """Execute every line of a G-code chunk.

        Returns
        -------
        float
            Seconds added to the timer by this chunk
        """
        before = self.elapsed_time
        for line in gcode.splitlines():
            self.execute_line(line)
        return self.elapsed_time - before

    def execute_line(self, line: str) -> None:
        """Execute a single G-code line, updating state and the timer."""
        if ';' in line:
            line = line.split(';', 1)[0]
        line = line.strip()
        if not line:
            return

        motion = _MOTION_RE.match(line)
        if motion:
            self._execute_move(line, rapid=motion.group(1) == '0')
            return

        command = _COMMAND_RE.match(line)
        if not command:
            return
        code = f"{command.group(1).upper()}{int(command.group(2))}"

        if code == 'G4':
            self._execute_dwell(line)
        elif code == 'G20':
            self.units_scale = INCH_MM
        elif code == 'G21':
            self.units_scale = 1.0
        elif code == 'G90':
            self.absolute_mode = True
        elif code == 'G91':
            self.absolute_mode = False
        elif code == 'G92':
            self._execute_set_position(line)
        elif code == 'M82':
            self.absolute_extrusion = True
        elif code == 'M83':
            self.absolute_extrusion = False

    # ------------------------------------------------------------------
    # Individual commands
    # ------------------------------------------------------------------

    def _execute_move(self, line: str, rapid: bool) -> None:
        words = self.parse_words(line)

        # Modal feed; F is a speed, so only the distance unit scales it
        if 'F' in words and words['F'] > 0:
            self.feed = words['F'] * self.units_scale

        target = []
        for axis, current in zip('XYZ', self.pos):
            value = words.get(axis)
            if value is None:
                target.append(current)
            elif self.absolute_mode:
                target.append(value * self.units_scale)
            else:
                target.append(current + value * self.units_scale)
        new_pos = (target[0], target[1], target[2])

        new_e = self.e
        if 'E' in words:
            de = words['E'] * self.units_scale
            new_e = de if self.absolute_extrusion else self.e + de

        dist = math.dist(self.pos, new_pos)
        if dist < 1e-9:
            # Retract / unretract / prime: the extruder alone sets the time
            dist = abs(new_e - self.e)

        feed_mm_min = self.profile.feeds.rapid_mm_s * 60.0 if rapid else self.feed
        self.elapsed_time += self.estimate_move_time(dist, feed_mm_min)

        self.pos = new_pos
        self.e = new_e
        self.move_count += 1

    def _execute_dwell(self, line: str) -> None:
        words = self.parse_words(line)
        if 'P' in words:
            self.elapsed_time += max(words['P'], 0.0) / 1000.0
        elif 'S' in words:
            self.elapsed_time += max(words['S'], 0.0)

    def _execute_set_position(self, line: str) -> None:
        words = self.parse_words(line)
        if len(words) == 1:
            # Bare G92 zeroes every axis
            self.pos = (0.0, 0.0, 0.0)
            self.e = 0.0
            return
        x, y, z = self.pos
        if 'X' in words:
            x = words['X'] * self.units_scale
        if 'Y' in words:
            y = words['Y'] * self.units_scale
        if 'Z' in words:
            z = words['Z'] * self.units_scale
        self.pos = (x, y, z)
        if 'E' in words:
            self.e = words['E'] * self.units_scale
        logger.debug("G92: position set to %s e=%.3f", self.pos, self.e)

    @staticmethod
    def estimate_move_time(dist_mm: float, feed_mm_min: float) -> float:
        """Constant-velocity move time in seconds.

        Parameters
        ----------
        dist_mm : float
            Move length in mm
        feed_mm_min : float
            Feed rate (mm/min)
        """
        if dist_mm < 1e-9 or feed_mm_min <= 0:
            return 0.0
        return dist_mm / (feed_mm_min / 60.0)


# ============================================================================
# CONVENIENCE FUNCTIONS
# ============================================================================

def estimate_gcode_time(gcode: str, profile: validators.MachineProfileV1) -> float:
    """Estimate the print time of a standalone G-code chunk in seconds."""
    return GCodeVM(profile).execute(gcode)
