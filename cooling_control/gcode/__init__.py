"""
G-code command generation.

Formats the fan commands the cooling buffer inserts into the stream.
"""

from cooling_control.gcode.writer import GCodeError, GCodeWriter, format_number

__all__ = ["GCodeError", "GCodeWriter", "format_number"]
