"""
Cooling Control Package.

Layer-time driven fan control and slowdown for 3D-printer G-code. Sits
between the toolpath generator and the output file: buffers each layer,
estimates its print time, sets the part-cooling fan, slows down layers
that print too fast, and resolves the generator's comment markers.

Subpackages:
    cooling: Layer buffer, control law, marker protocol, feed rewriting
    gcode: Fan command formatting
    configs: Configuration loading and validation
"""

__version__ = "0.3.0"

__all__ = ["cooling", "gcode", "configs"]
