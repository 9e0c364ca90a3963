"""Shared infrastructure for the cooling post-processor.

Architecture layers (strict one-way dependency):
    cooling_control/scripts → cooling_control/{cooling,gcode,configs} → src/utils/

Key invariants:
    - Geometry in millimeters end-to-end
    - Speeds in mm/s in Python, mm/min only inside G-code text
    - YAML-only configs, no JSON
"""

__version__ = "0.3.0"
