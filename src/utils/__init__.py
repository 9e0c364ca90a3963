"""Cross-cutting utilities (lowest dependency layer).

This package provides shared primitives for:
    - Machine profile validation (validators)
    - Atomic I/O and YAML loading (fs)
    - Unified logging (logging_config)
    - G-code time estimation (gcode_vm)

No module in utils/ may import from cooling_control.

Convenience imports:
    from src.utils import fs, validators, gcode_vm
    from src.utils.logging_config import setup_logging, get_logger
"""

from . import fs
from . import gcode_vm
from . import logging_config
from . import validators
