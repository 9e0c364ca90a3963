"""Post-processor configuration loading and validation."""

from cooling_control.configs.loader import (
    GCODE_FLAVORS,
    ConfigError,
    CoolingConfig,
    GCodeConfig,
    PrintConfig,
    config_from_dict,
    load_config,
)

__all__ = [
    "GCODE_FLAVORS",
    "ConfigError",
    "CoolingConfig",
    "GCodeConfig",
    "PrintConfig",
    "config_from_dict",
    "load_config",
]
