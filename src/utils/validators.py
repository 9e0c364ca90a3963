"""YAML schema validation for the machine profile.

The elapsed-time estimator needs a handful of machine figures that are not
part of the cooling settings (rapid speed, the feed to assume before the
first ``F`` word, units). They live in a versioned ``machine.v1`` profile
validated with pydantic so that a bad value fails at load time with the
offending key in the message.

Units:
    - Geometry: millimeters (mm)
    - Speed: mm/s

Usage:
    from src.utils import validators

    profile = validators.load_machine_profile("machine.yaml")
    print(profile.feeds.rapid_mm_s)
"""

from pathlib import Path
from typing import Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ============================================================================
# MACHINE PROFILE SCHEMA V1
# ============================================================================

class Feeds(BaseModel):
    """Feed rates used by the time estimator (mm/s)."""
    rapid_mm_s: float = Field(..., gt=0, description="Rapid (G0) speed (mm/s)")
    default_feed_mm_s: float = Field(
        50.0, gt=0, description="Feed assumed until the first F word (mm/s)"
    )


class MachineProfileV1(BaseModel):
    """Machine profile schema v1."""
    model_config = ConfigDict(populate_by_name=True)

    schema_version: str = Field("machine.v1", alias="schema", description="Schema version")
    name: str = Field("generic", description="Printer name (log output only)")
    units: str = Field("mm", description="Units assumed before G20/G21 (mm or inch)")
    feeds: Feeds

    @field_validator('schema_version')
    @classmethod
    def validate_schema(cls, v: str) -> str:
        if v != "machine.v1":
            raise ValueError(f"Expected schema 'machine.v1', got '{v}'")
        return v

    @field_validator('units')
    @classmethod
    def validate_units(cls, v: str) -> str:
        if v not in ["mm", "inch"]:
            raise ValueError(f"Units must be 'mm' or 'inch', got '{v}'")
        return v


def load_machine_profile(path: Union[str, Path]) -> MachineProfileV1:
    """Load and validate machine profile from YAML.

    Parameters
    ----------
    path : Union[str, Path]
        Path to a machine.v1 YAML file

    Returns
    -------
    MachineProfileV1
        Validated machine profile

    Raises
    ------
    FileNotFoundError
        If path doesn't exist
    ValueError
        If validation fails (with actionable error message)
    """
    from . import fs

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Machine profile not found: {path}")

    data = fs.load_yaml(path)
    if not isinstance(data, dict):
        raise ValueError(f"Machine profile at {path} must be a mapping, got {type(data).__name__}")
    try:
        return MachineProfileV1(**data)
    except Exception as e:
        raise ValueError(f"Machine profile validation failed at {path}: {e}") from e
