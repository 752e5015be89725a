"""
Store configuration.

Settings are read from the environment with the ``DUMBCAS_`` prefix, so
``DUMBCAS_ROOT`` selects the default store root.
"""

from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StoreSettings(BaseSettings):
    """Settings for a backup store root."""

    root: Optional[Path] = Field(default=None, description="Store root directory")
    split_at: int = Field(
        default=3,
        ge=1,
        le=4,
        description="Hex characters of the digest used as shard directory name",
    )
    queue_size: int = Field(
        default=128,
        gt=0,
        description="Capacity of the enumeration channel",
    )
    log_level: str = Field(default="INFO", description="Level of the backup_store loggers")

    model_config = SettingsConfigDict(
        env_prefix="DUMBCAS_",
        case_sensitive=False,
    )

    @field_validator("root")
    @classmethod
    def absolute_root(cls, v: Optional[Path]) -> Optional[Path]:
        """Relative roots are resolved against the working directory."""
        if v is None:
            return v
        return Path(v).expanduser().resolve()

    @field_validator("log_level")
    @classmethod
    def known_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level
