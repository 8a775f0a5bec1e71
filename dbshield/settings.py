"""Process-level settings read from the environment."""

from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Where dbshield keeps its state and how it logs.

    Every field can be set through a ``DBSHIELD_`` prefixed environment
    variable, e.g. ``DBSHIELD_DATA_DIR=/var/lib/dbshield``.
    """

    data_dir: str = ".dbshield"
    log_level: str = "INFO"
    log_file: Optional[str] = None

    model_config = SettingsConfigDict(env_prefix="DBSHIELD_", case_sensitive=False)


def get_settings() -> Settings:
    """Build settings from the current environment."""
    return Settings()
