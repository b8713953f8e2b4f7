"""
Centralized configuration management for flashpractice.
"""
from pathlib import Path
import uuid
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


def get_default_db_path() -> Path:
    """Returns the default path for the database file."""
    return Path.home() / ".flashpractice" / "practice.db"


class Settings(BaseSettings):
    """
    Application settings, loaded from environment variables or .env files.

    Every field can be overridden with a ``FLASHPRACTICE_``-prefixed
    environment variable, e.g. ``FLASHPRACTICE_DB_PATH``.
    """

    model_config = SettingsConfigDict(
        env_prefix="FLASHPRACTICE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    db_path: Path = get_default_db_path()

    # User the CLI acts as when --user is not given.
    user_id: Optional[uuid.UUID] = None

    log_level: str = "WARNING"

    # When True, disables safety checks that prevent data loss during tests.
    # Should NEVER be enabled in production.
    testing_mode: bool = False


settings = Settings()
