"""Configuration settings for partflash.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the PARTFLASH_ prefix.
    CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="PARTFLASH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Paths
    scratch_dir: Path | None = Field(
        default=None,
        description="Parent directory for per-session scratch files "
        "(uses system default if not set)",
    )
    policy_file: Path | None = Field(
        default=None,
        description="YAML file overriding the partition policy lists",
    )

    # Operational
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Reconnect supervision (in seconds)
    reconnect_timeout: int = Field(
        default=60,
        ge=5,
        description="How long to wait for the device after a mode-changing reboot",
    )
    reconnect_poll_interval: float = Field(
        default=5.0,
        gt=0,
        description="Interval between device enumeration attempts",
    )


def get_settings() -> Settings:
    """Get the application settings singleton.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


__all__ = ["Settings", "get_settings", "print_settings_json"]
