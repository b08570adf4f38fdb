"""Configuration management for the crit application."""

from pathlib import Path
from typing import Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Uses CRIT_ prefix for all environment variables.
    Supports loading from .env file.

    Examples:
        CRIT_DEBUG=true
        CRIT_PORT=3000
        CRIT_POLL_INTERVAL=0.5
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="CRIT_",
        case_sensitive=False,
        extra="ignore",
    )

    # Server configuration
    host: str = Field(
        default="127.0.0.1",
        description="Server host address",
    )
    port: Optional[int] = Field(
        default=None,
        description="Server port (auto-assigned if not specified)",
        ge=1,
        le=65535,
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode with verbose logging",
    )
    log_level: str = Field(
        default="INFO",
        description="Log level when debug mode is off",
    )

    # Review session configuration
    poll_interval: float = Field(
        default=1.0,
        description="Change watcher polling interval in seconds",
        gt=0,
        le=60,
    )
    write_debounce: float = Field(
        default=0.2,
        description="Delay before review state is written to disk, in seconds",
        ge=0,
        le=5,
    )
    subscriber_buffer: int = Field(
        default=4,
        description="Pending events kept per event subscriber",
        ge=1,
    )
    state_file_name: str = Field(
        default=".crit.json",
        description="Name of the review state file written next to the reviewed files",
    )
    context_lines: int = Field(
        default=3,
        description="Context lines around changes in inter-round diffs",
        ge=0,
    )
    use_fs_events: bool = Field(
        default=True,
        description="Wake the change watcher early on filesystem events",
    )
    agent_timeout: float = Field(
        default=3600.0,
        description="How long `crit wait` blocks before giving up, in seconds",
        gt=0,
    )

    # Static files configuration
    static_dir: Optional[Path] = Field(
        default=None,
        description="Directory with a browser front end to serve at /",
    )

    @field_validator("static_dir", mode="before")
    @classmethod
    def validate_path(cls, v: Optional[str | Path]) -> Optional[Path]:
        """Convert string paths to Path objects."""
        if v is None or isinstance(v, Path):
            return v
        return Path(v)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalize the log level name."""
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR"):
            raise ValueError(f"unknown log level: {v}")
        return level

    @property
    def effective_log_level(self) -> str:
        """Log level after applying the debug flag."""
        return "DEBUG" if self.debug else self.log_level


# Global settings instance
settings = Settings()
