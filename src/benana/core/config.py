"""Application configuration using Pydantic BaseSettings."""

import logging
from pathlib import Path

import structlog
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_HOME = Path.home() / ".benana"


class Settings(BaseSettings):
    """Process settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Filesystem root for config, database and image artifacts
    home: Path = Field(default=DEFAULT_HOME, alias="BENANA_HOME")

    # Embedded database (defaults to <home>/studio.db)
    database_url: str = Field(default="", alias="DATABASE_URL")

    # Application Environment
    app_env: str = Field(default="development", alias="APP_ENV")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Server Configuration
    host: str = Field(default="127.0.0.1", alias="HOST")
    port: int = Field(default=8765, alias="PORT")

    # Gemini image generation
    gemini_api_base_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta", alias="GEMINI_API_BASE_URL"
    )
    gemini_retry_base_delay_seconds: float = Field(
        default=0.8, alias="GEMINI_RETRY_BASE_DELAY_SECONDS"
    )
    gemini_validate_timeout_seconds: float = Field(
        default=15.0, alias="GEMINI_VALIDATE_TIMEOUT_SECONDS"
    )
    gemini_generate_timeout_seconds: float = Field(
        default=120.0, alias="GEMINI_GENERATE_TIMEOUT_SECONDS"
    )

    # Thumbnails
    thumbnail_max_edge: int = Field(default=400, alias="THUMBNAIL_MAX_EDGE")
    thumbnail_quality: int = Field(default=84, alias="THUMBNAIL_QUALITY")

    @property
    def resolved_database_url(self) -> str:
        """Database URL, falling back to the studio database under the home directory."""
        if self.database_url:
            return self.database_url
        return f"sqlite+aiosqlite:///{self.home / 'studio.db'}"

    @model_validator(mode="after")
    def validate_required_config(self) -> "Settings":
        """Validate configuration on startup.

        Fails fast with clear error messages if the configuration cannot work for a
        local studio. Validation is skipped in test environments.
        """
        if self.app_env in ("test", "testing"):
            return self

        problems = []

        if self.database_url and not self.database_url.startswith("sqlite+aiosqlite://"):
            problems.append(
                "DATABASE_URL: Only embedded SQLite is supported (sqlite+aiosqlite:///path)"
            )

        if not 16 <= self.thumbnail_max_edge <= 4096:
            problems.append("THUMBNAIL_MAX_EDGE: Must be between 16 and 4096 pixels")

        if not 1 <= self.thumbnail_quality <= 100:
            problems.append("THUMBNAIL_QUALITY: Must be between 1 and 100")

        if problems:
            error_msg = "CRITICAL: Invalid configuration:\n\n" + "\n".join(
                f"  - {p}" for p in problems
            )
            error_msg += "\n\nPlease update your environment or .env file and restart."
            raise ValueError(error_msg)

        return self


def configure_logging(settings: Settings) -> None:
    """Configure structlog based on application environment.

    - Production: JSON output for log aggregation
    - Development: Console output for human readability
    """
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    if settings.app_env == "production":
        # JSON output for production (log aggregation)
        structlog.configure(
            processors=[
                structlog.stdlib.add_log_level,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer(),
            ],
            wrapper_class=structlog.make_filtering_bound_logger(level),
            context_class=dict,
            logger_factory=structlog.PrintLoggerFactory(),
            cache_logger_on_first_use=True,
        )
    else:
        # Console output for development (human-readable)
        structlog.configure(
            processors=[
                structlog.stdlib.add_log_level,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.dev.ConsoleRenderer(),
            ],
            wrapper_class=structlog.make_filtering_bound_logger(level),
            context_class=dict,
            logger_factory=structlog.PrintLoggerFactory(),
            cache_logger_on_first_use=True,
        )
