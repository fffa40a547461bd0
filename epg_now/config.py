from pathlib import Path
import logging
import re

from croniter import croniter
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE_OFFSET = "+1:00"
_OFFSET_PATTERN = re.compile(r"[+-][0-9]{1,2}:[0-5][0-9]")


class CustomSettings(BaseSettings):
    """Application settings loaded from environment variables.

    Validates configuration at startup to catch misconfiguration early.
    """

    database_path: str = "./data/epg.db"
    epg_source: str | None = None
    timezone_offset: str = DEFAULT_TIMEZONE_OFFSET
    epg_fetch_cron: str = "0 3 * * *"  # Daily at 3 AM
    epg_fetch_timezone: str = "UTC"
    epg_fetch_misfire_grace_sec: int = 3600
    epg_download_timeout_sec: float = 100.0
    epg_download_max_retries: int = 3
    epg_programs_batch_size: int = 1000
    epg_channels_chunk_size: int = 1000
    epg_max_workers: int | None = None  # None -> cpu_count - 1
    epg_allow_partial_chunks: bool = False

    sqlite_journal_mode: str = "WAL"
    sqlite_cache_size_kb: int = 64000
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("epg_source", mode="before")
    @classmethod
    def parse_epg_source(cls, value):
        """Treat blank values as unset."""
        if value is None:
            return None
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("timezone_offset", mode="before")
    @classmethod
    def validate_timezone_offset(cls, value):
        """Fall back to the default display offset instead of failing."""
        if isinstance(value, str) and _OFFSET_PATTERN.fullmatch(value):
            return value
        logger.warning(f"Invalid TIMEZONE_OFFSET {value!r}, falling back to {DEFAULT_TIMEZONE_OFFSET}")
        return DEFAULT_TIMEZONE_OFFSET

    @field_validator("database_path")
    @classmethod
    def validate_database_path(cls, value: str) -> str:
        """Validate database path is accessible."""
        path = Path(value)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            return value
        except (OSError, PermissionError) as exc:
            raise ValueError(f"Cannot access database path '{value}': {exc}") from exc

    @field_validator("epg_fetch_misfire_grace_sec")
    @classmethod
    def validate_misfire_grace(cls, value: int) -> int:
        """Validate scheduler misfire grace period (seconds)."""
        if value < 0:
            raise ValueError("epg_fetch_misfire_grace_sec must be >= 0")
        return value

    @field_validator("epg_download_timeout_sec")
    @classmethod
    def validate_download_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("epg_download_timeout_sec must be > 0")
        return value

    @field_validator(
        "epg_download_max_retries",
        "epg_programs_batch_size",
        "epg_channels_chunk_size",
        "sqlite_cache_size_kb",
    )
    @classmethod
    def validate_positive_ints(cls, value: int, info) -> int:
        """Ensure integer settings are positive."""
        if value <= 0:
            raise ValueError(f"{info.field_name} must be > 0")
        return value

    @field_validator("epg_max_workers")
    @classmethod
    def validate_max_workers(cls, value: int | None) -> int | None:
        if value is not None and value <= 0:
            raise ValueError("epg_max_workers must be > 0 when set")
        return value

    @field_validator("sqlite_journal_mode")
    @classmethod
    def validate_journal_mode(cls, value: str) -> str:
        """Validate SQLite journal mode."""
        normalized = value.upper()
        allowed = {"DELETE", "TRUNCATE", "PERSIST", "MEMORY", "WAL", "OFF"}
        if normalized not in allowed:
            raise ValueError(f"sqlite_journal_mode must be one of {sorted(allowed)}")
        return normalized

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        normalized = value.upper()
        if normalized not in logging.getLevelNamesMapping():
            raise ValueError(f"Unknown log level: {value}")
        return normalized

    @field_validator("epg_fetch_cron")
    @classmethod
    def validate_cron_expression(cls, value: str) -> str:
        """Validate cron expression is valid."""
        try:
            croniter(value)
            return value
        except (ValueError, KeyError) as exc:
            raise ValueError(f"Invalid cron expression '{value}': {exc}") from exc

    def log_summary(self) -> None:
        """Log the effective configuration."""
        logger.info("Configuration loaded:")
        logger.info(f"  Database: {self.database_path}")
        logger.info(f"  EPG Source: {'configured' if self.epg_source else 'not configured'}")
        logger.info(f"  Display Timezone Offset: {self.timezone_offset}")
        logger.info(f"  Fetch Schedule: {self.epg_fetch_cron} ({self.epg_fetch_timezone})")
        logger.info(f"  Download Timeout: {self.epg_download_timeout_sec}s")
        logger.info(f"  Program Batch Size: {self.epg_programs_batch_size}")
        logger.info(f"  Workers: {self.epg_max_workers or 'auto'}")
        logger.info(f"  Partial Chunk Results: {self.epg_allow_partial_chunks}")
        logger.info(f"  SQLite Journal Mode: {self.sqlite_journal_mode}")


settings = CustomSettings()


def setup_logging(level: str | None = None) -> None:
    """Configure application logging."""
    logging.basicConfig(
        level=getattr(logging, (level or settings.log_level).upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
