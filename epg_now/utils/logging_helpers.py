"""
Log line helpers for EPG update runs.

Keeps the start/source/summary lines of an update in one format so a run
can be followed with a single grep on "EPG update".
"""
import logging
from datetime import datetime, timezone


def log_source_processing(logger: logging.Logger, position: int, count: int, safe_url: str) -> None:
    """Announce the source about to be loaded; safe_url must already be sanitized."""
    logger.info(f"EPG update source {position}/{count}: {safe_url}")


def log_update_start(logger: logging.Logger) -> None:
    logger.info(f"EPG update started at {datetime.now(timezone.utc).isoformat()}")


def log_update_end(logger: logging.Logger, duration: float, channels: int, icons: int) -> None:
    """
    Summarize a finished update.

    Args:
        logger: Logger instance
        duration: Wall time of the run in seconds
        channels: Channels held by the in-memory mirror
        icons: Channel icons held by the in-memory mirror
    """
    logger.info(f"EPG update finished in {duration:.1f}s (mirror: {channels} channels, {icons} icons)")


def log_storage_stats(logger: logging.Logger, channels: int, programs: int) -> None:
    """Report what one document wrote to persistent storage."""
    logger.info(f"EPG update stored {channels} channels and {programs} programs")
