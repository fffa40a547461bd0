"""
Date and Time utilities

This module handles EPG timestamp parsing, epoch conversions, and the
display formatting used in query responses. All comparisons elsewhere use
timezone-aware UTC datetimes; the display offset only affects rendering.
"""
from datetime import datetime, timedelta, timezone
import logging
import re

logger = logging.getLogger(__name__)

DEFAULT_DISPLAY_OFFSET = "+1:00"

_XMLTV_TIMESTAMP = re.compile(
    r"([0-9]{4})([0-9]{2})([0-9]{2})([0-9]{2})([0-9]{2})([0-9]{2})\s*([+-])([0-9]{2})([0-9]{2})",
    re.ASCII,
)
_DISPLAY_OFFSET = re.compile(r"([+-])([0-9]{1,2}):([0-5][0-9])")


def utc_now() -> datetime:
    """Current time as an aware UTC datetime"""
    return datetime.now(timezone.utc)


def parse_timestamp(raw: str | None) -> datetime | None:
    """
    Parse an XMLTV timestamp into an absolute UTC datetime.

    Accepts exactly 'YYYYMMDDHHMMSS' followed by optional whitespace and a
    signed four digit offset, e.g. '20240115080000 +0100'.

    Args:
        raw: Timestamp string from a programme start/stop attribute

    Returns:
        Timezone-aware datetime in UTC, or None if the value is malformed
    """
    if not isinstance(raw, str):
        return None

    match = _XMLTV_TIMESTAMP.fullmatch(raw)
    if not match:
        return None

    year, month, day, hour, minute, second, sign, tz_hours, tz_minutes = match.groups()
    if int(tz_minutes) > 59:
        return None
    offset = timedelta(hours=int(tz_hours), minutes=int(tz_minutes))
    if sign == "-":
        offset = -offset

    try:
        local = datetime(
            int(year), int(month), int(day),
            int(hour), int(minute), int(second),
            tzinfo=timezone(offset),
        )
    except ValueError:
        # Impossible calendar value or an offset of 24h or more
        return None

    return local.astimezone(timezone.utc)


def parse_display_offset(offset_spec: str | None) -> timedelta:
    """
    Convert an offset like '+1:00' or '-05:30' to a timedelta.

    Malformed or missing values fall back to DEFAULT_DISPLAY_OFFSET.
    """
    match = _DISPLAY_OFFSET.fullmatch(offset_spec) if isinstance(offset_spec, str) else None
    if match is None:
        match = _DISPLAY_OFFSET.fullmatch(DEFAULT_DISPLAY_OFFSET)

    sign, hours, minutes = match.groups()
    delta = timedelta(hours=int(hours), minutes=int(minutes))
    return -delta if sign == "-" else delta


def validate_display_offset(offset_spec: str | None) -> str:
    """Return offset_spec if well formed, otherwise the default offset"""
    if isinstance(offset_spec, str) and _DISPLAY_OFFSET.fullmatch(offset_spec):
        return offset_spec
    return DEFAULT_DISPLAY_OFFSET


def format_for_display(instant: datetime | None, offset_spec: str | None) -> str:
    """
    Render an instant as 'HH:MM' in the configured display offset.

    Args:
        instant: Aware datetime (naive values are taken as UTC)
        offset_spec: Offset string such as '+1:00'

    Returns:
        24-hour 'HH:MM' string, or an empty string when instant is None
    """
    if instant is None:
        return ""
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)

    shifted = instant.astimezone(timezone.utc) + parse_display_offset(offset_spec)
    return shifted.strftime("%H:%M")


def to_epoch_ms(instant: datetime) -> int:
    """Convert an aware datetime to epoch milliseconds"""
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    return round(instant.timestamp() * 1000)


def from_epoch_ms(value: int) -> datetime:
    """Convert epoch milliseconds to an aware UTC datetime"""
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
