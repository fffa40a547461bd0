"""
Shared dataclasses used across the EPG ingestion pipeline.

RawProgramme and TextField cross process boundaries, so they only carry
plain picklable values.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass(slots=True)
class ChannelPayload:
    """In-memory representation of a channel row before persistence."""
    id: str
    name: str
    icon: str | None = None


@dataclass(slots=True)
class TextField:
    """Snapshot of a text-bearing XML element (title, desc, category)."""
    text: str | None = None
    attributes: dict[str, str] = field(default_factory=dict)
    content: str | None = None


@dataclass(slots=True)
class RawProgramme:
    """Unnormalized programme record as found in the source document."""
    channel: str | None
    start: str | None
    stop: str | None
    title: TextField | None = None
    description: TextField | None = None
    category: TextField | None = None


@dataclass(slots=True)
class ProgramPayload:
    """Normalized programme entry ready for storage."""
    channel_id: str
    title: str
    description: str
    category: str
    start_time: datetime
    stop_time: datetime


@dataclass(slots=True)
class ProgramRecord:
    """Stored programme joined with its channel's name and icon."""
    channel_id: str
    title: str
    description: str
    category: str
    start_time: datetime
    stop_time: datetime
    channel_name: str | None = None
    channel_icon: str | None = None


@dataclass(slots=True)
class ParsedDocument:
    """Channels and raw programmes extracted from one XMLTV document."""
    channels: list[ChannelPayload] = field(default_factory=list)
    programmes: list[RawProgramme] = field(default_factory=list)


@dataclass(slots=True)
class StoreCounts:
    channels: int = 0
    icons: int = 0
    programs: int = 0


__all__ = [
    "ChannelPayload",
    "TextField",
    "RawProgramme",
    "ProgramPayload",
    "ProgramRecord",
    "ParsedDocument",
    "StoreCounts",
]
