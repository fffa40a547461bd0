"""
Database operations for EPG data

This module contains all database CRUD operations for channels, programs
and metadata. Channel ids are canonicalized here on both write and read.
"""
import logging
from collections.abc import Sequence
from time import perf_counter

from sqlalchemy import delete, func, select, text
from sqlalchemy.ext.asyncio import AsyncSession

from epg_now.models import Channel, MetadataEntry, Program
from epg_now.services.fetch_types import ChannelPayload, ProgramPayload, ProgramRecord, StoreCounts
from epg_now.utils.identifiers import normalize_channel_id
from epg_now.utils.timezone import from_epoch_ms, to_epoch_ms


logger = logging.getLogger(__name__)

CHANNEL_UPSERT = text(
    """
    INSERT INTO channels (id, name, icon)
    VALUES (:id, :name, :icon)
    ON CONFLICT(id) DO UPDATE SET
        name = excluded.name,
        icon = excluded.icon
    """
)

PROGRAM_INSERT = text(
    """
    INSERT INTO programs (channel_id, title, description, category, start_time, end_time)
    VALUES (:channel_id, :title, :description, :category, :start_time, :end_time)
    """
)


async def clear_all(db: AsyncSession) -> tuple[int, int]:
    """
    Delete all programs, then all channels.

    Returns:
        Tuple of (programs_deleted, channels_deleted)
    """
    programs_deleted = (await db.execute(select(func.count(Program.id)))).scalar_one()
    channels_deleted = (await db.execute(select(func.count(Channel.id)))).scalar_one()

    await db.execute(delete(Program))
    await db.execute(delete(Channel))

    logger.info(f"Cleared {programs_deleted} programs and {channels_deleted} channels")
    return programs_deleted, channels_deleted


async def store_channels(
    db: AsyncSession,
    channels: Sequence[ChannelPayload],
    chunk_size: int = 1000,
) -> int:
    """
    Upsert channels keyed by canonical id.

    Args:
        db: Database session
        channels: Channel payloads (ids may be raw)
        chunk_size: Rows per executemany call

    Returns:
        Number of distinct channels written
    """
    # Deduplicate by canonical id while preserving last occurrence
    deduped: dict[str, ChannelPayload] = {}
    for channel in channels:
        canonical = normalize_channel_id(channel.id)
        if canonical:
            deduped[canonical] = channel

    if not deduped:
        logger.debug("No channels to store")
        return 0

    payload = [
        {"id": canonical, "name": channel.name, "icon": channel.icon}
        for canonical, channel in deduped.items()
    ]

    for start_index in range(0, len(payload), chunk_size):
        await db.execute(CHANNEL_UPSERT, payload[start_index:start_index + chunk_size])

    logger.info(f"Upserted {len(payload)} channels")
    return len(payload)


async def store_programs(db: AsyncSession, programs: Sequence[ProgramPayload]) -> int:
    """
    Insert a batch of programs with a single executemany call.

    The caller owns the transaction boundary and the batch size.

    Returns:
        Number of programs inserted
    """
    if not programs:
        logger.debug("No programs to store")
        return 0

    started = perf_counter()
    payload = [
        {
            "channel_id": normalize_channel_id(program.channel_id),
            "title": program.title,
            "description": program.description,
            "category": program.category,
            "start_time": to_epoch_ms(program.start_time),
            "end_time": to_epoch_ms(program.stop_time),
        }
        for program in programs
    ]
    await db.execute(PROGRAM_INSERT, payload)

    logger.debug(f"Inserted {len(payload)} programs in {perf_counter() - started:.2f}s")
    return len(payload)


def _program_query():
    return (
        select(Program, Channel.name, Channel.icon)
        .outerjoin(Channel, Channel.id == Program.channel_id)
    )


def _to_record(program: Program, channel_name: str | None, channel_icon: str | None) -> ProgramRecord:
    return ProgramRecord(
        channel_id=program.channel_id,
        title=program.title,
        description=program.description,
        category=program.category,
        start_time=from_epoch_ms(program.start_time),
        stop_time=from_epoch_ms(program.end_time),
        channel_name=channel_name,
        channel_icon=channel_icon,
    )


async def query_current_program(db: AsyncSession, channel_id: str, now_ms: int) -> ProgramRecord | None:
    """
    Find the program airing at now_ms.

    Overlapping programs resolve to the one that started first.
    """
    stmt = (
        _program_query()
        .where(
            Program.channel_id == normalize_channel_id(channel_id),
            Program.start_time <= now_ms,
            Program.end_time >= now_ms,
        )
        .order_by(Program.start_time.asc())
        .limit(1)
    )
    row = (await db.execute(stmt)).first()
    if row is None:
        return None
    return _to_record(*row)


async def query_upcoming_programs(
    db: AsyncSession,
    channel_id: str,
    now_ms: int,
    limit: int = 2,
) -> list[ProgramRecord]:
    """Programs starting at or after now_ms, earliest first"""
    stmt = (
        _program_query()
        .where(
            Program.channel_id == normalize_channel_id(channel_id),
            Program.start_time >= now_ms,
        )
        .order_by(Program.start_time.asc())
        .limit(limit)
    )
    rows = (await db.execute(stmt)).all()
    return [_to_record(*row) for row in rows]


async def query_channel_icon(db: AsyncSession, channel_id: str) -> str | None:
    result = await db.execute(
        select(Channel.icon).where(Channel.id == normalize_channel_id(channel_id))
    )
    return result.scalar_one_or_none()


async def query_channel_ids(db: AsyncSession) -> set[str]:
    result = await db.execute(select(Channel.id))
    return set(result.scalars().all())


async def count_rows(db: AsyncSession) -> StoreCounts:
    channels = (await db.execute(select(func.count(Channel.id)))).scalar_one()
    icons = (
        await db.execute(select(func.count(Channel.id)).where(Channel.icon.is_not(None)))
    ).scalar_one()
    programs = (await db.execute(select(func.count(Program.id)))).scalar_one()
    return StoreCounts(channels=channels, icons=icons, programs=programs)


async def get_metadata(db: AsyncSession, key: str) -> str | None:
    result = await db.execute(select(MetadataEntry.value).where(MetadataEntry.key == key))
    return result.scalar_one_or_none()


async def set_metadata(db: AsyncSession, key: str, value: str) -> None:
    await db.execute(
        text(
            """
            INSERT INTO metadata (key, value) VALUES (:key, :value)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value
            """
        ),
        {"key": key, "value": value},
    )
    logger.debug(f"Metadata {key} set to {value}")
