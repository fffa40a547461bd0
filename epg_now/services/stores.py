"""
Program stores

PersistentStore wraps the SQLite database, MirrorStore keeps an in-memory
copy for when storage is unavailable, and FallbackStore chains the two for
queries.
"""
import bisect
import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable, Sequence
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError

from epg_now.database import Database
from epg_now.services import db_service
from epg_now.services.errors import StorageError
from epg_now.services.fetch_types import ChannelPayload, ProgramPayload, ProgramRecord, StoreCounts
from epg_now.utils.identifiers import normalize_channel_id
from epg_now.utils.timezone import to_epoch_ms


logger = logging.getLogger(__name__)


class ProgramStore(ABC):
    """Read side shared by the persistent and in-memory stores."""

    @property
    @abstractmethod
    def available(self) -> bool:
        ...

    @abstractmethod
    async def current_program(self, channel_id: str, now: datetime) -> ProgramRecord | None:
        ...

    @abstractmethod
    async def upcoming_programs(self, channel_id: str, now: datetime, limit: int = 2) -> list[ProgramRecord]:
        ...

    @abstractmethod
    async def channel_icon(self, channel_id: str) -> str | None:
        ...

    @abstractmethod
    async def counts(self) -> StoreCounts:
        ...

    @abstractmethod
    async def channel_ids(self) -> set[str]:
        ...


class PersistentStore(ProgramStore):
    """
    SQLite-backed store.

    Every backend failure is re-raised as StorageError so callers can
    decide whether to fall back.
    """

    def __init__(self, database: Database, *, channels_chunk_size: int = 1000) -> None:
        self.database = database
        self._channels_chunk_size = channels_chunk_size

    @property
    def available(self) -> bool:
        return self.database.initialized

    async def initialize(self) -> None:
        try:
            await self.database.init()
        except (SQLAlchemyError, OSError) as exc:
            raise StorageError(f"Cannot open EPG database at {self.database.database_path}: {exc}") from exc

    async def close(self) -> None:
        await self.database.close()

    async def clear(self) -> None:
        try:
            async with self.database.session_scope() as session:
                await db_service.clear_all(session)
        except (SQLAlchemyError, RuntimeError) as exc:
            raise StorageError(f"Failed to clear EPG database: {exc}") from exc

    async def upsert_channel(self, channel_id: str, name: str, icon: str | None) -> None:
        await self.upsert_channels([ChannelPayload(id=channel_id, name=name, icon=icon)])

    async def upsert_channels(self, channels: Sequence[ChannelPayload]) -> int:
        try:
            async with self.database.session_scope() as session:
                return await db_service.store_channels(session, channels, self._channels_chunk_size)
        except (SQLAlchemyError, RuntimeError) as exc:
            raise StorageError(f"Failed to store channels: {exc}") from exc

    async def bulk_insert_programs(self, programs: Sequence[ProgramPayload]) -> int:
        """Insert the whole batch inside one transaction."""
        try:
            async with self.database.session_scope() as session:
                return await db_service.store_programs(session, programs)
        except (SQLAlchemyError, RuntimeError) as exc:
            raise StorageError(f"Failed to store programs: {exc}") from exc

    async def current_program(self, channel_id: str, now: datetime) -> ProgramRecord | None:
        try:
            async with self.database.session_scope(begin=False) as session:
                return await db_service.query_current_program(session, channel_id, to_epoch_ms(now))
        except (SQLAlchemyError, RuntimeError) as exc:
            raise StorageError(f"Failed to query current program: {exc}") from exc

    async def upcoming_programs(self, channel_id: str, now: datetime, limit: int = 2) -> list[ProgramRecord]:
        try:
            async with self.database.session_scope(begin=False) as session:
                return await db_service.query_upcoming_programs(
                    session, channel_id, to_epoch_ms(now), limit
                )
        except (SQLAlchemyError, RuntimeError) as exc:
            raise StorageError(f"Failed to query upcoming programs: {exc}") from exc

    async def channel_icon(self, channel_id: str) -> str | None:
        try:
            async with self.database.session_scope(begin=False) as session:
                return await db_service.query_channel_icon(session, channel_id)
        except (SQLAlchemyError, RuntimeError) as exc:
            raise StorageError(f"Failed to query channel icon: {exc}") from exc

    async def counts(self) -> StoreCounts:
        try:
            async with self.database.session_scope(begin=False) as session:
                return await db_service.count_rows(session)
        except (SQLAlchemyError, RuntimeError) as exc:
            raise StorageError(f"Failed to count rows: {exc}") from exc

    async def channel_ids(self) -> set[str]:
        try:
            async with self.database.session_scope(begin=False) as session:
                return await db_service.query_channel_ids(session)
        except (SQLAlchemyError, RuntimeError) as exc:
            raise StorageError(f"Failed to list channels: {exc}") from exc

    async def get_metadata(self, key: str) -> str | None:
        try:
            async with self.database.session_scope(begin=False) as session:
                return await db_service.get_metadata(session, key)
        except (SQLAlchemyError, RuntimeError) as exc:
            raise StorageError(f"Failed to read metadata {key}: {exc}") from exc

    async def set_metadata(self, key: str, value: str) -> None:
        try:
            async with self.database.session_scope() as session:
                await db_service.set_metadata(session, key, value)
        except (SQLAlchemyError, RuntimeError) as exc:
            raise StorageError(f"Failed to write metadata {key}: {exc}") from exc


class MirrorStore(ProgramStore):
    """
    In-memory channel/program mirror.

    Only mutated from the event loop; rebuilt wholesale on each update.
    """

    def __init__(self) -> None:
        self.guide: dict[str, list[ProgramRecord]] = {}
        self.icons: dict[str, str] = {}
        self.names: dict[str, str] = {}

    @property
    def available(self) -> bool:
        return True

    def __len__(self) -> int:
        return len(self.names.keys() | self.guide.keys())

    def clear(self) -> None:
        self.guide.clear()
        self.icons.clear()
        self.names.clear()

    def set_channels(self, channels: Iterable[ChannelPayload]) -> None:
        for channel in channels:
            channel_id = normalize_channel_id(channel.id)
            if not channel_id:
                continue
            self.names[channel_id] = channel.name
            if channel.icon:
                self.icons[channel_id] = channel.icon

    def add_program(self, program: ProgramPayload) -> None:
        channel_id = normalize_channel_id(program.channel_id)
        self.guide.setdefault(channel_id, []).append(
            ProgramRecord(
                channel_id=channel_id,
                title=program.title,
                description=program.description,
                category=program.category,
                start_time=program.start_time,
                stop_time=program.stop_time,
            )
        )

    def sort_programs(self) -> None:
        for programs in self.guide.values():
            programs.sort(key=lambda program: program.start_time)

    def _with_channel(self, program: ProgramRecord) -> ProgramRecord:
        return ProgramRecord(
            channel_id=program.channel_id,
            title=program.title,
            description=program.description,
            category=program.category,
            start_time=program.start_time,
            stop_time=program.stop_time,
            channel_name=self.names.get(program.channel_id),
            channel_icon=self.icons.get(program.channel_id),
        )

    async def current_program(self, channel_id: str, now: datetime) -> ProgramRecord | None:
        for program in self.guide.get(normalize_channel_id(channel_id), []):
            if program.start_time > now:
                break
            if program.stop_time >= now:
                return self._with_channel(program)
        return None

    async def upcoming_programs(self, channel_id: str, now: datetime, limit: int = 2) -> list[ProgramRecord]:
        programs = self.guide.get(normalize_channel_id(channel_id), [])
        first = bisect.bisect_left(programs, now, key=lambda program: program.start_time)
        return [self._with_channel(program) for program in programs[first:first + limit]]

    async def channel_icon(self, channel_id: str) -> str | None:
        return self.icons.get(normalize_channel_id(channel_id))

    async def counts(self) -> StoreCounts:
        return StoreCounts(
            channels=len(self),
            icons=len(self.icons),
            programs=sum(len(programs) for programs in self.guide.values()),
        )

    async def channel_ids(self) -> set[str]:
        return set(self.names) | set(self.guide)


class FallbackStore(ProgramStore):
    """
    Query the primary store and fall back to the secondary.

    A StorageError from the primary, or a missing icon, sends the query to
    the secondary. A primary that is unavailable or disabled is skipped.
    """

    def __init__(self, primary: ProgramStore, secondary: ProgramStore) -> None:
        self.primary = primary
        self.secondary = secondary
        self.primary_enabled = True

    @property
    def available(self) -> bool:
        return self._use_primary() or self.secondary.available

    def _use_primary(self) -> bool:
        return self.primary_enabled and self.primary.available

    async def current_program(self, channel_id: str, now: datetime) -> ProgramRecord | None:
        if self._use_primary():
            try:
                return await self.primary.current_program(channel_id, now)
            except StorageError as exc:
                logger.error(f"Current program lookup failed, using in-memory mirror: {exc}")
        return await self.secondary.current_program(channel_id, now)

    async def upcoming_programs(self, channel_id: str, now: datetime, limit: int = 2) -> list[ProgramRecord]:
        if self._use_primary():
            try:
                return await self.primary.upcoming_programs(channel_id, now, limit)
            except StorageError as exc:
                logger.error(f"Upcoming programs lookup failed, using in-memory mirror: {exc}")
        return await self.secondary.upcoming_programs(channel_id, now, limit)

    async def channel_icon(self, channel_id: str) -> str | None:
        if self._use_primary():
            try:
                icon = await self.primary.channel_icon(channel_id)
                if icon:
                    return icon
            except StorageError as exc:
                logger.error(f"Channel icon lookup failed, using in-memory mirror: {exc}")
        return await self.secondary.channel_icon(channel_id)

    async def counts(self) -> StoreCounts:
        if self._use_primary():
            try:
                return await self.primary.counts()
            except StorageError as exc:
                logger.error(f"Row count failed, using in-memory mirror: {exc}")
        return await self.secondary.counts()

    async def channel_ids(self) -> set[str]:
        if self._use_primary():
            try:
                return await self.primary.channel_ids()
            except StorageError as exc:
                logger.error(f"Channel listing failed, using in-memory mirror: {exc}")
        return await self.secondary.channel_ids()
