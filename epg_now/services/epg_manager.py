"""
EPG Manager

Coordinates source resolution, download, parsing, parallel normalization and
storage of EPG data, schedules the daily refresh, and answers now/next
queries with fallback to the in-memory mirror.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from time import perf_counter

from epg_now.config import CustomSettings, settings as default_settings
from epg_now.database import Database
from epg_now.schemas import PlaylistChannel, ProgramView, StatusResponse
from epg_now.services.chunk_processor import process_chunk
from epg_now.services.epg_downloader_service import EPGDownloader, SourceSpec, sanitize_url_for_logging
from epg_now.services.errors import EPGParseError, SourceDownloadError, StorageError
from epg_now.services.fetch_coordinator import FetchCoordinator
from epg_now.services.fetch_types import ParsedDocument, ProgramRecord
from epg_now.services.scheduler_service import EPGScheduler
from epg_now.services.stores import FallbackStore, MirrorStore, PersistentStore
from epg_now.services.worker_pool import NormalizationPool
from epg_now.services.xmltv_parser_service import parse_xmltv_document
from epg_now.utils.identifiers import normalize_channel_id
from epg_now.utils.logging_helpers import (
    log_source_processing,
    log_storage_stats,
    log_update_end,
    log_update_start,
)
from epg_now.utils.timezone import (
    format_for_display,
    from_epoch_ms,
    to_epoch_ms,
    utc_now,
    validate_display_offset,
)


logger = logging.getLogger(__name__)

LAST_UPDATE_KEY = "last_update"
UPDATE_INTERVAL = timedelta(hours=24)


@dataclass(slots=True)
class RebuildState:
    """Bookkeeping for one update run across its sources."""
    store_cleared: bool = False
    documents: list[ParsedDocument] = field(default_factory=list)
    degraded: bool = False


def _require_channel_id(channel_id: str | None) -> str:
    if not isinstance(channel_id, str) or not channel_id.strip():
        raise ValueError("channel_id is required")
    return channel_id


class EPGManager:
    """
    Owns the EPG state for one process.

    Built once by the entry point and shared with collaborators; call
    start() before use and shutdown() on exit.
    """

    def __init__(
        self,
        app_settings: CustomSettings | None = None,
        *,
        persistent_store: PersistentStore | None = None,
        mirror: MirrorStore | None = None,
        pool: NormalizationPool | None = None,
        downloader: EPGDownloader | None = None,
        scheduler: EPGScheduler | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.settings = app_settings or default_settings
        self.timezone_offset = validate_display_offset(self.settings.timezone_offset)

        self.persistent_store = persistent_store or PersistentStore(
            Database(
                self.settings.database_path,
                journal_mode=self.settings.sqlite_journal_mode,
                cache_size_kb=self.settings.sqlite_cache_size_kb,
            ),
            channels_chunk_size=self.settings.epg_channels_chunk_size,
        )
        self.mirror = mirror or MirrorStore()
        self.store = FallbackStore(self.persistent_store, self.mirror)
        self.pool = pool or NormalizationPool(
            self.settings.epg_max_workers,
            allow_partial_results=self.settings.epg_allow_partial_chunks,
        )
        self.downloader = downloader or EPGDownloader(
            timeout=self.settings.epg_download_timeout_sec,
            max_retries=self.settings.epg_download_max_retries,
        )
        self.scheduler = scheduler or EPGScheduler(
            self.rebuild,
            cron=self.settings.epg_fetch_cron,
            timezone=self.settings.epg_fetch_timezone,
            misfire_grace_sec=self.settings.epg_fetch_misfire_grace_sec,
        )

        self._coordinator = FetchCoordinator()
        self._clock = clock
        self.last_known_update: datetime | None = None
        self.last_source: SourceSpec | None = None

    # Lifecycle

    async def start(self) -> None:
        """Open persistent storage and restore the last update time."""
        try:
            await self.persistent_store.initialize()
        except StorageError as exc:
            logger.error(f"Persistent storage unavailable, EPG will be kept in memory only: {exc}")
            return

        try:
            value = await self.persistent_store.get_metadata(LAST_UPDATE_KEY)
        except StorageError as exc:
            logger.warning(f"Could not read last update time: {exc}")
            return

        if value and value.isdigit():
            self.last_known_update = from_epoch_ms(int(value))
            logger.info(f"Last EPG update: {self.last_known_update.isoformat()}")

    async def shutdown(self) -> None:
        """Stop the schedule, terminate workers and close storage."""
        self.scheduler.shutdown()
        self.pool.shutdown()
        await self.persistent_store.close()

    # Updates

    @property
    def is_updating(self) -> bool:
        return self._coordinator.is_fetching()

    async def initialize(self, source: SourceSpec) -> None:
        """
        Load EPG data for source and install the daily refresh.

        A repeat call with the same source is a no-op while the mirror holds data.
        """
        if self.last_source == source and len(self.mirror) > 0:
            logger.info("EPG already initialized for this source, skipping")
            return

        logger.info(f"Initializing EPG from {self._describe(source)}")
        self.last_source = source
        await self.update(source)

        if not self.scheduler.installed:
            logger.info(f"Scheduling daily EPG update ({self.scheduler.cron})")
            self.scheduler.start()

    async def rebuild(self) -> bool:
        """Re-run the update for the last initialized source."""
        if self.last_source is None:
            logger.warning("No EPG source initialized, rebuild skipped")
            return False
        return await self.update(self.last_source)

    async def update(self, source: SourceSpec) -> bool:
        """
        Run a full refresh from source.

        Returns:
            False if another update was already in flight, True otherwise.
            Failures are logged, never raised.
        """
        ran, _ = await self._coordinator.execute(lambda: self._run_update(source))
        return ran

    async def _run_update(self, source: SourceSpec) -> None:
        log_update_start(logger)
        started = perf_counter()
        try:
            urls = await self.downloader.resolve_sources(source)
            logger.info(f"Resolved {len(urls)} EPG source(s)")

            self.mirror.clear()
            state = RebuildState()

            for index, url in enumerate(urls, start=1):
                safe_url = sanitize_url_for_logging(url)
                log_source_processing(logger, index, len(urls), safe_url)
                try:
                    document = await self._load_document(url)
                except (SourceDownloadError, EPGParseError) as exc:
                    logger.error(f"Skipping source {safe_url}: {exc}")
                    continue
                await self._process_document(document, state)

            if state.documents:
                self.store.primary_enabled = not state.degraded

            log_update_end(logger, perf_counter() - started, len(self.mirror), len(self.mirror.icons))
        except Exception as exc:  # update() never raises
            logger.error(f"EPG update failed: {exc}", exc_info=True)
        finally:
            self.last_known_update = self._clock()

    async def _load_document(self, url: str) -> ParsedDocument:
        data = await self.downloader.fetch_document(url)
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, parse_xmltv_document, data)

    async def _process_document(self, document: ParsedDocument, state: RebuildState) -> None:
        state.documents.append(document)

        if state.degraded:
            self._ingest_legacy(document)
            return

        if not self.persistent_store.available:
            logger.info("Persistent storage not initialized, using in-memory processing")
            self._fall_back(state)
            return

        try:
            await self._ingest_persistent(document, state)
        except Exception as exc:
            logger.error(
                f"Persistent EPG processing failed, falling back to in-memory processing: {exc}",
                exc_info=True,
            )
            self._fall_back(state)

    def _fall_back(self, state: RebuildState) -> None:
        """Re-run every document of this rebuild through the legacy path."""
        state.degraded = True
        self.mirror.clear()
        for document in state.documents:
            self._ingest_legacy(document)

    async def _ingest_persistent(self, document: ParsedDocument, state: RebuildState) -> None:
        """Replace stored data with the document via the worker pool."""
        if not state.store_cleared:
            await self.persistent_store.clear()
            state.store_cleared = True

        channels_stored = await self.persistent_store.upsert_channels(document.channels)

        result = await self.pool.run(document.programmes)
        programs = result.programs

        batch_size = self.settings.epg_programs_batch_size
        inserted = 0
        for start_index in range(0, len(programs), batch_size):
            inserted += await self.persistent_store.bulk_insert_programs(
                programs[start_index:start_index + batch_size]
            )
            logger.debug(f"Saved {inserted}/{len(programs)} programs")

        self.mirror.set_channels(document.channels)
        await self.persistent_store.set_metadata(LAST_UPDATE_KEY, str(to_epoch_ms(self._clock())))

        log_storage_stats(logger, channels_stored, inserted)

    def _ingest_legacy(self, document: ParsedDocument) -> None:
        """Sequential in-memory ingestion used when storage is unavailable."""
        logger.info(f"Using in-memory EPG processing for {len(document.programmes)} programmes")
        self.mirror.set_channels(document.channels)

        programs = process_chunk(document.programmes)
        for program in programs:
            self.mirror.add_program(program)
        self.mirror.sort_programs()

        logger.info(f"In-memory processing complete: {len(programs)} programmes kept")

    # Queries

    def needs_update(self) -> bool:
        if self.last_known_update is None:
            return True
        return self._clock() - self.last_known_update > UPDATE_INTERVAL

    def is_available(self) -> bool:
        return len(self.mirror) > 0 and not self.is_updating

    async def current_program(self, channel_id: str) -> ProgramView | None:
        channel_id = _require_channel_id(channel_id)
        record = await self.store.current_program(channel_id, self._clock())
        return self._to_view(record) if record else None

    async def upcoming_programs(self, channel_id: str, limit: int = 2) -> list[ProgramView]:
        channel_id = _require_channel_id(channel_id)
        if limit < 0:
            raise ValueError("limit must be >= 0")
        records = await self.store.upcoming_programs(channel_id, self._clock(), limit)
        return [self._to_view(record) for record in records]

    async def channel_icon(self, channel_id: str) -> str | None:
        channel_id = _require_channel_id(channel_id)
        return await self.store.channel_icon(channel_id)

    async def status(self) -> StatusResponse:
        counts = await self.store.counts()
        last_update = (
            format_for_display(self.last_known_update, self.timezone_offset)
            if self.last_known_update
            else "never"
        )
        return StatusResponse(
            is_updating=self.is_updating,
            last_update=last_update,
            channels_count=counts.channels,
            icons_count=counts.icons,
            programs_count=counts.programs,
            timezone=self.timezone_offset,
        )

    async def missing_channels(self, channels: Sequence[PlaylistChannel]) -> list[PlaylistChannel]:
        """Playlist channels whose tvg_id matches no known EPG channel."""
        known = {normalize_channel_id(channel_id) for channel_id in await self.store.channel_ids()}
        missing = [
            channel
            for channel in channels
            if channel.tvg_id and normalize_channel_id(channel.tvg_id) not in known
        ]

        if missing:
            logger.info(f"Playlist channels without EPG: {len(missing)}")
            for channel in missing:
                logger.debug(f"  {channel.tvg_id}=")

        return missing

    def _to_view(self, record: ProgramRecord) -> ProgramView:
        return ProgramView(
            title=record.title,
            description=record.description,
            category=record.category,
            start=format_for_display(record.start_time, self.timezone_offset),
            stop=format_for_display(record.stop_time, self.timezone_offset),
            channel_name=record.channel_name,
            channel_icon=record.channel_icon,
        )

    @staticmethod
    def _describe(source: SourceSpec) -> str:
        if isinstance(source, str):
            return sanitize_url_for_logging(source)
        return f"{len(source)} source(s)"
