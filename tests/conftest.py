"""
Shared fixtures for EPG Now tests.
"""
import asyncio
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from xml.sax.saxutils import escape, quoteattr

import pytest

from epg_now.config import CustomSettings
from epg_now.services.epg_manager import EPGManager
from epg_now.services.worker_pool import NormalizationPool


NOW = datetime(2024, 1, 15, 8, 30, tzinfo=timezone.utc)


class FakeScheduler:
    """Stands in for EPGScheduler without starting APScheduler."""

    def __init__(self):
        self.cron = "0 3 * * *"
        self.start_calls = 0
        self.shutdown_calls = 0
        self.installed = False

    def start(self):
        self.start_calls += 1
        self.installed = True

    def shutdown(self):
        self.shutdown_calls += 1
        self.installed = False

    def get_next_run_time(self):
        return None


class FakeDownloader:
    """Serves documents from memory; a value that is an exception is raised."""

    def __init__(self, documents, sources=None):
        self.documents = documents
        self.sources = sources
        self.resolve_calls = 0
        self.fetched = []
        self.gate: asyncio.Event | None = None

    async def resolve_sources(self, source):
        self.resolve_calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.sources is not None:
            return list(self.sources)
        return [source] if isinstance(source, str) else list(source)

    async def fetch_document(self, source):
        self.fetched.append(source)
        document = self.documents[source]
        if isinstance(document, Exception):
            raise document
        return document


def build_xmltv(channels=(), programmes=()):
    """
    Build an XMLTV document.

    channels: iterable of (id, name, icon or None)
    programmes: iterable of dicts with channel/start/stop/title and optional desc/category
    """
    parts = ['<?xml version="1.0" encoding="UTF-8"?>', "<tv>"]
    for channel_id, name, icon in channels:
        parts.append(f"<channel id={quoteattr(channel_id)}>")
        parts.append(f"<display-name>{escape(name)}</display-name>")
        if icon:
            parts.append(f"<icon src={quoteattr(icon)}/>")
        parts.append("</channel>")
    for programme in programmes:
        parts.append(
            f"<programme channel={quoteattr(programme['channel'])} "
            f"start={quoteattr(programme['start'])} stop={quoteattr(programme['stop'])}>"
        )
        if programme.get("title") is not None:
            parts.append(f"<title>{escape(programme['title'])}</title>")
        if programme.get("desc") is not None:
            parts.append(f"<desc>{escape(programme['desc'])}</desc>")
        if programme.get("category") is not None:
            parts.append(f"<category>{escape(programme['category'])}</category>")
        parts.append("</programme>")
    parts.append("</tv>")
    return "\n".join(parts).encode("utf-8")


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def settings(tmp_path):
    return CustomSettings(
        database_path=str(tmp_path / "data" / "epg.db"),
        timezone_offset="+1:00",
        epg_programs_batch_size=2,
        epg_max_workers=2,
    )


@pytest.fixture
def thread_pool():
    """Normalization pool backed by threads to keep tests fast."""
    return NormalizationPool(2, executor_factory=ThreadPoolExecutor)


@pytest.fixture
def fake_scheduler():
    return FakeScheduler()


@pytest.fixture
def make_manager(settings, clock, thread_pool, fake_scheduler):
    """Build an EPGManager over in-memory documents keyed by source."""

    def factory(documents, **overrides):
        options = {
            "pool": thread_pool,
            "scheduler": fake_scheduler,
            "clock": clock,
            "downloader": FakeDownloader(documents),
        }
        options.update(overrides)
        return EPGManager(settings, **options)

    return factory


@pytest.fixture
def xmltv():
    return build_xmltv


@pytest.fixture
def sample_document():
    """One channel with a morning show and the news, times in UTC."""
    return build_xmltv(
        channels=[("rai1.it", "Rai 1", "http://logo.example/rai1.png")],
        programmes=[
            {
                "channel": "rai1.it",
                "start": "20240115080000 +0000",
                "stop": "20240115090000 +0000",
                "title": "Morning Show",
                "desc": "Wake up",
                "category": "Talk",
            },
            {
                "channel": "rai1.it",
                "start": "20240115090000 +0000",
                "stop": "20240115100000 +0000",
                "title": "News",
            },
        ],
    )
