"""
EPG Downloader Service

Resolves a configured source into concrete URLs and fetches each one as
decompressed XML bytes. Separated from orchestration logic for better testability.
"""
import logging
from collections.abc import Sequence
from pathlib import Path
from urllib.parse import unquote, urlparse

import httpx

from epg_now.services.errors import SourceDownloadError
from epg_now.utils.file_operations import decompress_payload, download_bytes, read_local_file


logger = logging.getLogger(__name__)

SourceSpec = str | Sequence[str]


def _local_path(source: str) -> Path | None:
    """Map file:// URLs and existing filesystem paths to a Path"""
    parsed = urlparse(source)
    if parsed.scheme == "file":
        return Path(unquote(parsed.path))
    if parsed.scheme in ("http", "https"):
        return None
    path = Path(source)
    try:
        return path if path.is_file() else None
    except (OSError, ValueError):
        return None


def sanitize_url_for_logging(url: str) -> str:
    """Remove credentials from URL for safe logging."""
    if "://" not in url:
        return url
    try:
        protocol, rest = url.split("://", 1)
        if "@" in rest:
            rest = rest.split("@", 1)[1]
            return f"{protocol}://***:***@{rest}"
        return url
    except (ValueError, IndexError):
        return url


class EPGDownloader:
    """Fetches EPG sources over HTTP(S) or from the local filesystem."""

    def __init__(
        self,
        *,
        timeout: float = 100.0,
        max_retries: int = 3,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.timeout = timeout
        self.max_retries = max_retries
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=True,
            transport=self._transport,
        )

    async def _read(self, client: httpx.AsyncClient, source: str) -> bytes:
        local_path = _local_path(source)
        if local_path is not None:
            return await read_local_file(local_path)
        return await download_bytes(client, source, timeout=self.timeout, max_retries=self.max_retries)

    async def resolve_sources(self, source: SourceSpec) -> list[str]:
        """
        Expand a configured source into concrete EPG URLs.

        - a list is used as-is
        - a comma-separated string is split
        - a .gz reference or a body that looks like XMLTV is a single source
        - otherwise the body is read as a newline list of http(s) URLs

        Any error while probing falls back to treating the source as a single URL.
        """
        if not isinstance(source, str):
            return [item.strip() for item in source if item and item.strip()]

        source = source.strip()
        if "," in source:
            return [item.strip() for item in source.split(",") if item.strip()]

        if source.endswith(".gz"):
            logger.info(f"Gzipped EPG source: {sanitize_url_for_logging(source)}")
            return [source]

        try:
            async with self._client() as client:
                body = decompress_payload(await self._read(client, source))
        except (httpx.HTTPError, OSError) as exc:
            logger.error(f"Failed to inspect source {sanitize_url_for_logging(source)}: {exc}")
            return [source]

        text = body.decode("utf-8", errors="replace")
        if "<?xml" in text or "<tv" in text:
            logger.info("Source is an EPG document")
            return [source]

        urls = [
            line.strip()
            for line in text.splitlines()
            if line.strip() and line.strip().startswith("http")
        ]
        if urls:
            logger.info(f"Source is a list of {len(urls)} EPG URL(s)")
            return urls

        logger.info("No URLs found in source body, using it as a single source")
        return [source]

    async def fetch_document(self, source: str) -> bytes:
        """
        Download (or read) one source and return decompressed bytes.

        Raises:
            SourceDownloadError: If the source cannot be fetched
        """
        try:
            async with self._client() as client:
                data = await self._read(client, source)
        except (httpx.HTTPError, OSError, RuntimeError) as exc:
            raise SourceDownloadError(
                f"Failed to fetch {sanitize_url_for_logging(source)}: {exc}"
            ) from exc

        return decompress_payload(data)
