"""
File operation utilities

This module handles source downloads with retry logic, local file reads,
and payload decompression.
"""
import gzip
import logging
import zlib
from pathlib import Path
import asyncio

import aiofiles
import httpx


logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    "User-Agent": "Mozilla/5.0",
    "Accept-Encoding": "gzip, deflate",
}


async def download_bytes(
    client: httpx.AsyncClient,
    url: str,
    timeout: float = 100.0,
    max_retries: int = 3,
    backoff_factor: float = 2.0
) -> bytes:
    """
    Download a URL into memory with exponential backoff retry logic

    Retries on transient network errors (timeouts, connection errors) and 5xx.
    Does NOT retry on 4xx HTTP errors (client errors).

    Args:
        client: Shared HTTP client
        url: URL to download from
        timeout: HTTP timeout in seconds
        max_retries: Maximum number of retry attempts
        backoff_factor: Exponential backoff multiplier (wait = backoff_factor ^ attempt)

    Returns:
        Response body

    Raises:
        httpx.HTTPError: If download fails after all retries
    """
    logger.info(f"Downloading {url}...")

    last_error: Exception | None = None

    for attempt in range(max_retries):
        try:
            response = await client.get(url, timeout=timeout, headers=DEFAULT_HEADERS)
            response.raise_for_status()

            logger.info(f"Downloaded {len(response.content) / (1024 * 1024):.2f} MB from {url}")
            return response.content

        except (httpx.TimeoutException, httpx.ConnectError) as e:
            # Transient network errors - retry
            last_error = e
            if attempt < max_retries - 1:
                wait_time = backoff_factor ** attempt
                logger.warning(
                    f"Download attempt {attempt + 1}/{max_retries} failed (transient error): {type(e).__name__}. "
                    f"Retrying in {wait_time:.1f}s..."
                )
                await asyncio.sleep(wait_time)
            else:
                logger.error(f"Download failed after {max_retries} attempts (transient error)")

        except httpx.HTTPStatusError as e:
            if 400 <= e.response.status_code < 500:
                logger.error(f"HTTP {e.response.status_code} (client error): {e}")
                raise

            # 5xx server error - retry
            last_error = e
            if attempt < max_retries - 1:
                wait_time = backoff_factor ** attempt
                logger.warning(
                    f"Download attempt {attempt + 1}/{max_retries} failed "
                    f"(HTTP {e.response.status_code} server error). "
                    f"Retrying in {wait_time:.1f}s..."
                )
                await asyncio.sleep(wait_time)
            else:
                logger.error(f"Download failed after {max_retries} attempts (HTTP {e.response.status_code})")

    if last_error:
        raise last_error

    raise RuntimeError(f"Failed to download {url} after {max_retries} attempts")


async def read_local_file(file_path: Path) -> bytes:
    """Read a local EPG file without blocking the event loop"""
    async with aiofiles.open(file_path, 'rb') as f:
        data = await f.read()
    logger.info(f"Read {len(data) / (1024 * 1024):.2f} MB from {file_path}")
    return data


def decompress_payload(data: bytes) -> bytes:
    """
    Undo any compression on a downloaded payload.

    Tries gzip, then zlib-wrapped deflate, then raw deflate; if all fail the
    data is returned unchanged as plain text.
    """
    try:
        return gzip.decompress(data)
    except (OSError, EOFError, zlib.error):
        pass

    for wbits in (zlib.MAX_WBITS, -zlib.MAX_WBITS):
        try:
            return zlib.decompress(data, wbits)
        except zlib.error:
            continue

    logger.debug("Payload is not compressed, using as plain text")
    return data
