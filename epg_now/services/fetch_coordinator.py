"""
Fetch Coordination

Mutual exclusion for EPG updates. The daily schedule and manual refreshes
share one coordinator per manager; an update requested while another is
running is dropped, not queued.
"""
import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar


logger = logging.getLogger(__name__)

T = TypeVar("T")


class FetchCoordinator:
    """
    Coordinates EPG update operations to prevent concurrent executions.

    Uses an internal asyncio.Lock; Idle while unlocked, Updating while locked.
    """

    def __init__(self):
        """Initialize the fetch coordinator with a lock."""
        self._fetch_lock = asyncio.Lock()

    async def execute(self, fetch_func: Callable[[], Awaitable[T]]) -> tuple[bool, T | None]:
        """
        Execute an update with concurrency protection.

        Args:
            fetch_func: Async function to execute

        Returns:
            (True, result) if it ran, (False, None) if another update was in flight

        Raises:
            Any exception raised by fetch_func
        """
        if self._fetch_lock.locked():
            logger.warning("EPG update already in progress, skipping this request")
            return False, None

        async with self._fetch_lock:
            return True, await fetch_func()

    def is_fetching(self) -> bool:
        """
        Check if an update is currently in progress.

        Returns:
            True if an update is running, False otherwise
        """
        return self._fetch_lock.locked()
