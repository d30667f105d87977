"""Concurrency control for balance stream updates.

Provides one lock per (watch_address_id, token_address) stream so a polling
worker and a user-triggered refresh on the same stream serialize, while
different addresses or different tokens proceed independently.

The registry is an object owned by the ledger, not module state.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Hashable, Optional

from watchledger.exceptions import LockTimeoutError

logger = logging.getLogger(__name__)

NATIVE = "native"


def stream_key(watch_address_id: int, token_address: Optional[str]) -> tuple[int, str]:
    """Lock key for a balance stream."""
    return (watch_address_id, token_address or NATIVE)


class LockRegistry:
    """Lazily created asyncio locks keyed by any hashable."""

    def __init__(self):
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._registry_lock = asyncio.Lock()

    async def get_lock(self, key: Hashable) -> asyncio.Lock:
        """Get or create the lock for ``key``."""
        async with self._registry_lock:
            if key not in self._locks:
                self._locks[key] = asyncio.Lock()
            return self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)

    def clear(self) -> None:
        """Drop all locks (useful for testing)."""
        self._locks.clear()

    @asynccontextmanager
    async def hold(
        self,
        key: Hashable,
        timeout: Optional[float] = 30.0,
        operation: str = "stream_update",
    ):
        """Hold the lock for ``key`` for the duration of the block.

        Args:
            key: Lock key, usually from stream_key()
            timeout: Maximum time to wait for lock (None = wait forever)
            operation: Description for logging

        Raises:
            LockTimeoutError: lock not acquired within ``timeout``
        """
        lock = await self.get_lock(key)

        try:
            if timeout:
                await asyncio.wait_for(lock.acquire(), timeout=timeout)
            else:
                await lock.acquire()
        except asyncio.TimeoutError:
            logger.warning(f"Lock timeout for {key} after {timeout}s: {operation}")
            raise LockTimeoutError(f"Could not acquire lock for {key} within {timeout}s")

        logger.debug(f"Lock acquired for {key}: {operation}")
        try:
            yield
        finally:
            lock.release()
            logger.debug(f"Lock released for {key}: {operation}")
