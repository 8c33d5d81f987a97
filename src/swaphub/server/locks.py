"""Per-record mutual exclusion for asyncio services.

A ``KeyedLock`` hands out one ``asyncio.Lock`` per key (a swap request id, a
chat id, a room key) and forgets it once nobody holds or waits for it, so the
registry does not grow with the number of records ever touched.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class KeyedLock:
    """Registry of asyncio locks keyed by record id."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        """Hold the lock for ``key`` for the duration of the block."""
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def is_held(self, key: str) -> bool:
        """Check whether some task currently holds or waits for ``key``."""
        return key in self._locks

    def __len__(self) -> int:
        return len(self._locks)
