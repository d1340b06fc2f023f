"""Per-key asyncio mutual exclusion.

Writes to the same (tenant, product, field) version log and recomputes of the
same (tenant, product) audit are serialized inside one process with a
KeyedLock. Locks are created on demand and discarded once no task holds or
waits on them, so the table stays bounded by the number of keys in flight.
"""

import asyncio
from collections.abc import AsyncIterator, Hashable
from contextlib import asynccontextmanager


class KeyedLock:
    """A family of asyncio.Lock objects addressed by a hashable key."""

    def __init__(self) -> None:
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._waiters: dict[Hashable, int] = {}

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        """Acquire the lock for ``key`` for the duration of the block.

        Args:
            key: Any hashable key, typically a tuple of identifiers.
        """
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)
