"""
CreditShare Backend - Keyed Async Locks
========================================

What:  One asyncio.Lock per key, created on demand and dropped when unused.
Who:   DownloadService serializes the charge-and-record step per
       (user_id, file_id) with it.

Scope:
    Serializes coroutines inside one worker process. Across workers the
    database compare-and-set (insert_if_absent + conditional debit) is what
    guarantees a single charge; the lock keeps same-process duplicates from
    contending on the database at all.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Hashable


class KeyedLock:
    """Mutex per key with reference counting so idle keys do not accumulate."""

    def __init__(self) -> None:
        self._locks: Dict[Hashable, asyncio.Lock] = {}
        self._waiters: Dict[Hashable, int] = {}

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
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
        """Number of keys currently held or awaited."""
        return len(self._locks)
