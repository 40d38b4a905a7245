"""
Per-key asyncio locks for serializing mutations.

Note: locks are kept in memory per process, keyed by arbitrary tuples.
Idle locks are dropped once no coroutine holds or awaits them.
"""

import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import Hashable
import logging

logger = logging.getLogger(__name__)

class KeyedLocks:
    """Registry of asyncio locks, one per key."""
    
    def __init__(self):
        self._locks = defaultdict(asyncio.Lock)
        self._waiters = defaultdict(int)
    
    @asynccontextmanager
    async def hold(self, key: Hashable):
        """Hold the lock for ``key`` for the duration of the context."""
        lock = self._locks[key]
        self._waiters[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                self._waiters.pop(key, None)
                self._locks.pop(key, None)
    
    def is_locked(self, key: Hashable) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()
    
    def __len__(self) -> int:
        return len(self._locks)
