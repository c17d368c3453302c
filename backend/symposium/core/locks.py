import asyncio
from contextlib import asynccontextmanager
from typing import Dict, Hashable


class KeyedLock:
    """In-process mutex keyed by an arbitrary identifier.

    Each key gets its own ``asyncio.Lock``; waiters on one key never block
    another. Entries are reference counted and dropped once nobody holds or
    waits on them, so the table does not grow with every attempt ever seen.
    asyncio.Lock wakes waiters in FIFO order, which gives arrival-order
    processing per key.
    """

    def __init__(self):
        self._locks: Dict[Hashable, asyncio.Lock] = {}
        self._users: Dict[Hashable, int] = {}

    @asynccontextmanager
    async def hold(self, key: Hashable):
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

    def is_held(self, key: Hashable) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)


attempt_locks = KeyedLock()
