"""
Per-identity asyncio locks.

Blogs, and images inside a gallery, are mutated with read-modify-write cycles
that the stores do not make atomic. `KeyedLock` hands out one `asyncio.Lock`
per key so operations on the same identity run one at a time while different
identities proceed concurrently.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Hashable


class KeyedLock:
    """
    Registry of asyncio locks keyed by identity.

    Entries are reference counted and dropped once no coroutine holds or waits
    on them, so the registry does not grow with every identity ever seen.

    Example:
        ```python
        locks = KeyedLock()
        async with locks.hold(blog.id):
            ...  # exclusive for this blog id
        ```
    """

    def __init__(self):
        self._locks: Dict[Hashable, asyncio.Lock] = {}
        self._waiters: Dict[Hashable, int] = {}

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                del self._locks[key]

    def is_locked(self, key: Hashable) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)
