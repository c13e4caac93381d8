"""Per-key asyncio locks."""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Hashable


class KeyedLocks:
    """``asyncio.Lock`` per key (usually a user id or run id).

    Serializes work for one key inside a single process while leaving
    other keys independent. Cross-process exclusion is left to the store.
    A key's lock lives only while someone holds it or waits for it.

    Usage::

        locks = KeyedLocks()
        async with locks.hold(user_id):
            ...
    """

    def __init__(self) -> None:
        self._locks: Dict[Hashable, asyncio.Lock] = {}
        self._holders: Dict[Hashable, int] = {}

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        # No await between lookup and insert, so this is race-free on one loop.
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._holders[key] = self._holders.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[key] -= 1
            if not self._holders[key]:
                del self._holders[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)
