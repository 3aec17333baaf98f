"""Per-identity asyncio locks.

Serialises session creation, credential refresh and mirror writes for one
chat identity while different identities run concurrently. Locks are held
in a WeakValueDictionary, so an identity's lock disappears once no task
holds a reference to it.
"""

from __future__ import annotations

import asyncio
import weakref
from contextlib import asynccontextmanager
from typing import AsyncIterator


class IdentityLocks:
    def __init__(self) -> None:
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )
        self._guard = asyncio.Lock()

    async def get(self, identity: str) -> asyncio.Lock:
        """Return the process-local lock for the given identity."""
        async with self._guard:
            lock = self._locks.get(identity)
            if lock is None:
                lock = asyncio.Lock()
                self._locks[identity] = lock
            return lock

    @asynccontextmanager
    async def hold(self, identity: str) -> AsyncIterator[None]:
        lock = await self.get(identity)
        async with lock:
            yield
