from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Dict, Iterable


class HostLockRegistry:
    """Per-host asyncio locks for the booking commit path.

    Locks for several hosts are always taken in sorted order so two team
    bookings can never wait on each other.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._meta_lock = asyncio.Lock()

    async def _get_lock(self, host_id: str) -> asyncio.Lock:
        async with self._meta_lock:
            if host_id not in self._locks:
                self._locks[host_id] = asyncio.Lock()
            return self._locks[host_id]

    @asynccontextmanager
    async def hold(self, host_ids: Iterable[str]):
        locks = [await self._get_lock(h) for h in sorted(set(host_ids))]
        acquired = []
        try:
            for lock in locks:
                await lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()


host_locks = HostLockRegistry()
