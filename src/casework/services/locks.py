"""
casework.services.locks

Per-entity serialization for in-flight logical operations.

Responsibilities:
- Hand out one asyncio.Lock per entity key (e.g. ("group", id)).
- Forget locks nobody holds or waits on, so the registry does not grow unbounded.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Hashable
from contextlib import asynccontextmanager


class KeyedLocks:
    def __init__(self) -> None:
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._users: dict[Hashable, int] = {}

    @asynccontextmanager
    async def hold(self, kind: str, entity_id: Hashable) -> AsyncIterator[None]:
        key = (kind, entity_id)
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


# --- Module Notes -----------------------------------------------------------
# This serializes writers inside one process. Multi-process deployments additionally rely
# on row locks (`with_for_update`) and the partial unique indexes in `db.models`.
