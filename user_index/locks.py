"""Per-user mutual exclusion for the fetch, merge and write sequence."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Dict


def _normalize_user_id(user_id: str) -> str:
    normalized = user_id.strip().lower()
    if not normalized:
        raise ValueError("User id cannot be empty when acquiring a sync lock.")
    return normalized


@dataclass
class _LockEntry:
    lock: asyncio.Lock
    holders: int = 0


class UserLockRegistry:
    """Process-local registry of ``asyncio.Lock`` keyed by user id.

    An entry lives only while some task holds or waits on it.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, _LockEntry] = {}

    @asynccontextmanager
    async def hold(self, user_id: str) -> AsyncIterator[None]:
        key = _normalize_user_id(user_id)
        entry = self._entries.get(key)
        if entry is None:
            entry = _LockEntry(lock=asyncio.Lock())
            self._entries[key] = entry
        entry.holders += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.holders -= 1
            if entry.holders == 0 and self._entries.get(key) is entry:
                del self._entries[key]

    def is_locked(self, user_id: str) -> bool:
        entry = self._entries.get(_normalize_user_id(user_id))
        return entry is not None and entry.lock.locked()

    def __len__(self) -> int:
        return len(self._entries)

    def clear(self) -> None:
        self._entries.clear()


user_locks = UserLockRegistry()

__all__ = ["UserLockRegistry", "user_locks"]
