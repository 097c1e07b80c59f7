"""In-memory registry of the live connection bound to each user."""

from __future__ import annotations

import asyncio
from typing import Dict, Generic, TypeVar

ConnectionT = TypeVar("ConnectionT")


class PresenceRegistry(Generic[ConnectionT]):
    """Maps a user id to the single connection currently authenticated as that user.

    Every operation takes the same lock, so register/unregister/lookup never
    interleave. The registry never closes connections itself: ``register``
    hands the superseded handle back to the caller.
    """

    def __init__(self) -> None:
        self._connections: Dict[str, ConnectionT] = {}
        self._lock = asyncio.Lock()
        self._user_locks: Dict[str, asyncio.Lock] = {}

    def __len__(self) -> int:
        return len(self._connections)

    async def register(self, user_id: str, connection: ConnectionT) -> ConnectionT | None:
        async with self._lock:
            previous = self._connections.get(user_id)
            self._connections[user_id] = connection
        if previous is connection:
            return None
        return previous

    async def unregister(self, user_id: str, connection: ConnectionT | None = None) -> bool:
        """Drop the entry for *user_id*.

        When *connection* is given the entry is only removed if it still
        points at that connection, so a superseded session cannot evict its
        replacement.
        """

        async with self._lock:
            current = self._connections.get(user_id)
            if current is None:
                return False
            if connection is not None and current is not connection:
                return False
            self._connections.pop(user_id, None)
            return True

    async def lookup(self, user_id: str) -> ConnectionT | None:
        async with self._lock:
            return self._connections.get(user_id)

    async def online_user_ids(self) -> list[str]:
        async with self._lock:
            return sorted(self._connections)

    def user_lock(self, user_id: str) -> asyncio.Lock:
        """Lock serialising the connect and disconnect bookkeeping of one user.

        Sessions hold it across register or unregister and the presence write
        that follows, so a stale offline write cannot land after a newer
        connection marked the user online.
        """

        lock = self._user_locks.get(user_id)
        if lock is None:
            lock = self._user_locks[user_id] = asyncio.Lock()
        return lock
