"""Persistence boundary consumed by the realtime chat core.

The core never talks to SQLAlchemy directly. It depends on the small
:class:`ChatStore` protocol below, whose methods are synchronous and are
always executed through :func:`call_store` so that the event loop is never
blocked on the database and every call is bounded by a timeout.
"""

from __future__ import annotations

import asyncio
import functools
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Protocol, TypeVar

from app.models.enums import ChatMessageType

T = TypeVar("T")


class StoreTimeoutError(TimeoutError):
    """Raised when a persistence call exceeds its time budget."""


@dataclass(slots=True, frozen=True)
class MemberRef:
    """User identity as seen by the chat core."""

    id: str
    account_id: str | None


@dataclass(slots=True, frozen=True)
class RoomRef:
    """Chat room resolved for an account."""

    id: str
    account_id: str


@dataclass(slots=True, frozen=True)
class MessageDraft:
    """Everything needed to insert one chat message row."""

    room_id: str
    author_id: str
    content: str | None
    message_type: ChatMessageType
    attachments: dict[str, Any] | None
    is_ephemeral: bool
    created_at: datetime
    expires_at: datetime | None


class ChatStore(Protocol):
    """Synchronous persistence operations used by sessions, dispatcher and sweeper."""

    def get_user(self, user_id: str) -> MemberRef | None:
        """Return the user with *user_id* or ``None``."""

    def resolve_room(self, account_id: str) -> RoomRef | None:
        """Return the chat room of the account, never creating one."""

    def create_message(self, draft: MessageDraft) -> dict[str, Any]:
        """Insert a message and return its wire representation."""

    def list_account_member_ids(self, account_id: str) -> list[str]:
        """Return the ids of every user belonging to the account."""

    def set_presence(self, user_id: str, *, is_online: bool, last_seen: datetime | None = None) -> None:
        """Persist the online flag (and last seen timestamp when going offline)."""

    def purge_expired_messages(self, now: datetime) -> int:
        """Delete ephemeral messages whose expiry is at or before *now*."""


async def call_store(timeout: float | None, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Run a blocking store call in a worker thread with an upper time bound.

    A timeout abandons the thread rather than stopping it, so the call can
    still complete after :class:`StoreTimeoutError` was raised.
    """

    call = functools.partial(func, *args, **kwargs)
    try:
        if timeout and timeout > 0:
            return await asyncio.wait_for(asyncio.to_thread(call), timeout=timeout)
        return await asyncio.to_thread(call)
    except asyncio.TimeoutError as exc:
        name = getattr(func, "__name__", repr(func))
        raise StoreTimeoutError(f"{name} did not complete within {timeout}s") from exc


__all__ = [
    "ChatStore",
    "MemberRef",
    "MessageDraft",
    "RoomRef",
    "StoreTimeoutError",
    "call_store",
]
