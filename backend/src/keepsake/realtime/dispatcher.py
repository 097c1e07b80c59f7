"""Persist chat messages and fan them out to every live member of the account."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable, Protocol

from app.monitoring.metrics import (
    chat_dispatch_total,
    chat_push_failures_total,
    realtime_events_total,
)

from .frames import ChatMessageFrame, new_message_frame, partner_status_frame
from .presence import PresenceRegistry
from .store import ChatStore, MemberRef, MessageDraft, StoreTimeoutError, call_store

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PushTarget(Protocol):
    """Anything registered in the presence registry that can receive frames."""

    async def send(self, payload: dict[str, Any]) -> bool:
        ...


class DispatchError(RuntimeError):
    """Raised when a message could not be persisted; nothing was pushed."""


class FanOutDispatcher:
    """Turns an inbound ``chat_message`` frame into one stored row plus pushes.

    Persistence always happens exactly once and before any push, so a client
    that reconnects right after receiving ``new_message`` can find the message
    in the history endpoint.
    """

    def __init__(
        self,
        registry: PresenceRegistry[PushTarget],
        store: ChatStore,
        *,
        ephemeral_ttl: timedelta = timedelta(minutes=2),
        timeout_seconds: float | None = 10.0,
        clock: Clock = utcnow,
    ) -> None:
        self._registry = registry
        self._store = store
        self._ephemeral_ttl = ephemeral_ttl
        self._timeout = timeout_seconds
        self._clock = clock

    @property
    def ephemeral_ttl(self) -> timedelta:
        return self._ephemeral_ttl

    async def dispatch(self, sender_user_id: str, frame: ChatMessageFrame) -> dict[str, Any] | None:
        """Store the message and push it; return the stored message or ``None`` when skipped."""

        try:
            sender = await call_store(self._timeout, self._store.get_user, sender_user_id)
            if sender is None or sender.account_id is None:
                logger.warning("Dropping chat message from %s: user has no account", sender_user_id)
                chat_dispatch_total.labels("no_account").inc()
                return None

            room = await call_store(self._timeout, self._store.resolve_room, sender.account_id)
            if room is None:
                logger.warning(
                    "Dropping chat message from %s: account %s has no chat room",
                    sender_user_id,
                    sender.account_id,
                )
                chat_dispatch_total.labels("no_room").inc()
                return None

            now = self._clock()
            draft = MessageDraft(
                room_id=room.id,
                author_id=sender.id,
                content=frame.content,
                message_type=frame.message_type,
                attachments=frame.attachments,
                is_ephemeral=frame.is_ephemeral,
                created_at=now,
                expires_at=now + self._ephemeral_ttl if frame.is_ephemeral else None,
            )
            message = await call_store(self._timeout, self._store.create_message, draft)
        except asyncio.CancelledError:
            raise
        except StoreTimeoutError as exc:
            # The worker thread is not interrupted and may still commit the row.
            chat_dispatch_total.labels("failed").inc()
            logger.warning(
                "Storing chat message from %s timed out; it may still be saved: %s", sender_user_id, exc
            )
            raise DispatchError("Message could not be stored") from exc
        except Exception as exc:
            chat_dispatch_total.labels("failed").inc()
            logger.exception("Failed to persist chat message from %s", sender_user_id)
            raise DispatchError("Message could not be stored") from exc

        try:
            member_ids = await call_store(
                self._timeout, self._store.list_account_member_ids, sender.account_id
            )
        except asyncio.CancelledError:
            raise
        except Exception:
            # The message is stored; members will pick it up from the history.
            logger.exception(
                "Stored message %s but could not resolve members of account %s",
                message.get("id"),
                sender.account_id,
            )
            chat_dispatch_total.labels("stored_only").inc()
            return message

        delivered = await self._fan_out(member_ids, new_message_frame(message), frame_name="new_message")
        chat_dispatch_total.labels("delivered").inc()
        logger.debug(
            "Message %s from %s pushed to %d of %d member(s)",
            message.get("id"),
            sender_user_id,
            delivered,
            len(member_ids),
        )
        return message

    async def broadcast_presence(self, member: MemberRef, *, is_online: bool) -> int:
        """Tell the other live members of *member*'s account about a presence change."""

        if member.account_id is None:
            return 0
        member_ids = await call_store(
            self._timeout, self._store.list_account_member_ids, member.account_id
        )
        return await self._fan_out(
            member_ids,
            partner_status_frame(member.id, is_online),
            frame_name="partner_status",
            exclude=(member.id,),
        )

    async def _fan_out(
        self,
        member_ids: Iterable[str],
        payload: dict[str, Any],
        *,
        frame_name: str,
        exclude: Iterable[str] = (),
    ) -> int:
        skipped = set(exclude)
        delivered = 0
        for member_id in dict.fromkeys(member_ids):
            if member_id in skipped:
                continue
            target = await self._registry.lookup(member_id)
            if target is None:
                continue
            if await self._push(target, member_id, payload, frame_name):
                delivered += 1
        return delivered

    async def _push(
        self, target: PushTarget, member_id: str, payload: dict[str, Any], frame_name: str
    ) -> bool:
        try:
            sent = await target.send(payload)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.debug("Push of %s to %s failed", frame_name, member_id, exc_info=True)
            sent = False
        if sent:
            realtime_events_total.labels("chat", "out", frame_name).inc()
        else:
            chat_push_failures_total.labels(frame_name).inc()
        return sent
