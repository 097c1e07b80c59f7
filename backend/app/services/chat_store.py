"""SQLAlchemy implementation of the chat persistence boundary.

:class:`SqlChatStore` is what the realtime core talks to. The module level
helpers below are used by the HTTP routes, which already hold a request
scoped session.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from app.database import get_db_session
from app.models import ChatMessage, ChatRoom, User
from app.schemas.chat import ChatMessageRead

from keepsake.realtime.store import MemberRef, MessageDraft, RoomRef

logger = logging.getLogger(__name__)


def _to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class SqlChatStore:
    """Short-lived session per call; safe to use from worker threads."""

    def __init__(self, session_factory: sessionmaker[Session] | None = None) -> None:
        self._session_factory = session_factory

    def configure(self, session_factory: sessionmaker[Session] | None) -> None:
        self._session_factory = session_factory

    def get_user(self, user_id: str) -> MemberRef | None:
        with get_db_session(self._session_factory) as db:
            user = db.get(User, user_id)
            if user is None:
                return None
            return MemberRef(id=user.id, account_id=user.account_id)

    def resolve_room(self, account_id: str) -> RoomRef | None:
        with get_db_session(self._session_factory) as db:
            room = db.execute(
                select(ChatRoom).where(ChatRoom.account_id == account_id)
            ).scalar_one_or_none()
            if room is None:
                return None
            return RoomRef(id=room.id, account_id=room.account_id)

    def create_message(self, draft: MessageDraft) -> dict[str, Any]:
        with get_db_session(self._session_factory) as db:
            message = ChatMessage(
                room_id=draft.room_id,
                author_id=draft.author_id,
                content=draft.content,
                type=draft.message_type,
                attachments=draft.attachments,
                is_ephemeral=draft.is_ephemeral,
                expires_at=_to_utc(draft.expires_at) if draft.expires_at else None,
                created_at=_to_utc(draft.created_at),
            )
            db.add(message)
            try:
                db.commit()
            except Exception:
                db.rollback()
                raise
            db.refresh(message)
            return ChatMessageRead.model_validate(message).to_wire()

    def list_account_member_ids(self, account_id: str) -> list[str]:
        with get_db_session(self._session_factory) as db:
            stmt = select(User.id).where(User.account_id == account_id).order_by(User.created_at)
            return list(db.execute(stmt).scalars())

    def set_presence(self, user_id: str, *, is_online: bool, last_seen: datetime | None = None) -> None:
        with get_db_session(self._session_factory) as db:
            user = db.get(User, user_id)
            if user is None:
                logger.debug("Skipping presence update for missing user %s", user_id)
                return
            user.is_online = is_online
            if last_seen is not None:
                user.last_seen = _to_utc(last_seen)
            db.commit()

    def purge_expired_messages(self, now: datetime) -> int:
        cutoff = _to_utc(now)
        with get_db_session(self._session_factory) as db:
            result = db.execute(
                delete(ChatMessage)
                .where(ChatMessage.is_ephemeral.is_(True))
                .where(ChatMessage.expires_at.is_not(None))
                .where(ChatMessage.expires_at <= cutoff)
                .execution_options(synchronize_session=False)
            )
            db.commit()
            return int(result.rowcount or 0)


def get_chat_room(db: Session, account_id: str) -> ChatRoom | None:
    return db.execute(select(ChatRoom).where(ChatRoom.account_id == account_id)).scalar_one_or_none()


def ensure_chat_room(db: Session, account_id: str) -> ChatRoom:
    """Return the account's chat room, creating it when missing.

    Participants are filled from the account members in join order. An
    existing room gets its free participant slot filled when a second member
    has joined since it was created.
    """

    member_ids = list(
        db.execute(
            select(User.id).where(User.account_id == account_id).order_by(User.created_at)
        ).scalars()
    )

    room = get_chat_room(db, account_id)
    if room is None:
        room = ChatRoom(
            account_id=account_id,
            participant1_id=member_ids[0] if member_ids else None,
            participant2_id=member_ids[1] if len(member_ids) > 1 else None,
        )
        db.add(room)
        try:
            db.commit()
        except IntegrityError:
            # Another request created it first.
            db.rollback()
            existing = get_chat_room(db, account_id)
            if existing is None:
                raise
            return existing
        db.refresh(room)
        return room

    changed = False
    for member_id in member_ids:
        if member_id in (room.participant1_id, room.participant2_id):
            continue
        if room.participant1_id is None:
            room.participant1_id = member_id
            changed = True
        elif room.participant2_id is None:
            room.participant2_id = member_id
            changed = True
    if changed:
        db.commit()
        db.refresh(room)
    return room


def list_messages(db: Session, room_id: str, *, limit: int, offset: int = 0) -> list[ChatMessage]:
    """Newest first, the order the chat history endpoint has always returned."""

    stmt = (
        select(ChatMessage)
        .where(ChatMessage.room_id == room_id)
        .order_by(ChatMessage.created_at.desc(), ChatMessage.id.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(db.execute(stmt).scalars())


def mark_message_read(db: Session, room_id: str, message_id: str) -> ChatMessage | None:
    message = db.execute(
        select(ChatMessage).where(ChatMessage.id == message_id, ChatMessage.room_id == room_id)
    ).scalar_one_or_none()
    if message is None:
        return None
    if not message.is_read:
        message.is_read = True
        db.commit()
        db.refresh(message)
    return message


__all__ = [
    "SqlChatStore",
    "ensure_chat_room",
    "get_chat_room",
    "list_messages",
    "mark_message_read",
]
