from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base
from app.models.enums import ChatMessageType, UserRole


def generate_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Account(Base):
    """Group of users sharing memories and a single chat room."""

    __tablename__ = "accounts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    invitation_code: Mapped[str | None] = mapped_column(String(32), unique=True)
    theme: Mapped[str] = mapped_column(String(32), default="dark", nullable=False)
    font: Mapped[str] = mapped_column(String(64), default="Inter", nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )

    members: Mapped[list["User"]] = relationship(back_populates="account")
    chat_room: Mapped["ChatRoom | None"] = relationship(
        back_populates="account", cascade="all, delete-orphan", uselist=False
    )
    invitations: Mapped[list["Invitation"]] = relationship(
        back_populates="account", cascade="all, delete-orphan"
    )


class User(Base):
    """Application user."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    username: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    hashed_password: Mapped[str | None] = mapped_column(String(255))
    role: Mapped[UserRole] = mapped_column(
        SAEnum(
            UserRole,
            name="user_role",
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
        ),
        default=UserRole.GUEST,
        nullable=False,
    )
    avatar: Mapped[str | None] = mapped_column(String(512))
    status: Mapped[str | None] = mapped_column(String(255))
    is_online: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    last_seen: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    account_id: Mapped[str | None] = mapped_column(
        ForeignKey("accounts.id", ondelete="SET NULL"), index=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )

    account: Mapped[Account | None] = relationship(back_populates="members")


class Invitation(Base):
    """Account-scoped invitation code."""

    __tablename__ = "invitations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    code: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    account_id: Mapped[str] = mapped_column(
        ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    created_by_id: Mapped[str | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    is_used: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    used_by_id: Mapped[str | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )

    account: Mapped[Account] = relationship(back_populates="invitations")


class ChatRoom(Base):
    """The single two-party chat room of an account."""

    __tablename__ = "chat_rooms"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    account_id: Mapped[str] = mapped_column(
        ForeignKey("accounts.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    participant1_id: Mapped[str | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    participant2_id: Mapped[str | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    background: Mapped[str | None] = mapped_column(String(512))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )

    account: Mapped[Account] = relationship(back_populates="chat_room")
    messages: Mapped[list["ChatMessage"]] = relationship(
        back_populates="room", cascade="all, delete-orphan", passive_deletes=True
    )


class ChatMessage(Base):
    """Message posted in a chat room."""

    __tablename__ = "chat_messages"
    __table_args__ = (
        Index("ix_chat_messages_room_created_at", "room_id", "created_at"),
        Index("ix_chat_messages_ephemeral_expiry", "is_ephemeral", "expires_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    room_id: Mapped[str] = mapped_column(
        ForeignKey("chat_rooms.id", ondelete="CASCADE"), nullable=False
    )
    author_id: Mapped[str | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    content: Mapped[str | None] = mapped_column(Text)
    type: Mapped[ChatMessageType] = mapped_column(
        SAEnum(
            ChatMessageType,
            name="chat_message_type",
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
        ),
        default=ChatMessageType.TEXT,
        nullable=False,
    )
    attachments: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    is_ephemeral: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )

    room: Mapped[ChatRoom] = relationship(back_populates="messages")
    author: Mapped[User | None] = relationship(foreign_keys=[author_id])
