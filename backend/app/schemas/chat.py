"""Schemas related to chat rooms and messages."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import field_serializer

from app.models.enums import ChatMessageType
from app.schemas.base import CamelModel


def _as_utc(value: datetime) -> datetime:
    # Some backends (SQLite) hand back naive datetimes for timezone-aware columns.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class ChatRoomRead(CamelModel):
    """Serialized chat room of an account."""

    id: str
    account_id: str
    participant1_id: str | None = None
    participant2_id: str | None = None
    background: str | None = None
    created_at: datetime

    @field_serializer("created_at")
    def _serialize_created_at(self, value: datetime) -> str:
        return _as_utc(value).isoformat()


class ChatMessageRead(CamelModel):
    """Serialized chat message, used both over HTTP and in ``new_message`` frames."""

    id: str
    room_id: str
    author_id: str | None = None
    content: str | None = None
    type: ChatMessageType
    attachments: dict[str, Any] | None = None
    is_ephemeral: bool = False
    expires_at: datetime | None = None
    is_read: bool = False
    created_at: datetime

    @field_serializer("created_at", "expires_at")
    def _serialize_timestamps(self, value: datetime | None) -> str | None:
        if value is None:
            return None
        return _as_utc(value).isoformat()

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)
