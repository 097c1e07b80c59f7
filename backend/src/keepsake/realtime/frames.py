"""JSON frames exchanged over the ``/ws`` chat socket.

Inbound frames are validated with pydantic; outbound frames are plain
dictionaries built by the helpers at the bottom of the module.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from app.models.enums import ChatMessageType


class FrameError(ValueError):
    """Raised when an inbound frame cannot be understood."""


class _Frame(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class AuthFrame(_Frame):
    type: Literal["auth"]
    user_id: str = Field(alias="userId", min_length=1)
    token: str | None = None


class ChatMessageFrame(_Frame):
    type: Literal["chat_message"] = "chat_message"
    content: str | None = None
    message_type: ChatMessageType = Field(default=ChatMessageType.TEXT, alias="messageType")
    is_ephemeral: bool = Field(default=False, alias="isEphemeral")
    attachments: Dict[str, Any] | None = None

    @property
    def has_payload(self) -> bool:
        return bool(self.content and self.content.strip()) or bool(self.attachments)


class PingFrame(_Frame):
    type: Literal["ping", "pong"]


InboundFrame = Union[AuthFrame, ChatMessageFrame, PingFrame]

_FRAME_TYPES: dict[str, type[_Frame]] = {
    "auth": AuthFrame,
    "chat_message": ChatMessageFrame,
    "ping": PingFrame,
    "pong": PingFrame,
}


def parse_frame(raw: str | bytes) -> InboundFrame:
    """Decode a raw text frame, raising :class:`FrameError` on any problem."""

    try:
        payload = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise FrameError("Invalid message format") from exc

    if not isinstance(payload, dict):
        raise FrameError("Message payload must be a JSON object")

    frame_type = payload.get("type")
    model = _FRAME_TYPES.get(frame_type) if isinstance(frame_type, str) else None
    if model is None:
        raise FrameError(f"Unsupported frame type: {frame_type!r}")

    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        fields = ", ".join(".".join(str(part) for part in error["loc"]) for error in exc.errors())
        raise FrameError(f"Invalid {frame_type} frame: {fields or 'malformed payload'}") from exc


def new_message_frame(message: dict[str, Any]) -> dict[str, Any]:
    return {"type": "new_message", "message": message}


def partner_status_frame(user_id: str, is_online: bool) -> dict[str, Any]:
    return {"type": "partner_status", "userId": user_id, "isOnline": is_online}


def auth_ok_frame(user_id: str) -> dict[str, Any]:
    return {"type": "auth_ok", "userId": user_id}


def error_frame(code: str, detail: str) -> dict[str, Any]:
    return {"type": "error", "code": code, "detail": detail}


__all__ = [
    "AuthFrame",
    "ChatMessageFrame",
    "FrameError",
    "InboundFrame",
    "PingFrame",
    "auth_ok_frame",
    "error_frame",
    "new_message_frame",
    "parse_frame",
    "partner_status_frame",
]
