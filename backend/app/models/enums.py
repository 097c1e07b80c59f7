from __future__ import annotations

from enum import Enum


class UserRole(str, Enum):
    """Roles a user can hold inside an account."""

    MAIN_ADMIN = "main_admin"
    CO_ADMIN = "co_admin"
    GUEST = "guest"


class ChatMessageType(str, Enum):
    """Kinds of chat messages exchanged in a chat room."""

    TEXT = "text"
    PHOTO = "photo"
    VIDEO = "video"
    EPHEMERAL_PHOTO = "ephemeral_photo"
    EPHEMERAL_VIDEO = "ephemeral_video"
