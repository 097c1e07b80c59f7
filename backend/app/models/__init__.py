"""Database models package."""

from .base import Base
from .chat import Account, ChatMessage, ChatRoom, Invitation, User
from .enums import ChatMessageType, UserRole

__all__ = [
    "Base",
    "Account",
    "User",
    "Invitation",
    "ChatRoom",
    "ChatMessage",
    "ChatMessageType",
    "UserRole",
]
