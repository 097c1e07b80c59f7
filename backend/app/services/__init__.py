"""Application service helpers."""

from .chat_store import (
    SqlChatStore,
    ensure_chat_room,
    get_chat_room,
    list_messages,
    mark_message_read,
)

__all__ = [
    "SqlChatStore",
    "ensure_chat_room",
    "get_chat_room",
    "list_messages",
    "mark_message_read",
]
