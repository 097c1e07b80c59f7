"""Realtime chat core: sessions, presence, fan-out and ephemeral expiry."""

from .managers import (  # noqa: F401
    configure_realtime,
    get_chat_store,
    get_dispatcher,
    get_expiry_sweeper,
    get_presence_registry,
    shutdown_realtime,
    startup_realtime,
)

__all__ = [
    "configure_realtime",
    "startup_realtime",
    "shutdown_realtime",
    "get_chat_store",
    "get_dispatcher",
    "get_expiry_sweeper",
    "get_presence_registry",
]
