"""Process-wide realtime chat objects and their lifecycle hooks."""

from __future__ import annotations

import logging
from datetime import timedelta

from sqlalchemy.orm import Session, sessionmaker

from app.config import get_settings
from app.services.chat_store import SqlChatStore

from .dispatcher import FanOutDispatcher
from .presence import PresenceRegistry
from .session import ConnectionSession
from .sweeper import ExpirySweeper

logger = logging.getLogger(__name__)


settings = get_settings()

store = SqlChatStore()
presence_registry: PresenceRegistry[ConnectionSession] = PresenceRegistry()
dispatcher = FanOutDispatcher(
    presence_registry,
    store,
    ephemeral_ttl=timedelta(seconds=settings.ephemeral_message_ttl_seconds),
    timeout_seconds=settings.database_operation_timeout_seconds,
)
expiry_sweeper = ExpirySweeper(
    store,
    interval_seconds=settings.expiry_sweep_interval_seconds,
    timeout_seconds=settings.database_operation_timeout_seconds,
)


async def startup_realtime() -> None:
    if not settings.expiry_sweep_enabled:
        logger.info("Ephemeral expiry sweeper disabled by configuration")
        return
    expiry_sweeper.start()


async def shutdown_realtime() -> None:
    await expiry_sweeper.stop()


# Convenience accessors exposed to the FastAPI layer ----------------------


def configure_realtime(
    *,
    session_factory: sessionmaker[Session] | None = None,
    ephemeral_ttl_seconds: int | None = None,
    sweep_interval_seconds: float | None = None,
) -> None:
    """Rebuild the shared objects, typically to point them at another database."""

    global presence_registry, dispatcher, expiry_sweeper

    store.configure(session_factory)
    ttl = ephemeral_ttl_seconds or settings.ephemeral_message_ttl_seconds
    interval = sweep_interval_seconds or settings.expiry_sweep_interval_seconds
    presence_registry = PresenceRegistry()
    dispatcher = FanOutDispatcher(
        presence_registry,
        store,
        ephemeral_ttl=timedelta(seconds=ttl),
        timeout_seconds=settings.database_operation_timeout_seconds,
    )
    expiry_sweeper = ExpirySweeper(
        store,
        interval_seconds=interval,
        timeout_seconds=settings.database_operation_timeout_seconds,
    )


def get_chat_store() -> SqlChatStore:
    return store


def get_presence_registry() -> PresenceRegistry[ConnectionSession]:
    return presence_registry


def get_dispatcher() -> FanOutDispatcher:
    return dispatcher


def get_expiry_sweeper() -> ExpirySweeper:
    return expiry_sweeper


__all__ = [
    "configure_realtime",
    "get_chat_store",
    "get_dispatcher",
    "get_expiry_sweeper",
    "get_presence_registry",
    "shutdown_realtime",
    "startup_realtime",
]
