"""WebSocket endpoint for the realtime couple chat."""

from __future__ import annotations

import logging

import anyio
from fastapi import APIRouter, WebSocket
from fastapi.exceptions import HTTPException

from app.config import get_settings
from app.core.security import decode_access_token
from app.monitoring.metrics import realtime_connections

from keepsake.realtime.managers import get_chat_store, get_dispatcher, get_presence_registry
from keepsake.realtime.session import ConnectionSession
from keepsake.realtime.transport import iter_keepalive_messages, receive_frame

router = APIRouter(tags=["ws"])

settings = get_settings()

logger = logging.getLogger(__name__)


def _token_subject(token: str) -> str | None:
    """Return the user id carried by an access token, or ``None`` when it is not valid."""

    try:
        payload = decode_access_token(token)
    except HTTPException:
        return None
    subject = payload.get("sub")
    return subject if isinstance(subject, str) and subject else None


@router.websocket("/ws")
async def websocket_chat(websocket: WebSocket) -> None:
    """Chat socket: ``auth`` first, then ``chat_message`` frames fan out to the account."""

    await websocket.accept()
    realtime_connections.labels("chat").inc()

    session = ConnectionSession(
        websocket,
        registry=get_presence_registry(),
        dispatcher=get_dispatcher(),
        store=get_chat_store(),
        token_verifier=_token_subject,
        require_token=settings.websocket_require_token,
        connection_token=websocket.query_params.get("token"),
        timeout_seconds=settings.database_operation_timeout_seconds,
        max_content_length=settings.chat_message_max_length,
    )

    try:
        async for raw_message in iter_keepalive_messages(
            websocket,
            lambda: receive_frame(websocket),
            timeout_seconds=settings.websocket_keepalive_timeout_seconds,
            ping_interval_seconds=settings.websocket_keepalive_ping_interval_seconds,
        ):
            await session.handle_text(raw_message)
    finally:
        # Presence must be released even when the server is tearing the task down.
        with anyio.CancelScope(shield=True):
            await session.on_closed()
        realtime_connections.labels("chat").dec()
        logger.debug("Chat socket closed for %s", session.user_id or "anonymous")
