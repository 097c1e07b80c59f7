"""Per-connection state machine for the ``/ws`` chat socket."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Optional

from fastapi.websockets import WebSocket

from app.monitoring.metrics import (
    realtime_events_total,
    realtime_online_users,
    realtime_rejected_frames_total,
)

from .dispatcher import Clock, DispatchError, FanOutDispatcher, utcnow
from .frames import (
    AuthFrame,
    ChatMessageFrame,
    FrameError,
    InboundFrame,
    PingFrame,
    auth_ok_frame,
    error_frame,
    parse_frame,
)
from .presence import PresenceRegistry
from .store import ChatStore, MemberRef, call_store
from .transport import close_quietly, safe_send_json

logger = logging.getLogger(__name__)

TokenVerifier = Callable[[str], Optional[str]]

SUPERSEDED_CLOSE_CODE = 4000
SUPERSEDED_CLOSE_REASON = "Session superseded"


class SessionState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"
    CLOSED = "closed"


class ConnectionSession:
    """Binds one websocket to at most one user and routes its frames.

    Frames are handled one at a time in arrival order. The session is the
    handle stored in the presence registry, so the dispatcher pushes to other
    members through :meth:`send`.
    """

    def __init__(
        self,
        websocket: WebSocket,
        *,
        registry: PresenceRegistry["ConnectionSession"],
        dispatcher: FanOutDispatcher,
        store: ChatStore,
        token_verifier: TokenVerifier | None = None,
        require_token: bool = True,
        connection_token: str | None = None,
        timeout_seconds: float | None = 10.0,
        max_content_length: int = 4000,
        clock: Clock = utcnow,
    ) -> None:
        self.websocket = websocket
        self._registry = registry
        self._dispatcher = dispatcher
        self._store = store
        self._token_verifier = token_verifier
        self._require_token = require_token
        self._connection_token = connection_token
        self._timeout = timeout_seconds
        self._max_content_length = max_content_length
        self._clock = clock
        self.state = SessionState.UNAUTHENTICATED
        self.member: MemberRef | None = None

    def __repr__(self) -> str:  # pragma: no cover - debugging helper
        return f"<ConnectionSession user={self.user_id!r} state={self.state.value}>"

    @property
    def user_id(self) -> str | None:
        return self.member.id if self.member else None

    async def send(self, payload: dict[str, Any]) -> bool:
        if self.state is SessionState.CLOSED:
            return False
        return await safe_send_json(self.websocket, payload)

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        await close_quietly(self.websocket, code=code, reason=reason)

    async def handle_text(self, raw: str | bytes) -> None:
        try:
            frame = parse_frame(raw)
        except FrameError as exc:
            logger.warning("Rejected websocket frame from %s: %s", self.user_id or "anonymous", exc)
            await self._reject("invalid_frame", str(exc))
            return
        await self.handle_frame(frame)

    async def handle_frame(self, frame: InboundFrame) -> None:
        if self.state is SessionState.CLOSED:
            return
        realtime_events_total.labels("chat", "in", frame.type).inc()

        if isinstance(frame, AuthFrame):
            await self._authenticate(frame)
        elif isinstance(frame, ChatMessageFrame):
            await self._handle_chat_message(frame)
        elif isinstance(frame, PingFrame):
            if frame.type == "ping":
                await self.send({"type": "pong"})

    async def on_closed(self) -> None:
        """Release presence once the transport is gone."""

        if self.state is SessionState.CLOSED:
            return
        previous_state = self.state
        self.state = SessionState.CLOSED
        member = self.member
        if previous_state is not SessionState.AUTHENTICATED or member is None:
            return

        async with self._registry.user_lock(member.id):
            removed = await self._registry.unregister(member.id, self)
            realtime_online_users.set(len(self._registry))
            if not removed:
                # A newer connection owns the user now; it keeps them online.
                logger.debug("Superseded session for %s closed", member.id)
                return

            try:
                await call_store(
                    self._timeout,
                    self._store.set_presence,
                    member.id,
                    is_online=False,
                    last_seen=self._clock(),
                )
            except Exception:
                logger.exception("Failed to mark user %s offline", member.id)

            try:
                await self._dispatcher.broadcast_presence(member, is_online=False)
            except Exception:
                logger.exception("Failed to broadcast offline status for %s", member.id)
        logger.info("User %s disconnected from chat", member.id)

    async def _authenticate(self, frame: AuthFrame) -> None:
        if self.state is SessionState.AUTHENTICATED and self.member is not None:
            if self.member.id != frame.user_id:
                await self._reject("auth_failed", "Connection is already authenticated as another user")
                return
            await self.send(auth_ok_frame(self.member.id))
            return

        problem = self._identity_problem(frame)
        if problem is not None:
            logger.warning("Websocket auth for %s rejected: %s", frame.user_id, problem)
            await self._reject("auth_failed", problem)
            return

        try:
            member = await call_store(self._timeout, self._store.get_user, frame.user_id)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Failed to load user %s during websocket auth", frame.user_id)
            await self._reject("auth_failed", "Authentication is temporarily unavailable")
            return
        if member is None:
            logger.warning("Websocket auth for unknown user %s", frame.user_id)
            await self._reject("auth_failed", "Unknown user")
            return

        async with self._registry.user_lock(member.id):
            if self.state is SessionState.CLOSED:
                return
            self.member = member
            self.state = SessionState.AUTHENTICATED
            previous = await self._registry.register(member.id, self)
            realtime_online_users.set(len(self._registry))
            if previous is not None:
                logger.info("New connection for %s supersedes the previous one", member.id)
                await previous.close(SUPERSEDED_CLOSE_CODE, SUPERSEDED_CLOSE_REASON)

            try:
                await call_store(self._timeout, self._store.set_presence, member.id, is_online=True)
            except Exception:
                logger.exception("Failed to mark user %s online", member.id)

            await self.send(auth_ok_frame(member.id))

            try:
                await self._dispatcher.broadcast_presence(member, is_online=True)
            except Exception:
                logger.exception("Failed to broadcast online status for %s", member.id)
        logger.info("User %s authenticated on chat socket", member.id)

    def _identity_problem(self, frame: AuthFrame) -> str | None:
        if not self._require_token:
            return None
        token = frame.token or self._connection_token
        if not token:
            return "Access token required"
        if self._token_verifier is None:
            return "Token verification is not configured"
        subject = self._token_verifier(token)
        if subject is None:
            return "Invalid access token"
        if subject != frame.user_id:
            return "Token does not belong to this user"
        return None

    async def _handle_chat_message(self, frame: ChatMessageFrame) -> None:
        if self.state is not SessionState.AUTHENTICATED or self.member is None:
            await self._reject("unauthenticated", "Authentication required")
            return

        if frame.content is not None and len(frame.content) > self._max_content_length:
            await self._reject(
                "invalid_frame", f"Message content exceeds {self._max_content_length} characters"
            )
            return
        if not frame.has_payload:
            await self._reject("invalid_frame", "Message must include content or attachments")
            return

        try:
            await self._dispatcher.dispatch(self.member.id, frame)
        except DispatchError as exc:
            await self._reject("dispatch_failed", str(exc))

    async def _reject(self, code: str, detail: str) -> None:
        realtime_rejected_frames_total.labels(code).inc()
        await self.send(error_frame(code, detail))


__all__ = [
    "ConnectionSession",
    "SUPERSEDED_CLOSE_CODE",
    "SUPERSEDED_CLOSE_REASON",
    "SessionState",
    "TokenVerifier",
]
