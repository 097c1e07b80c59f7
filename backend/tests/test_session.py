from __future__ import annotations

import asyncio
import json
import threading
import logging
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
from fastapi.websockets import WebSocketState
from sqlalchemy import func, select

from app.api.ws import _token_subject
from app.core.security import create_access_token
from app.models import ChatMessage, User
from keepsake.realtime.dispatcher import FanOutDispatcher
from keepsake.realtime.presence import PresenceRegistry
from keepsake.realtime.session import ConnectionSession, SessionState

NOW = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


class DummyWebSocket:
    def __init__(self) -> None:
        self.application_state = WebSocketState.CONNECTED
        self.sent: list[dict[str, Any]] = []
        self.closed: tuple[int, str | None] | None = None

    async def send_json(self, payload: dict[str, Any]) -> None:
        self.sent.append(payload)

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        self.closed = (code, reason)
        self.application_state = WebSocketState.DISCONNECTED

    def types(self) -> list[str]:
        return [frame["type"] for frame in self.sent]


@pytest.fixture()
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture()
def presence() -> PresenceRegistry[ConnectionSession]:
    return PresenceRegistry()


@pytest.fixture()
def make_session(presence, chat_store):
    dispatcher = FanOutDispatcher(
        presence, chat_store, ephemeral_ttl=timedelta(seconds=120), clock=lambda: NOW
    )

    def factory(**overrides: Any) -> ConnectionSession:
        options: dict[str, Any] = {
            "registry": presence,
            "dispatcher": dispatcher,
            "store": chat_store,
            "token_verifier": _token_subject,
            "require_token": True,
            "clock": lambda: NOW,
        }
        options.update(overrides)
        return ConnectionSession(DummyWebSocket(), **options)

    return factory


def auth_frame(user_id: str, *, token: str | None = "valid") -> str:
    payload: dict[str, Any] = {"type": "auth", "userId": user_id}
    if token == "valid":
        payload["token"] = create_access_token({"sub": user_id})
    elif token is not None:
        payload["token"] = token
    return json.dumps(payload)


def chat_frame(content: str = "hi", **extra: Any) -> str:
    return json.dumps({"type": "chat_message", "content": content, **extra})


def _reload_user(db_session, user_id: str) -> User:
    db_session.expire_all()
    return db_session.get(User, user_id)


def _message_count(db_session) -> int:
    db_session.expire_all()
    return db_session.execute(select(func.count()).select_from(ChatMessage)).scalar_one()


@pytest.mark.anyio("asyncio")
async def test_auth_registers_session_and_marks_user_online(
    make_session, presence, couple, db_session
) -> None:
    partner = make_session()
    await partner.handle_text(auth_frame(couple.second_id))
    session = make_session()

    await session.handle_text(auth_frame(couple.first_id))

    assert session.state is SessionState.AUTHENTICATED
    assert session.websocket.sent[0] == {"type": "auth_ok", "userId": couple.first_id}
    assert await presence.lookup(couple.first_id) is session
    assert _reload_user(db_session, couple.first_id).is_online is True
    assert partner.websocket.sent[-1] == {
        "type": "partner_status",
        "userId": couple.first_id,
        "isOnline": True,
    }


@pytest.mark.anyio("asyncio")
async def test_chat_message_before_auth_is_rejected_without_side_effects(
    make_session, couple, db_session
) -> None:
    partner = make_session()
    await partner.handle_text(auth_frame(couple.second_id))
    anonymous = make_session()

    await anonymous.handle_text(chat_frame("sneaky"))

    assert anonymous.websocket.sent == [
        {"type": "error", "code": "unauthenticated", "detail": "Authentication required"}
    ]
    assert "new_message" not in partner.websocket.types()
    assert _message_count(db_session) == 0


@pytest.mark.anyio("asyncio")
async def test_token_for_another_user_is_rejected(make_session, presence, couple) -> None:
    session = make_session()

    await session.handle_text(
        auth_frame(couple.first_id, token=create_access_token({"sub": couple.second_id}))
    )

    assert session.state is SessionState.UNAUTHENTICATED
    assert session.websocket.sent[0]["code"] == "auth_failed"
    assert await presence.lookup(couple.first_id) is None


@pytest.mark.anyio("asyncio")
async def test_missing_or_garbage_token_is_rejected(make_session, couple) -> None:
    missing = make_session()
    garbage = make_session()

    await missing.handle_text(auth_frame(couple.first_id, token=None))
    await garbage.handle_text(auth_frame(couple.first_id, token="not-a-jwt"))

    assert missing.websocket.sent[0]["code"] == "auth_failed"
    assert garbage.websocket.sent[0]["code"] == "auth_failed"
    assert missing.state is SessionState.UNAUTHENTICATED
    assert garbage.state is SessionState.UNAUTHENTICATED


@pytest.mark.anyio("asyncio")
async def test_token_from_connection_query_is_accepted(make_session, couple) -> None:
    session = make_session(connection_token=create_access_token({"sub": couple.first_id}))

    await session.handle_text(auth_frame(couple.first_id, token=None))

    assert session.state is SessionState.AUTHENTICATED


@pytest.mark.anyio("asyncio")
async def test_trusted_mode_accepts_user_id_without_token(make_session, couple) -> None:
    session = make_session(require_token=False, token_verifier=None)

    await session.handle_text(auth_frame(couple.first_id, token=None))

    assert session.state is SessionState.AUTHENTICATED


@pytest.mark.anyio("asyncio")
async def test_unknown_user_is_rejected(make_session, couple) -> None:
    session = make_session(require_token=False)

    await session.handle_text(auth_frame("missing-user", token=None))

    assert session.state is SessionState.UNAUTHENTICATED
    assert session.websocket.sent == [
        {"type": "error", "code": "auth_failed", "detail": "Unknown user"}
    ]


@pytest.mark.anyio("asyncio")
async def test_malformed_frame_keeps_connection_usable(make_session, couple, caplog) -> None:
    session = make_session()

    with caplog.at_level(logging.WARNING, logger="keepsake.realtime.session"):
        await session.handle_text("{not json")
        await session.handle_text('{"type": "typing"}')

    assert [frame["code"] for frame in session.websocket.sent] == ["invalid_frame", "invalid_frame"]
    assert session.websocket.closed is None
    assert "Rejected websocket frame" in caplog.text

    await session.handle_text(auth_frame(couple.first_id))
    assert session.state is SessionState.AUTHENTICATED


@pytest.mark.anyio("asyncio")
async def test_ping_is_answered_with_pong(make_session) -> None:
    session = make_session()

    await session.handle_text('{"type": "ping"}')

    assert session.websocket.sent == [{"type": "pong"}]


@pytest.mark.anyio("asyncio")
async def test_messages_fan_out_between_partners(make_session, couple, db_session) -> None:
    first = make_session()
    second = make_session()
    await first.handle_text(auth_frame(couple.first_id))
    await second.handle_text(auth_frame(couple.second_id))

    await first.handle_text(chat_frame("hi"))

    delivered = second.websocket.sent[-1]
    assert delivered["type"] == "new_message"
    assert delivered["message"]["content"] == "hi"
    assert delivered["message"]["authorId"] == couple.first_id
    assert first.websocket.sent[-1] == delivered
    assert _message_count(db_session) == 1


@pytest.mark.anyio("asyncio")
async def test_oversized_or_empty_messages_are_rejected(make_session, couple, db_session) -> None:
    session = make_session(max_content_length=10)
    await session.handle_text(auth_frame(couple.first_id))

    await session.handle_text(chat_frame("x" * 11))
    await session.handle_text(chat_frame("   "))

    errors = [frame for frame in session.websocket.sent if frame["type"] == "error"]
    assert [frame["code"] for frame in errors] == ["invalid_frame", "invalid_frame"]
    assert _message_count(db_session) == 0


@pytest.mark.anyio("asyncio")
async def test_persistence_failure_is_reported_to_sender(presence, chat_store, couple) -> None:
    class BrokenStore(type(chat_store)):
        def create_message(self, draft):
            raise RuntimeError("disk full")

    store = BrokenStore(chat_store._session_factory)
    session = ConnectionSession(
        DummyWebSocket(),
        registry=presence,
        dispatcher=FanOutDispatcher(presence, store),
        store=store,
        require_token=False,
    )
    await session.handle_text(auth_frame(couple.first_id, token=None))

    await session.handle_text(chat_frame("hello?"))

    assert session.websocket.sent[-1]["type"] == "error"
    assert session.websocket.sent[-1]["code"] == "dispatch_failed"


@pytest.mark.anyio("asyncio")
async def test_second_auth_for_another_user_is_refused(make_session, couple) -> None:
    session = make_session()
    await session.handle_text(auth_frame(couple.first_id))

    await session.handle_text(auth_frame(couple.second_id))

    assert session.user_id == couple.first_id
    assert session.websocket.sent[-1]["code"] == "auth_failed"


@pytest.mark.anyio("asyncio")
async def test_close_marks_user_offline_and_notifies_partner(
    make_session, presence, couple, db_session
) -> None:
    partner = make_session()
    await partner.handle_text(auth_frame(couple.second_id))
    session = make_session()
    await session.handle_text(auth_frame(couple.first_id))

    await session.on_closed()

    assert session.state is SessionState.CLOSED
    assert await presence.lookup(couple.first_id) is None
    user = _reload_user(db_session, couple.first_id)
    assert user.is_online is False
    assert user.last_seen.replace(tzinfo=timezone.utc) == NOW
    assert partner.websocket.sent[-1] == {
        "type": "partner_status",
        "userId": couple.first_id,
        "isOnline": False,
    }
    assert await session.send({"type": "ping"}) is False


@pytest.mark.anyio("asyncio")
async def test_superseded_session_is_closed_without_going_offline(
    make_session, presence, couple, db_session
) -> None:
    old = make_session()
    new = make_session()
    await old.handle_text(auth_frame(couple.first_id))

    await new.handle_text(auth_frame(couple.first_id))

    assert old.websocket.closed == (4000, "Session superseded")
    assert await presence.lookup(couple.first_id) is new

    await old.on_closed()

    assert await presence.lookup(couple.first_id) is new
    assert _reload_user(db_session, couple.first_id).is_online is True


@pytest.mark.anyio("asyncio")
async def test_close_before_auth_touches_nothing(make_session, presence) -> None:
    session = make_session()

    await session.on_closed()

    assert session.state is SessionState.CLOSED
    assert len(presence) == 0


@pytest.mark.anyio("asyncio")
async def test_reconnect_during_pending_offline_write_keeps_user_online(
    make_session, presence, chat_store, couple, db_session
) -> None:
    entered = threading.Event()
    release = threading.Event()

    class SlowOfflineStore(type(chat_store)):
        def set_presence(self, user_id, *, is_online, last_seen=None):
            if not is_online:
                entered.set()
                release.wait(5)
            super().set_presence(user_id, is_online=is_online, last_seen=last_seen)

    store = SlowOfflineStore(chat_store._session_factory)
    partner = make_session()
    await partner.handle_text(auth_frame(couple.second_id))
    old = make_session(store=store)
    await old.handle_text(auth_frame(couple.first_id))

    closing = asyncio.create_task(old.on_closed())
    for _ in range(500):
        if entered.is_set():
            break
        await asyncio.sleep(0.01)
    assert entered.is_set()

    new = make_session(store=store)
    reconnecting = asyncio.create_task(new.handle_text(auth_frame(couple.first_id)))
    await asyncio.sleep(0.05)
    release.set()
    await asyncio.wait_for(asyncio.gather(closing, reconnecting), timeout=5)

    assert await presence.lookup(couple.first_id) is new
    assert _reload_user(db_session, couple.first_id).is_online is True
    statuses = [frame for frame in partner.websocket.sent if frame["type"] == "partner_status"]
    assert statuses[-1] == {"type": "partner_status", "userId": couple.first_id, "isOnline": True}
