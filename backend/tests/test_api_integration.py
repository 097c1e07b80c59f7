"""Integration tests exercising API endpoints via FastAPI's TestClient."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi.testclient import TestClient

from app.core.security import create_access_token
from app.models import ChatMessage, ChatMessageType, Invitation


def register_user(
    client: TestClient,
    username: str,
    password: str = "supersecret",
    *,
    invitation_code: str | None = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "email": f"{username}@example.com",
        "username": username,
        "password": password,
        "confirmPassword": password,
    }
    path = "/api/auth/register"
    if invitation_code is not None:
        payload["invitationCode"] = invitation_code
        path = "/api/auth/invitation-register"
    response = client.post(path, json=payload)
    assert response.status_code == 201, response.text
    return response.json()


def auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def invitation_code(client: TestClient, token: str) -> str:
    response = client.get("/api/account/invitation-code", headers=auth_headers(token))
    assert response.status_code == 200, response.text
    return response.json()["code"]


def test_register_and_login_flow(client: TestClient) -> None:
    """Registration creates an account owned by the new main admin."""

    data = register_user(client, "anna")
    assert data["tokenType"] == "bearer"
    assert data["user"]["username"] == "anna"
    assert data["user"]["role"] == "main_admin"
    assert data["user"]["accountId"]

    for login in ("anna", "anna@example.com"):
        response = client.post(
            "/api/auth/login", json={"emailOrUsername": login, "password": "supersecret"}
        )
        assert response.status_code == 200, response.text
        assert response.json()["user"]["id"] == data["user"]["id"]

    me = client.get("/api/auth/me", headers=auth_headers(data["accessToken"]))
    assert me.status_code == 200
    assert me.json()["email"] == "anna@example.com"


def test_register_rejects_duplicates_and_password_mismatch(client: TestClient) -> None:
    register_user(client, "anna")

    duplicate = client.post(
        "/api/auth/register",
        json={
            "email": "anna@example.com",
            "username": "someone",
            "password": "supersecret",
            "confirmPassword": "supersecret",
        },
    )
    assert duplicate.status_code == 400
    assert duplicate.json()["detail"] == "User already exists"

    mismatch = client.post(
        "/api/auth/register",
        json={
            "email": "new@example.com",
            "username": "new",
            "password": "supersecret",
            "confirmPassword": "different",
        },
    )
    assert mismatch.status_code == 422


def test_login_rejects_bad_credentials(client: TestClient) -> None:
    register_user(client, "anna")

    response = client.post(
        "/api/auth/login", json={"emailOrUsername": "anna", "password": "wrong-password"}
    )

    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid credentials"


def test_invitation_registration_joins_the_same_account(client: TestClient, session_factory) -> None:
    owner = register_user(client, "anna")
    code = invitation_code(client, owner["accessToken"])
    assert len(code) == 14 and code.count("-") == 2

    partner = register_user(client, "boris", invitation_code=code)

    assert partner["user"]["accountId"] == owner["user"]["accountId"]
    assert partner["user"]["role"] == "co_admin"

    with session_factory() as session:
        invitation = session.query(Invitation).filter_by(code=code).one()
        assert invitation.is_used is True
        assert invitation.used_by_id == partner["user"]["id"]
        assert invitation.used_at is not None

    reused = client.post(
        "/api/auth/invitation-register",
        json={
            "email": "carl@example.com",
            "username": "carl",
            "password": "supersecret",
            "confirmPassword": "supersecret",
            "invitationCode": code,
        },
    )
    assert reused.status_code == 400
    assert reused.json()["detail"] == "Invalid invitation code"


def test_invitation_login_moves_existing_user(client: TestClient) -> None:
    owner = register_user(client, "anna")
    wanderer = register_user(client, "boris")
    code = invitation_code(client, owner["accessToken"])

    response = client.post(
        "/api/auth/invitation-login",
        json={"emailOrUsername": "boris", "password": "supersecret", "invitationCode": code},
    )

    assert response.status_code == 200, response.text
    moved = response.json()["user"]
    assert moved["id"] == wanderer["user"]["id"]
    assert moved["accountId"] == owner["user"]["accountId"]
    assert moved["role"] == "co_admin"


def test_invitation_codes_are_main_admin_only(client: TestClient) -> None:
    owner = register_user(client, "anna")
    partner = register_user(
        client, "boris", invitation_code=invitation_code(client, owner["accessToken"])
    )

    forbidden = client.get("/api/account/invitation-code", headers=auth_headers(partner["accessToken"]))
    assert forbidden.status_code == 403

    fresh = client.post("/api/account/generate-invitation", headers=auth_headers(owner["accessToken"]))
    assert fresh.status_code == 200
    assert invitation_code(client, owner["accessToken"]) == fresh.json()["code"]


def test_chat_room_and_history(client: TestClient, session_factory) -> None:
    """History is newest first, paginated, and limited to the caller's room."""

    owner = register_user(client, "anna")
    headers = auth_headers(owner["accessToken"])

    room_response = client.get("/api/chat/room", headers=headers)
    assert room_response.status_code == 200, room_response.text
    room = room_response.json()
    assert room["accountId"] == owner["user"]["accountId"]
    assert room["participant1Id"] == owner["user"]["id"]
    assert client.get("/api/chat/room", headers=headers).json()["id"] == room["id"]

    base = datetime(2025, 1, 1, tzinfo=timezone.utc)
    with session_factory() as session:
        for index in range(3):
            session.add(
                ChatMessage(
                    room_id=room["id"],
                    author_id=owner["user"]["id"],
                    content=f"message {index}",
                    type=ChatMessageType.TEXT,
                    created_at=base + timedelta(minutes=index),
                )
            )
        session.commit()

    response = client.get("/api/chat/messages", headers=headers)
    assert response.status_code == 200
    messages = response.json()
    assert [message["content"] for message in messages] == ["message 2", "message 1", "message 0"]
    assert messages[0]["createdAt"] == "2025-01-01T00:02:00+00:00"
    assert messages[0]["isRead"] is False

    page = client.get("/api/chat/messages", params={"limit": 1, "offset": 1}, headers=headers)
    assert [message["content"] for message in page.json()] == ["message 1"]

    read = client.post(f"/api/chat/messages/{messages[0]['id']}/read", headers=headers)
    assert read.status_code == 200
    assert read.json()["isRead"] is True

    stranger = register_user(client, "olga")
    foreign = client.post(
        f"/api/chat/messages/{messages[0]['id']}/read",
        headers=auth_headers(stranger["accessToken"]),
    )
    assert foreign.status_code == 404


def test_chat_endpoints_require_authentication(client: TestClient) -> None:
    assert client.get("/api/chat/messages").status_code == 401
    assert client.get("/api/chat/room").status_code == 401


def test_websocket_chat_between_partners(client: TestClient) -> None:
    """A message sent by one partner is pushed to both and shows up in history."""

    owner = register_user(client, "anna")
    partner = register_user(
        client, "boris", invitation_code=invitation_code(client, owner["accessToken"])
    )
    owner_id, partner_id = owner["user"]["id"], partner["user"]["id"]

    with client.websocket_connect(f"/ws?token={owner['accessToken']}") as first:
        first.send_json({"type": "auth", "userId": owner_id})
        assert first.receive_json() == {"type": "auth_ok", "userId": owner_id}

        with client.websocket_connect("/ws") as second:
            second.send_json({"type": "auth", "userId": partner_id, "token": partner["accessToken"]})
            assert second.receive_json() == {"type": "auth_ok", "userId": partner_id}
            assert first.receive_json() == {
                "type": "partner_status",
                "userId": partner_id,
                "isOnline": True,
            }

            second.send_json({"type": "chat_message", "content": "hi"})
            pushed = first.receive_json()
            echoed = second.receive_json()

    assert pushed["type"] == "new_message"
    assert pushed["message"]["content"] == "hi"
    assert pushed["message"]["authorId"] == partner_id
    assert pushed["message"]["isEphemeral"] is False
    assert pushed["message"]["expiresAt"] is None
    assert echoed == pushed

    history = client.get("/api/chat/messages", headers=auth_headers(owner["accessToken"])).json()
    assert [message["id"] for message in history] == [pushed["message"]["id"]]


def test_websocket_rejects_chat_before_auth(client: TestClient) -> None:
    with client.websocket_connect("/ws") as connection:
        connection.send_json({"type": "chat_message", "content": "hi"})
        assert connection.receive_json() == {
            "type": "error",
            "code": "unauthenticated",
            "detail": "Authentication required",
        }

        connection.send_text("definitely not json")
        error = connection.receive_json()
        assert error["type"] == "error"
        assert error["code"] == "invalid_frame"

        connection.send_json({"type": "ping"})
        assert connection.receive_json() == {"type": "pong"}



def test_websocket_binary_frame_is_rejected_and_session_survives(client: TestClient, couple) -> None:
    token = create_access_token({"sub": couple.first_id})
    with client.websocket_connect(f"/ws?token={token}") as connection:
        connection.send_bytes(b"\x00\x01garbage")
        error = connection.receive_json()
        assert error["type"] == "error"
        assert error["code"] == "invalid_frame"

        connection.send_json({"type": "ping"})
        assert connection.receive_json() == {"type": "pong"}

        connection.send_json({"type": "auth", "userId": couple.first_id})
        assert connection.receive_json() == {"type": "auth_ok", "userId": couple.first_id}

def test_health_endpoint(client: TestClient) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"
