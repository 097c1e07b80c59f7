"""Shared pytest fixtures for backend tests."""

from __future__ import annotations

import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

import pytest
from fastapi.testclient import TestClient
from passlib.context import CryptContext
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from app.config import get_settings
from app.core import security
from app.database import get_db
from app.main import app
from app.models import Account, Base, ChatRoom, User, UserRole
from app.services.chat_store import SqlChatStore

from keepsake.realtime.managers import configure_realtime

security.pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


@pytest.fixture()
def test_engine() -> Iterator[Engine]:
    """Provide an in-memory SQLite engine for isolated tests."""

    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture()
def session_factory(test_engine) -> sessionmaker[Session]:
    """Return a session factory bound to the test engine."""

    return sessionmaker(bind=test_engine, future=True, expire_on_commit=False)


@pytest.fixture()
def db_session(session_factory) -> Iterator[Session]:
    """Yield a SQLAlchemy session for unit tests."""

    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def chat_store(session_factory) -> SqlChatStore:
    return SqlChatStore(session_factory)


@dataclass
class Couple:
    account_id: str
    room_id: str
    first_id: str
    second_id: str


def _add_user(db: Session, username: str, account_id: str | None, role: UserRole) -> User:
    user = User(
        email=f"{username}@example.com",
        username=username,
        hashed_password=security.get_password_hash("supersecret"),
        role=role,
        account_id=account_id,
    )
    db.add(user)
    db.flush()
    return user


@pytest.fixture()
def couple(db_session) -> Couple:
    """An account with two members and its chat room."""

    account = Account(name="anna's Account")
    db_session.add(account)
    db_session.flush()
    first = _add_user(db_session, "anna", account.id, UserRole.MAIN_ADMIN)
    second = _add_user(db_session, "boris", account.id, UserRole.CO_ADMIN)
    room = ChatRoom(account_id=account.id, participant1_id=first.id, participant2_id=second.id)
    db_session.add(room)
    db_session.commit()
    return Couple(account_id=account.id, room_id=room.id, first_id=first.id, second_id=second.id)


@pytest.fixture()
def outsider(db_session) -> User:
    """A user belonging to another account that also has a chat room."""

    account = Account(name="olga's Account")
    db_session.add(account)
    db_session.flush()
    user = _add_user(db_session, "olga", account.id, UserRole.MAIN_ADMIN)
    db_session.add(ChatRoom(account_id=account.id, participant1_id=user.id))
    db_session.commit()
    return user


@pytest.fixture()
def client(session_factory) -> Iterator[TestClient]:
    """Yield a FastAPI TestClient with the database dependency overridden."""

    def override_get_db() -> Iterator[Session]:
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    settings = get_settings()
    original_sweep_enabled = settings.expiry_sweep_enabled
    settings.expiry_sweep_enabled = False
    configure_realtime(session_factory=session_factory)

    app.dependency_overrides[get_db] = override_get_db
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()
        settings.expiry_sweep_enabled = original_sweep_enabled
        configure_realtime()
