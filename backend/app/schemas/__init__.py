"""Pydantic schemas for API payloads."""

from .account import InvitationCodeRead
from .auth import (
    AuthResponse,
    InvitationLoginRequest,
    InvitationRegisterRequest,
    LoginRequest,
    Token,
    UserCreate,
    UserRead,
)
from .chat import ChatMessageRead, ChatRoomRead

__all__ = [
    "AuthResponse",
    "InvitationLoginRequest",
    "InvitationRegisterRequest",
    "LoginRequest",
    "Token",
    "UserCreate",
    "UserRead",
    "InvitationCodeRead",
    "ChatMessageRead",
    "ChatRoomRead",
]
