"""Schemas for authentication endpoints."""

from datetime import datetime

from pydantic import EmailStr, Field, constr, model_validator

from app.models.enums import UserRole
from app.schemas.base import CamelModel


class UserCreate(CamelModel):
    """Payload for creating a new user via registration."""

    email: EmailStr
    username: constr(strip_whitespace=True, min_length=1, max_length=64) = Field(
        ..., description="Unique username shown to the other members"
    )
    password: constr(min_length=8, max_length=128) = Field(
        ..., description="Plain text password that will be hashed before storing"
    )
    confirm_password: str = Field(..., description="Must repeat the password")
    avatar: str | None = None
    status: str | None = Field(default=None, max_length=255)

    @model_validator(mode="after")
    def passwords_match(self) -> "UserCreate":
        if self.password != self.confirm_password:
            raise ValueError("Passwords don't match")
        return self


class InvitationRegisterRequest(UserCreate):
    """Registration that joins the account owning the invitation code."""

    invitation_code: constr(strip_whitespace=True, min_length=1, max_length=32)


class LoginRequest(CamelModel):
    """Payload for user login."""

    email_or_username: constr(strip_whitespace=True, min_length=1) = Field(
        ..., description="Email address or username"
    )
    password: constr(min_length=1, max_length=128) = Field(..., description="User password")


class InvitationLoginRequest(LoginRequest):
    """Login that moves an existing user into the invitation's account."""

    invitation_code: constr(strip_whitespace=True, min_length=1, max_length=32)


class UserRead(CamelModel):
    """Representation of a user returned from the API."""

    id: str
    email: str
    username: str
    role: UserRole
    avatar: str | None = None
    status: str | None = None
    is_online: bool = False
    last_seen: datetime | None = None
    account_id: str | None = None
    created_at: datetime


class Token(CamelModel):
    """Access token returned after successful authentication."""

    access_token: str = Field(..., description="JWT access token")
    token_type: str = Field(default="bearer", description="Token type, always 'bearer'")
    expires_in: int | None = Field(
        default=None,
        description="Number of seconds until the access token expires",
    )


class AuthResponse(Token):
    """Token plus the authenticated user."""

    user: UserRead
