"""Security helpers for password hashing, token management and invitation codes."""

from __future__ import annotations

import secrets
import string
from datetime import datetime, timedelta, timezone
from typing import Any, Dict

import jwt
from fastapi import HTTPException, status
from passlib.context import CryptContext

from app.config import get_settings

settings = get_settings()

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

_INVITATION_ALPHABET = string.ascii_uppercase + string.digits


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a plain password against its hashed counterpart."""

    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    """Hash a password for storing in the database."""

    return pwd_context.hash(password)


def create_access_token(data: Dict[str, Any], expires_delta: timedelta | None = None) -> str:
    """Create a signed JWT access token with an expiration time."""

    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta if expires_delta is not None else timedelta(minutes=settings.access_token_expire_minutes)
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> Dict[str, Any]:
    """Decode and validate a JWT access token.

    Tokens signed with ``jwt_previous_secret_key`` are still accepted so that a
    secret rotation does not log every client out at once.
    """

    secrets_to_try = [settings.jwt_secret_key]
    if settings.jwt_previous_secret_key:
        secrets_to_try.append(settings.jwt_previous_secret_key)

    for index, secret in enumerate(secrets_to_try):
        try:
            return jwt.decode(token, secret, algorithms=[settings.jwt_algorithm])
        except jwt.ExpiredSignatureError as exc:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token has expired") from exc
        except jwt.InvalidTokenError as exc:
            if index == len(secrets_to_try) - 1:
                raise HTTPException(
                    status_code=status.HTTP_401_UNAUTHORIZED,
                    detail="Could not validate credentials",
                ) from exc
    raise HTTPException(  # pragma: no cover - loop always returns or raises
        status_code=status.HTTP_401_UNAUTHORIZED, detail="Could not validate credentials"
    )


def generate_invitation_code(groups: int | None = None, group_length: int | None = None) -> str:
    """Return a code such as ``K3JD-9QXA-PL2M``."""

    groups = groups or settings.invitation_code_groups
    group_length = group_length or settings.invitation_code_group_length
    return "-".join(
        "".join(secrets.choice(_INVITATION_ALPHABET) for _ in range(group_length))
        for _ in range(groups)
    )
