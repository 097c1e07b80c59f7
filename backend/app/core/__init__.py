"""Core utilities for the Keepsake backend."""

from .security import (
    create_access_token,
    decode_access_token,
    generate_invitation_code,
    get_password_hash,
    verify_password,
)

__all__ = [
    "create_access_token",
    "decode_access_token",
    "generate_invitation_code",
    "get_password_hash",
    "verify_password",
]
