"""Schemas for account level endpoints."""

from app.schemas.base import CamelModel


class InvitationCodeRead(CamelModel):
    """Invitation code that lets a partner or guest join the account."""

    code: str
