"""Account creation and invitation code handling."""

from __future__ import annotations

import logging

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from app.core.security import generate_invitation_code
from app.models import Account, Invitation, User
from app.models.chat import utcnow

logger = logging.getLogger(__name__)

_MAX_CODE_ATTEMPTS = 5


def find_user_by_login(db: Session, email_or_username: str) -> User | None:
    """Look a user up by email first, then by username."""

    user = db.execute(select(User).where(User.email == email_or_username)).scalar_one_or_none()
    if user is None:
        user = db.execute(select(User).where(User.username == email_or_username)).scalar_one_or_none()
    return user


def user_exists(db: Session, email: str, username: str) -> bool:
    stmt = select(User.id).where(or_(User.email == email, User.username == username)).limit(1)
    return db.execute(stmt).first() is not None


def create_account(db: Session, owner_username: str) -> Account:
    account = Account(name=f"{owner_username}'s Account")
    db.add(account)
    db.flush()
    return account


def issue_invitation_code(db: Session, account: Account, created_by: User | None) -> str:
    """Create a fresh invitation and make it the account's current code.

    The caller commits.
    """

    for _ in range(_MAX_CODE_ATTEMPTS):
        code = generate_invitation_code()
        taken = db.execute(select(Invitation.id).where(Invitation.code == code)).first()
        if taken is None:
            break
    else:  # pragma: no cover - astronomically unlikely
        raise RuntimeError("Could not generate a unique invitation code")

    db.add(
        Invitation(
            code=code,
            account_id=account.id,
            created_by_id=created_by.id if created_by else None,
        )
    )
    account.invitation_code = code
    db.flush()
    logger.info("Issued invitation code for account %s", account.id)
    return code


def get_open_invitation(db: Session, code: str) -> Invitation | None:
    invitation = db.execute(
        select(Invitation).where(Invitation.code == code.strip().upper())
    ).scalar_one_or_none()
    if invitation is None or invitation.is_used:
        return None
    return invitation


def redeem_invitation(invitation: Invitation, user: User) -> None:
    invitation.is_used = True
    invitation.used_by_id = user.id
    invitation.used_at = utcnow()


__all__ = [
    "create_account",
    "find_user_by_login",
    "get_open_invitation",
    "issue_invitation_code",
    "redeem_invitation",
    "user_exists",
]
