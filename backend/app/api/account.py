"""Account level endpoints (invitation codes)."""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from app.api.deps import get_current_user, require_main_admin
from app.database import get_db
from app.models import Account, User
from app.schemas import InvitationCodeRead
from app.services.accounts import issue_invitation_code

router = APIRouter(prefix="/account", tags=["account"])


def _load_account(db: Session, account_id: str) -> Account:
    account = db.get(Account, account_id)
    if account is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Account not found")
    return account


@router.get("/invitation-code", response_model=InvitationCodeRead)
def read_invitation_code(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> InvitationCodeRead:
    """Return the account's current invitation code, generating one when missing."""

    account = _load_account(db, require_main_admin(current_user, "access invitation codes"))
    if account.invitation_code:
        return InvitationCodeRead(code=account.invitation_code)

    code = issue_invitation_code(db, account, current_user)
    db.commit()
    return InvitationCodeRead(code=code)


@router.post("/generate-invitation", response_model=InvitationCodeRead)
def generate_invitation(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> InvitationCodeRead:
    account = _load_account(db, require_main_admin(current_user, "generate invitation codes"))
    code = issue_invitation_code(db, account, current_user)
    db.commit()
    return InvitationCodeRead(code=code)
