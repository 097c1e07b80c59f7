"""Authentication API endpoints."""

import logging
from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.api.deps import get_current_user
from app.config import get_settings
from app.core.security import create_access_token, get_password_hash, verify_password
from app.database import get_db
from app.models import User, UserRole
from app.schemas import (
    AuthResponse,
    InvitationLoginRequest,
    InvitationRegisterRequest,
    LoginRequest,
    UserCreate,
    UserRead,
)
from app.services.accounts import (
    create_account,
    find_user_by_login,
    get_open_invitation,
    issue_invitation_code,
    redeem_invitation,
    user_exists,
)
from app.services.chat_store import ensure_chat_room

router = APIRouter()
settings = get_settings()
logger = logging.getLogger(__name__)


def _issue_token(user: User) -> AuthResponse:
    access_token_expires = timedelta(minutes=settings.access_token_expire_minutes)
    access_token = create_access_token({"sub": str(user.id)}, expires_delta=access_token_expires)
    return AuthResponse(
        access_token=access_token,
        token_type="bearer",
        expires_in=int(access_token_expires.total_seconds()),
        user=UserRead.model_validate(user),
    )


def _authenticate(db: Session, email_or_username: str, password: str) -> User:
    user = find_user_by_login(db, email_or_username)
    if user is None or not user.hashed_password or not verify_password(password, user.hashed_password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
        )
    return user


def _new_user(user_in: UserCreate, *, role: UserRole, account_id: str) -> User:
    return User(
        email=str(user_in.email),
        username=user_in.username,
        hashed_password=get_password_hash(user_in.password),
        role=role,
        avatar=user_in.avatar,
        status=user_in.status,
        account_id=account_id,
    )


def _commit_new_user(db: Session) -> None:
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="User already exists") from exc


@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
def register_user(user_in: UserCreate, db: Session = Depends(get_db)) -> AuthResponse:
    """Register a new user together with their own account."""

    if user_exists(db, str(user_in.email), user_in.username):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="User already exists")

    account = create_account(db, user_in.username)
    user = _new_user(user_in, role=UserRole.MAIN_ADMIN, account_id=account.id)
    db.add(user)
    db.flush()
    issue_invitation_code(db, account, user)
    _commit_new_user(db)
    db.refresh(user)

    ensure_chat_room(db, account.id)
    logger.info("Registered user %s with account %s", user.id, account.id)
    return _issue_token(user)


@router.post("/login", response_model=AuthResponse)
def login_user(credentials: LoginRequest, db: Session = Depends(get_db)) -> AuthResponse:
    """Authenticate a user by email or username and return a JWT access token."""

    user = _authenticate(db, credentials.email_or_username, credentials.password)
    return _issue_token(user)


@router.post("/invitation-register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
def register_with_invitation(
    payload: InvitationRegisterRequest, db: Session = Depends(get_db)
) -> AuthResponse:
    """Register a new user straight into the account owning the invitation."""

    invitation = get_open_invitation(db, payload.invitation_code)
    if invitation is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid invitation code")
    if user_exists(db, str(payload.email), payload.username):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="User already exists")

    user = _new_user(payload, role=UserRole.CO_ADMIN, account_id=invitation.account_id)
    db.add(user)
    db.flush()
    redeem_invitation(invitation, user)
    _commit_new_user(db)
    db.refresh(user)

    ensure_chat_room(db, invitation.account_id)
    logger.info("User %s joined account %s by invitation", user.id, user.account_id)
    return _issue_token(user)


@router.post("/invitation-login", response_model=AuthResponse)
def login_with_invitation(
    payload: InvitationLoginRequest, db: Session = Depends(get_db)
) -> AuthResponse:
    """Move an existing user into the invitation's account."""

    invitation = get_open_invitation(db, payload.invitation_code)
    if invitation is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid invitation code")

    user = _authenticate(db, payload.email_or_username, payload.password)
    user.account_id = invitation.account_id
    user.role = UserRole.CO_ADMIN
    redeem_invitation(invitation, user)
    db.commit()
    db.refresh(user)

    ensure_chat_room(db, invitation.account_id)
    logger.info("User %s moved to account %s by invitation", user.id, user.account_id)
    return _issue_token(user)


@router.get("/me", response_model=UserRead)
def read_current_user(current_user: User = Depends(get_current_user)) -> User:
    """Return the authenticated user."""

    return current_user
