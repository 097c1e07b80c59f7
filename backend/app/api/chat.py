"""Chat room and message history endpoints."""

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from app.api.deps import get_current_user, require_account
from app.config import get_settings
from app.database import get_db
from app.models import ChatMessage, ChatRoom, User
from app.schemas import ChatMessageRead, ChatRoomRead
from app.services.chat_store import ensure_chat_room, get_chat_room, list_messages, mark_message_read

router = APIRouter(prefix="/chat", tags=["chat"])
settings = get_settings()


def _room_or_404(db: Session, user: User) -> ChatRoom:
    room = get_chat_room(db, require_account(user))
    if room is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Chat room not found")
    return room


@router.get("/room", response_model=ChatRoomRead)
def read_chat_room(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ChatRoom:
    """Return the account's chat room, creating it on first access."""

    return ensure_chat_room(db, require_account(current_user))


@router.get("/messages", response_model=List[ChatMessageRead])
def read_chat_messages(
    limit: int = Query(default=settings.chat_history_default_limit, ge=1),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> List[ChatMessage]:
    """Return a page of the chat history, newest message first."""

    room = _room_or_404(db, current_user)
    limit = min(limit, settings.chat_history_max_limit)
    return list_messages(db, room.id, limit=limit, offset=offset)


@router.post("/messages/{message_id}/read", response_model=ChatMessageRead)
def mark_chat_message_read(
    message_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ChatMessage:
    room = _room_or_404(db, current_user)
    message = mark_message_read(db, room.id, message_id)
    if message is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Message not found")
    return message
