# atira_chat/api/routes/chat_history.py

from typing import List

from fastapi import APIRouter, Depends, Query

from atira_chat.core import state
from atira_chat.core.logging import get_logger
from atira_chat.models.models import (
    USER_ROOM_PREFIX,
    ActiveChatUser,
    ChatMessage,
    ChatRoomSummary,
    UserChatHistory,
    VerifiedIdentity,
)
from atira_chat.services.auth_service import get_current_user, require_admin

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["Chat history"])

# ============================================================================
# ADMIN ENDPOINTS
# ============================================================================

@router.get("/chat-history", response_model=List[ChatRoomSummary])
async def list_chat_rooms(_: VerifiedIdentity = Depends(require_admin)):
    """
    List registered users' conversations.

    Returns:
        List[ChatRoomSummary]: One entry per ``user_*`` room, most recently
        active first
    """
    return await state.get_store().list_room_summaries(USER_ROOM_PREFIX)


@router.get("/chat-history/{room_id}/messages", response_model=List[ChatMessage])
async def get_room_messages(room_id: str, _: VerifiedIdentity = Depends(require_admin)):
    """All messages of a room, chronological, in the live message shape."""
    stored = await state.get_store().list_messages(room_id)
    return [ChatMessage.from_stored(m) for m in stored]


@router.delete("/chat-history/{room_id}")
async def delete_chat_room(room_id: str, admin: VerifiedIdentity = Depends(require_admin)):
    """
    Delete every stored message of a room.

    Live membership is untouched: connected clients stay subscribed and
    simply have no history on their next join.
    """
    deleted = await state.get_store().delete_room(room_id)
    logger.info(f"Admin {admin.id} deleted chat room {room_id} ({deleted} messages)")
    return {"message": "Chat room deleted successfully", "room_id": room_id, "deleted": deleted}


@router.get("/chat-active-users", response_model=List[ActiveChatUser])
async def list_active_chat_users(_: VerifiedIdentity = Depends(require_admin)):
    """Non-admin senders of user and anonymous rooms, including anonymous ones."""
    return await state.get_store().list_active_chat_users()


# ============================================================================
# USER ENDPOINTS
# ============================================================================

@router.get("/chat-history/user", response_model=List[UserChatHistory], response_model_by_alias=True)
async def get_own_chat_history(current_user: VerifiedIdentity = Depends(get_current_user)):
    """
    The caller's own conversation with the staff.

    Returns an empty list when the user never wrote or received a message.
    """
    room_id = f"{USER_ROOM_PREFIX}{current_user.id}"
    stored = await state.get_store().list_messages(room_id)
    if not stored:
        return []
    return [
        UserChatHistory(
            room_id=room_id,
            last_message_at=stored[-1].created_at,
            message_count=len(stored),
            messages=[ChatMessage.from_stored(m) for m in stored],
        )
    ]


@router.get("/chat-history/user/recent", response_model=List[ChatMessage])
async def get_own_recent_messages(
    limit: int = Query(10, ge=1, le=200),
    current_user: VerifiedIdentity = Depends(get_current_user),
):
    """The caller's ``limit`` most recent messages, in chronological order."""
    room_id = f"{USER_ROOM_PREFIX}{current_user.id}"
    recent = await state.get_store().list_recent_messages(room_id, limit)
    return [ChatMessage.from_stored(m) for m in reversed(recent)]
