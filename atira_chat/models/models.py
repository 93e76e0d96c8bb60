# atira_chat/models/models.py
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

ADMIN_ROOM_ID = "admin_global"
USER_ROOM_PREFIX = "user_"
ANON_ROOM_PREFIX = "anon_"

ParticipantId = Union[int, str]


class ParticipantKind(str, Enum):
    REGISTERED = "registered"
    ANONYMOUS = "anonymous"
    ADMIN = "admin"

    @property
    def role(self) -> str:
        """Role string stored with messages and shown to clients."""
        return _KIND_ROLES[self]


_KIND_ROLES = {
    ParticipantKind.REGISTERED: "user",
    ParticipantKind.ANONYMOUS: "anonymous",
    ParticipantKind.ADMIN: "admin",
}


class Sender(BaseModel):
    """The ``sender`` object attached to every outbound message."""

    id: Optional[ParticipantId] = None
    name: str
    role: str


class Participant(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: ParticipantId
    display_name: str
    kind: ParticipantKind

    @property
    def is_admin(self) -> bool:
        return self.kind is ParticipantKind.ADMIN

    @property
    def is_anonymous(self) -> bool:
        return self.kind is ParticipantKind.ANONYMOUS

    def as_sender(self) -> Sender:
        return Sender(id=self.id, name=self.display_name, role=self.kind.role)


class VerifiedIdentity(BaseModel):
    """Claims of a bearer token that passed verification."""

    id: int
    role: str = "user"
    email: Optional[str] = None
    name: Optional[str] = None


class StoredMessage(BaseModel):
    """A row of the message store, as returned by the persistence gateway."""

    id: int
    room_id: str
    sender_id: Optional[int] = None
    sender_name: str
    sender_role: Optional[str] = None
    content: str
    created_at: datetime


class ChatMessage(BaseModel):
    """Wire shape of a message, identical for live delivery and replay."""

    id: int
    room_id: str
    content: str
    sender: Sender
    timestamp: datetime

    @classmethod
    def from_stored(cls, stored: StoredMessage) -> "ChatMessage":
        return cls(
            id=stored.id,
            room_id=stored.room_id,
            content=stored.content,
            sender=Sender(
                id=stored.sender_id,
                name=stored.sender_name or "Anonymous",
                role=stored.sender_role or "user",
            ),
            timestamp=stored.created_at,
        )


# ============================================================================
# INBOUND EVENT PAYLOADS
# ============================================================================

class DeclaredUser(BaseModel):
    """User object as sent by clients. Never trusted for routing."""

    model_config = ConfigDict(extra="allow")

    id: Optional[ParticipantId] = None
    name: Optional[str] = None
    role: Optional[str] = None


class JoinPayload(BaseModel):
    user: Optional[DeclaredUser] = None


class JoinChatRoomPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    room_id: str = Field(alias="roomId", min_length=1)
    user: Optional[DeclaredUser] = None


class SendMessagePayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    content: str
    sender: Optional[DeclaredUser] = None
    room_id: Optional[str] = Field(default=None, alias="roomId")


class SendAnonymousMessagePayload(BaseModel):
    content: str
    sender: Optional[DeclaredUser] = None


class AdminSendToUserPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    content: str
    target_room_id: str = Field(alias="targetRoomId", min_length=1)
    sender: Optional[DeclaredUser] = None
    target_user_id: Optional[ParticipantId] = Field(default=None, alias="targetUserId")


# ============================================================================
# REST RESPONSES
# ============================================================================

class ChatRoomSummary(BaseModel):
    id: str
    user_name: Optional[str] = None
    message_count: int
    first_message_at: Optional[datetime] = None
    last_message_at: Optional[datetime] = None


class ActiveChatUser(BaseModel):
    room_id: str
    sender_name: str
    sender_id: Optional[int] = None
    sender_role: Optional[str] = None
    last_activity: datetime
    is_anonymous: bool


class UserChatHistory(BaseModel):
    room_id: str = Field(serialization_alias="roomId")
    last_message_at: Optional[datetime] = Field(default=None, serialization_alias="lastMessageAt")
    message_count: int = Field(serialization_alias="messageCount")
    messages: List[ChatMessage]


def wire(model: BaseModel) -> Dict[str, Any]:
    """Serialise a model into a JSON-ready dict for socket delivery."""
    return model.model_dump(mode="json", by_alias=True)
