# atira_chat/services/message_store.py
from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import case, delete, func, select
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from atira_chat.core.logging import get_logger
from atira_chat.models.db import Base, ChatMessageRecord
from atira_chat.models.models import (
    ADMIN_ROOM_ID,
    ANON_ROOM_PREFIX,
    USER_ROOM_PREFIX,
    ActiveChatUser,
    ChatRoomSummary,
    StoredMessage,
)

logger = get_logger(__name__)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes even for timezone-aware columns
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_stored(record: ChatMessageRecord) -> StoredMessage:
    return StoredMessage(
        id=record.id,
        room_id=record.room_id,
        sender_id=record.sender_id,
        sender_name=record.sender_name,
        sender_role=record.sender_role,
        content=record.content,
        created_at=_as_utc(record.created_at),
    )


# ============================================================================
# MESSAGE PERSISTENCE GATEWAY
# ============================================================================

class MessageStore:
    """
    Append-only chat message store on top of SQLAlchemy's asyncio engine.

    Every relay read and write goes through this class; each call is one
    I/O boundary for the event loop. Rows are never updated, the only
    removal path is ``delete_room`` (admin bulk deletion).

    Ordering:
        Messages of a room are ordered by ``created_at`` ascending, ties
        broken by ``id`` ascending.

    Usage:
        store = MessageStore("sqlite+aiosqlite:///./atira_chat.db")
        await store.init_models()
        stored = await store.insert_message("user_7", 7, "Budi", "user", "Halo")
        history = await store.list_messages("user_7")
    """

    def __init__(self, database_url: str, engine: Optional[AsyncEngine] = None) -> None:
        self.database_url = database_url
        self.engine = engine or create_async_engine(database_url)
        self.session_factory = async_sessionmaker(self.engine, expire_on_commit=False)

    async def init_models(self) -> None:
        """Create the message table if it does not exist yet."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("✓ Message store ready at %s", self.engine.url.render_as_string(hide_password=True))

    async def close(self) -> None:
        await self.engine.dispose()

    async def insert_message(
        self,
        room_id: str,
        sender_id: Optional[int],
        sender_name: str,
        sender_role: Optional[str],
        content: str,
    ) -> StoredMessage:
        """
        Append a message to a room.

        Returns:
            StoredMessage carrying the store-assigned ``id`` and ``created_at``
        """
        record = ChatMessageRecord(
            room_id=room_id,
            sender_id=sender_id,
            sender_name=sender_name,
            sender_role=sender_role,
            content=content,
            created_at=datetime.now(timezone.utc),
        )
        async with self.session_factory() as session:
            session.add(record)
            await session.commit()
            stored = _to_stored(record)
        logger.debug("Stored message id=%s in room %s", stored.id, room_id)
        return stored

    async def list_messages(self, room_id: str) -> List[StoredMessage]:
        """All messages of a room in chronological order."""
        stmt = (
            select(ChatMessageRecord)
            .where(ChatMessageRecord.room_id == room_id)
            .order_by(ChatMessageRecord.created_at.asc(), ChatMessageRecord.id.asc())
        )
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return [_to_stored(r) for r in result.scalars().all()]

    async def list_recent_messages(self, room_id: str, limit: int) -> List[StoredMessage]:
        """
        The ``limit`` most recent messages of a room, NEWEST FIRST.

        Callers that need chronological order reverse the result.
        """
        stmt = (
            select(ChatMessageRecord)
            .where(ChatMessageRecord.room_id == room_id)
            .order_by(ChatMessageRecord.created_at.desc(), ChatMessageRecord.id.desc())
            .limit(limit)
        )
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return [_to_stored(r) for r in result.scalars().all()]

    async def delete_room(self, room_id: str) -> int:
        """Bulk delete every message of a room. Returns the number of rows removed."""
        async with self.session_factory() as session:
            result = await session.execute(
                delete(ChatMessageRecord).where(ChatMessageRecord.room_id == room_id)
            )
            await session.commit()
        logger.info("✓ Deleted %d messages from room %s", result.rowcount, room_id)
        return result.rowcount

    async def list_room_summaries(self, prefix: str = USER_ROOM_PREFIX) -> List[ChatRoomSummary]:
        """Per-room message counts and activity bounds, most recently active first."""
        last_message_at = func.max(ChatMessageRecord.created_at).label("last_message_at")
        stmt = (
            select(
                ChatMessageRecord.room_id,
                func.min(ChatMessageRecord.sender_name).label("user_name"),
                func.count(ChatMessageRecord.id).label("message_count"),
                func.min(ChatMessageRecord.created_at).label("first_message_at"),
                last_message_at,
            )
            .where(ChatMessageRecord.room_id.like(f"{prefix}%"))
            .group_by(ChatMessageRecord.room_id)
            .order_by(last_message_at.desc())
        )
        async with self.session_factory() as session:
            rows = (await session.execute(stmt)).all()
        return [
            ChatRoomSummary(
                id=row.room_id,
                user_name=row.user_name,
                message_count=row.message_count,
                first_message_at=_as_utc(row.first_message_at),
                last_message_at=_as_utc(row.last_message_at),
            )
            for row in rows
        ]

    async def list_active_chat_users(self) -> List[ActiveChatUser]:
        """
        Distinct non-admin senders per user/anonymous room with their last activity.

        Used by the admin dashboard to list conversations, including
        anonymous ones whose rooms have been garbage-collected in memory.
        """
        last_activity = func.max(ChatMessageRecord.created_at).label("last_activity")
        is_anonymous = case(
            (ChatMessageRecord.room_id.like(f"{ANON_ROOM_PREFIX}%"), True),
            (ChatMessageRecord.sender_id.is_(None), True),
            else_=False,
        ).label("is_anonymous")
        stmt = (
            select(
                ChatMessageRecord.room_id,
                ChatMessageRecord.sender_name,
                ChatMessageRecord.sender_id,
                func.max(ChatMessageRecord.sender_role).label("sender_role"),
                last_activity,
                is_anonymous,
            )
            .where(ChatMessageRecord.room_id != ADMIN_ROOM_ID)
            .where(
                ChatMessageRecord.room_id.like(f"{USER_ROOM_PREFIX}%")
                | ChatMessageRecord.room_id.like(f"{ANON_ROOM_PREFIX}%")
            )
            .where(
                (ChatMessageRecord.sender_role != "admin")
                | ChatMessageRecord.sender_role.is_(None)
            )
            .group_by(
                ChatMessageRecord.room_id,
                ChatMessageRecord.sender_name,
                ChatMessageRecord.sender_id,
            )
            .order_by(last_activity.desc())
        )
        async with self.session_factory() as session:
            rows = (await session.execute(stmt)).all()
        return [
            ActiveChatUser(
                room_id=row.room_id,
                sender_name=row.sender_name,
                sender_id=row.sender_id,
                sender_role=row.sender_role,
                last_activity=_as_utc(row.last_activity),
                is_anonymous=bool(row.is_anonymous),
            )
            for row in rows
        ]
