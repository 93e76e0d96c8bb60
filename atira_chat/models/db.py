# atira_chat/models/db.py
from sqlalchemy import Column, DateTime, Index, Integer, String, Text
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase


class Base(AsyncAttrs, DeclarativeBase):
    pass


class ChatMessageRecord(Base):
    __tablename__ = "chat_messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    room_id = Column(String(100), nullable=False)
    # Null for anonymous senders, they are not backing-store users
    sender_id = Column(Integer, nullable=True)
    sender_name = Column(String(255), nullable=False)
    sender_role = Column(String(20), nullable=True)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_chat_room_created", "room_id", "created_at", "id"),
    )

    def __repr__(self):
        return f"<ChatMessageRecord(id={self.id}, room={self.room_id}, sender={self.sender_name})>"
