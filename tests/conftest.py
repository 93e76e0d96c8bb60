from __future__ import annotations

from typing import Any, Dict, List

import pytest
from jose import jwt

from atira_chat.models.models import VerifiedIdentity
from atira_chat.services.chat_relay import ChatRelay
from atira_chat.services.message_store import MessageStore

JWT_SECRET = "test-secret"


class FakeConnection:
    """Stands in for a WebSocket: records every frame sent to it."""

    def __init__(self, name: str = "conn") -> None:
        self.name = name
        self.frames: List[Dict[str, Any]] = []
        self.fail = False

    async def send_json(self, frame: Dict[str, Any]) -> None:
        if self.fail:
            raise RuntimeError("socket closed")
        self.frames.append(frame)

    def events(self, event_type: str) -> List[Any]:
        return [f["data"] for f in self.frames if f["type"] == event_type]

    def messages(self) -> List[Dict[str, Any]]:
        return self.events("message")

    def __repr__(self) -> str:
        return f"<FakeConnection {self.name}>"


def make_token(user_id: int, role: str = "user", secret: str = JWT_SECRET, **claims: Any) -> str:
    return jwt.encode({"id": user_id, "role": role, **claims}, secret, algorithm="HS256")


def user_identity(user_id: int, name: str) -> VerifiedIdentity:
    return VerifiedIdentity(id=user_id, role="user", name=name)


def admin_identity(user_id: int = 1, name: str = "Admin") -> VerifiedIdentity:
    return VerifiedIdentity(id=user_id, role="admin", name=name)


async def join_registered(relay, user_id, name, conn_name=None):
    conn = FakeConnection(conn_name or f"user{user_id}")
    relay.connect(conn, user_identity(user_id, name))
    await relay.handle_event(conn, "joinChat", {"user": {"id": user_id, "name": name, "role": "user"}})
    return conn


async def join_admin(relay, user_id=1, name="Admin", via="joinAdminChat"):
    conn = FakeConnection(f"admin{user_id}")
    relay.connect(conn, admin_identity(user_id, name))
    await relay.handle_event(conn, via, {"user": {"id": user_id, "name": name, "role": "admin"}})
    return conn


async def join_anonymous(relay, name):
    conn = FakeConnection(name)
    relay.connect(conn)
    await relay.handle_event(conn, "joinAnonymousChat", {"user": {"name": name}})
    room_id = relay.sessions.home_room(relay.sessions.participant_of(conn).id)
    return conn, room_id


@pytest.fixture
async def store(tmp_path):
    message_store = MessageStore(f"sqlite+aiosqlite:///{tmp_path / 'chat.db'}")
    await message_store.init_models()
    yield message_store
    await message_store.close()


@pytest.fixture
def relay(store):
    return ChatRelay(store)
