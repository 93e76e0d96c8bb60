import pytest
from fastapi.testclient import TestClient

from atira_chat.core import state
from atira_chat.core.config import settings
from atira_chat import main
from atira_chat.main import create_app

from conftest import JWT_SECRET, make_token


@pytest.fixture
def client(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'api.db'}")
    monkeypatch.setattr(settings, "JWT_SECRET", JWT_SECRET)
    monkeypatch.setattr(settings, "PUB_SUB_SERVICE", "local")
    with TestClient(create_app()) as test_client:
        yield test_client


def _auth(token):
    return {"Authorization": f"Bearer {token}"}


def _sync(ws):
    """Round-trip a frame so everything sent before it has been handled."""
    ws.send_json({"action": "ping"})
    assert ws.receive_json()["data"]["code"] == "unknown_action"


def test_root_and_health(client) -> None:
    assert client.get("/").json()["endpoints"]["websocket"] == "/ws"
    health = client.get("/health").json()
    assert health == {"status": "healthy", "connections": 0, "active_rooms_with_members": 0}


def test_bad_frames_get_error_events(client) -> None:
    with client.websocket_connect("/ws") as ws:
        ws.send_text("not json")
        assert ws.receive_json() == {"type": "error", "data": {"code": "invalid_json", "message": "Invalid JSON"}}

        ws.send_json({"action": "joinChatRoom", "data": {"user": {}}})
        assert ws.receive_json()["data"]["code"] == "invalid_payload"

        ws.send_json({"action": "leaveChat"})
        assert ws.receive_json()["data"]["code"] == "unknown_action"

        for action in ([], {"name": "joinChat"}, None, 7):
            ws.send_json({"action": action, "data": {}})
            assert ws.receive_json()["data"]["code"] == "unknown_action"


class ListenerFailsService:
    """Redis service whose listener dies right after startup."""

    instances = []

    def __init__(self, **kwargs):
        self.closed = False
        ListenerFailsService.instances.append(self)

    async def connect(self):
        pass

    async def publish(self, room_ids, event, data):
        pass

    async def listen(self, relay):
        raise ConnectionError("redis went away")

    async def close(self):
        self.closed = True


def test_shutdown_collects_failed_redis_listener(tmp_path, monkeypatch, caplog) -> None:
    monkeypatch.setattr(settings, "DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'api.db'}")
    monkeypatch.setattr(settings, "PUB_SUB_SERVICE", "redis")
    monkeypatch.setattr(main, "AsyncRedisPubSubService", ListenerFailsService)
    ListenerFailsService.instances.clear()

    with TestClient(create_app()) as test_client:
        assert test_client.get("/health").status_code == 200

    assert ListenerFailsService.instances[0].closed
    assert state.relay is None
    assert "redis went away" in caplog.text


def test_user_chat_reaches_admin_over_websocket(client) -> None:
    admin_token = make_token(1, "admin", name="Admin")
    user_token = make_token(7, "user", email="budi@example.com")

    with client.websocket_connect(f"/ws?token={admin_token}") as admin:
        admin.send_json({"action": "joinAdminChat", "data": {"user": {"id": 1, "role": "admin"}}})
        _sync(admin)

        with client.websocket_connect(f"/ws?token={user_token}") as user:
            user.send_json({"action": "joinChat", "data": {"user": {"id": 7, "name": "Budi", "role": "user"}}})
            assert user.receive_json()["type"] == "connectedUsers"
            assert user.receive_json() == {"type": "loadMessages", "data": []}

            notice = admin.receive_json()
            assert notice["type"] == "newUserChat"
            assert notice["data"]["roomId"] == "user_7"

            user.send_json({"action": "sendMessage", "data": {"content": "Halo", "sender": {"id": 7, "name": "Budi"}}})
            echoed = user.receive_json()
            assert echoed["type"] == "message"
            assert echoed["data"]["content"] == "Halo"
            assert echoed["data"]["sender"] == {"id": 7, "name": "Budi", "role": "user"}

            seen_by_admin = admin.receive_json()
            assert seen_by_admin == echoed

        assert state.get_relay().message_counter == 1


def test_invalid_token_cannot_join_registered_chat(client) -> None:
    forged = make_token(7, "admin", secret="wrong-secret")
    with client.websocket_connect(f"/ws?token={forged}") as ws:
        ws.send_json({"action": "joinChat", "data": {"user": {"id": 7, "role": "admin"}}})
        _sync(ws)
        assert state.get_relay().directory.room_ids() == []


def test_chat_history_endpoints(client) -> None:
    admin_token = make_token(1, "admin", name="Admin")
    user_token = make_token(7, "user", name="Budi")

    with client.websocket_connect(f"/ws?token={user_token}") as user:
        user.send_json({"action": "joinChat", "data": {"user": {"id": 7, "name": "Budi"}}})
        user.receive_json()
        user.receive_json()
        for text in ("satu", "dua", "tiga"):
            user.send_json({"action": "sendMessage", "data": {"content": text}})
            assert user.receive_json()["data"]["content"] == text

    with client.websocket_connect("/ws") as anon:
        anon.send_json({"action": "joinAnonymousChat", "data": {"user": {"name": "Anon123"}}})
        joined = anon.receive_json()
        assert joined["type"] == "anonymousChatJoined"
        assert joined["data"]["roomId"].startswith("anon_")
        anon.send_json({"action": "sendAnonymousMessage", "data": {"content": "Tanya soal diet"}})
        echoed = anon.receive_json()["data"]
        assert echoed["sender"] == joined["data"]["user"]
        assert echoed["sender"]["role"] == "anonymous"

    assert client.get("/api/chat-history").status_code == 401
    assert client.get("/api/chat-history", headers=_auth(user_token)).status_code == 403

    rooms = client.get("/api/chat-history", headers=_auth(admin_token)).json()
    assert [(r["id"], r["message_count"]) for r in rooms] == [("user_7", 3)]

    messages = client.get("/api/chat-history/user_7/messages", headers=_auth(admin_token)).json()
    assert [m["content"] for m in messages] == ["satu", "dua", "tiga"]

    active = client.get("/api/chat-active-users", headers=_auth(admin_token)).json()
    assert {u["is_anonymous"] for u in active} == {True, False}

    own = client.get("/api/chat-history/user", headers=_auth(user_token)).json()
    assert own[0]["roomId"] == "user_7"
    assert own[0]["messageCount"] == 3

    recent = client.get("/api/chat-history/user/recent?limit=2", headers=_auth(user_token)).json()
    assert [m["content"] for m in recent] == ["dua", "tiga"]

    deleted = client.delete("/api/chat-history/user_7", headers=_auth(admin_token)).json()
    assert deleted["deleted"] == 3
    assert client.get("/api/chat-history/user", headers=_auth(user_token)).json() == []
