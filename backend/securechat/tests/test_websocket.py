"""
End-to-end tests for the /ws chat endpoint through the TestClient.

The session cookie set by /api/register is carried by the client's cookie
jar, so each websocket_connect runs as whoever registered last.
"""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import QueuePool
from starlette.websockets import WebSocketDisconnect

from securechat.config import settings
from securechat.core.exceptions import PersistenceError
from securechat.database import Base, get_db
from securechat.main import app
from securechat.models.message import Message
from securechat.services import chat_service
from securechat.tests.conftest import receive_until, register_user


def _join(ws, username="testuser"):
    ws.send_json({"type": "user.join", "username": username})
    history = ws.receive_json()
    roster = receive_until(ws, "presence.roster")
    return history, roster


class TestHandshake:
    def test_rejects_connection_without_session(self, client: TestClient):
        with pytest.raises(WebSocketDisconnect) as exc:
            with client.websocket_connect("/ws") as ws:
                ws.receive_json()
        assert exc.value.code == 1008

    def test_rejects_forged_session(self, client: TestClient):
        client.cookies.set(settings.SESSION_COOKIE_NAME, "not-a-token")
        with pytest.raises(WebSocketDisconnect) as exc:
            with client.websocket_connect("/ws") as ws:
                ws.receive_json()
        assert exc.value.code == 1008

    def test_join_sends_history_then_roster(self, client: TestClient):
        register_user(client)
        with client.websocket_connect("/ws") as ws:
            history, roster = _join(ws)
            assert history == {"type": "message.history", "messages": []}
            assert [u["username"] for u in roster["users"]] == ["testuser"]

    def test_join_without_username_uses_session(self, client: TestClient):
        register_user(client)
        with client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "user.join"})
            assert ws.receive_json()["type"] == "message.history"

    def test_join_with_other_username_rejected(self, client: TestClient):
        register_user(client)
        with client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "user.join", "username": "someone-else"})
            frame = ws.receive_json()
            assert frame == {"type": "error", "message": "Username does not match session"}


class TestEvents:
    def test_message_before_join_rejected(self, client: TestClient):
        register_user(client)
        with client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "message.send", "message": "too early"})
            assert ws.receive_json() == {"type": "error", "message": "Join the chat first"}

    def test_message_round_trip(self, client: TestClient, db):
        register_user(client)
        with client.websocket_connect("/ws") as ws:
            _join(ws)
            ws.send_json({"type": "message.send", "message": "hello world"})
            frame = receive_until(ws, "message.new")
            assert frame["username"] == "testuser"
            assert frame["message"] == "hello world"
            assert isinstance(frame["id"], int)
            assert frame["timestamp"]

        stored = db.query(Message).one()
        assert stored.content == "hello world"

    def test_history_replayed_on_rejoin(self, client: TestClient):
        register_user(client)
        with client.websocket_connect("/ws") as ws:
            _join(ws)
            ws.send_json({"type": "message.send", "message": "remember me"})
            receive_until(ws, "message.new")

        with client.websocket_connect("/ws") as ws:
            history, _ = _join(ws)
            assert [m["message"] for m in history["messages"]] == ["remember me"]

    def test_blank_message_rejected(self, client: TestClient):
        register_user(client)
        with client.websocket_connect("/ws") as ws:
            _join(ws)
            ws.send_json({"type": "message.send", "message": "   "})
            assert ws.receive_json() == {"type": "error", "message": "Message cannot be empty"}

    def test_oversized_message_rejected(self, client: TestClient):
        register_user(client)
        with client.websocket_connect("/ws") as ws:
            _join(ws)
            ws.send_json({"type": "message.send", "message": "x" * 2001})
            assert ws.receive_json()["type"] == "error"

    def test_malformed_json(self, client: TestClient):
        register_user(client)
        with client.websocket_connect("/ws") as ws:
            ws.send_text("{not json")
            assert ws.receive_json() == {"type": "error", "message": "Malformed event"}
            # The connection survives a bad frame
            _join(ws)

    def test_non_object_frame(self, client: TestClient):
        register_user(client)
        with client.websocket_connect("/ws") as ws:
            ws.send_json(["user.join"])
            assert ws.receive_json() == {"type": "error", "message": "Malformed event"}

    def test_unknown_event_ignored(self, client: TestClient):
        register_user(client)
        with client.websocket_connect("/ws") as ws:
            _join(ws)
            ws.send_json({"type": "does.not.exist"})
            ws.send_json({"type": "message.send", "message": "after"})
            assert receive_until(ws, "message.new")["message"] == "after"


class TestTwoUsers:
    def test_typing_messages_and_leave(self, client: TestClient):
        register_user(client, username="alice", email="alice@example.com")
        with client.websocket_connect("/ws") as alice:
            _join(alice, "alice")

            register_user(client, username="bob", email="bob@example.com")
            with client.websocket_connect("/ws") as bob:
                _join(bob, "bob")

                joined = receive_until(alice, "user.joined")
                assert joined["message"] == "bob joined the chat"
                roster = receive_until(alice, "presence.roster")
                assert {u["username"] for u in roster["users"]} == {"alice", "bob"}

                bob.send_json({"type": "user.typing", "isTyping": True})
                typing = receive_until(alice, "user.typing")
                assert typing == {"type": "user.typing", "username": "bob", "isTyping": True}

                bob.send_json({"type": "message.send", "message": "hi alice"})
                assert receive_until(alice, "message.new")["message"] == "hi alice"
                assert receive_until(bob, "message.new")["message"] == "hi alice"

                bob.send_json({"type": "user.leave"})
                left = receive_until(alice, "user.left")
                assert left["username"] == "bob"
                roster = receive_until(alice, "presence.roster")
                assert [u["username"] for u in roster["users"]] == ["alice"]


class TestStoreFailures:
    @pytest.mark.parametrize(
        "failure",
        [PersistenceError("server closed the connection unexpectedly"), RuntimeError("disk I/O error")],
        ids=["persistence", "unexpected"],
    )
    def test_send_failure_reaches_sender_only(self, client: TestClient, monkeypatch, failure):
        register_user(client, username="alice", email="alice@example.com")
        with client.websocket_connect("/ws") as alice:
            _join(alice, "alice")
            register_user(client, username="bob", email="bob@example.com")
            with client.websocket_connect("/ws") as bob:
                _join(bob, "bob")
                receive_until(alice, "presence.roster")

                def broken_create_message(*args, **kwargs):
                    raise failure

                monkeypatch.setattr(chat_service, "create_message", broken_create_message)
                bob.send_json({"type": "message.send", "message": "lost"})
                assert bob.receive_json() == {"type": "error", "message": "Failed to send message"}

                # Same socket keeps working once the store recovers
                monkeypatch.undo()
                bob.send_json({"type": "message.send", "message": "second try"})
                assert receive_until(bob, "message.new")["message"] == "second try"

                # Alice's very next frame is the successful message: the failure never reached her
                frame = alice.receive_json()
                assert frame["type"] == "message.new"
                assert frame["message"] == "second try"


# ---------------------------------------------------------------------------
# Connection pool usage
# ---------------------------------------------------------------------------


@pytest.fixture()
def pooled_client(tmp_path):
    """A client whose database sessions come from a small, bounded pool."""
    pooled_engine = create_engine(
        f"sqlite:///{tmp_path / 'chat.db'}",
        connect_args={"check_same_thread": False},
        poolclass=QueuePool,
        pool_size=2,
        max_overflow=0,
        pool_timeout=1,
    )
    Base.metadata.create_all(bind=pooled_engine)
    PooledSession = sessionmaker(autocommit=False, autoflush=False, bind=pooled_engine)

    def override_get_db():
        db = PooledSession()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c, pooled_engine
    app.dependency_overrides.clear()
    pooled_engine.dispose()


def _wait_until_idle(ws):
    # A bad frame is answered only after the previous event has fully finished
    ws.send_text("{not json")
    assert receive_until(ws, "error")["message"] == "Malformed event"


def test_idle_sockets_hold_no_pooled_connection(pooled_client):
    client, pooled_engine = pooled_client
    register_user(client)

    with client.websocket_connect("/ws") as first:
        _join(first)
        _wait_until_idle(first)
        assert pooled_engine.pool.checkedout() == 0

        with client.websocket_connect("/ws") as second:
            _join(second)
            _wait_until_idle(second)
            assert pooled_engine.pool.checkedout() == 0

            # Both sockets idle, the pool still serves HTTP
            resp = client.get("/api/session")
            assert resp.json()["authenticated"] is True
