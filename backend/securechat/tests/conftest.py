"""
Pytest fixtures shared across all test modules.
Uses an in-memory SQLite database with StaticPool so all connections
share a single in-memory DB: no real database or Redis required for tests.
"""

import json
import os

# Set env vars BEFORE any securechat module is imported
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["SECRET_KEY"] = "test-secret-key-min-32-chars-long!!"
os.environ["ALGORITHM"] = "HS256"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["MIRROR_REDIS_URL"] = ""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Import securechat modules AFTER env vars are set
from securechat.database import Base, get_db  # noqa: E402
from securechat.main import app  # noqa: E402
from securechat.services import chat_service  # noqa: E402

# Single shared in-memory SQLite engine: StaticPool ensures all
# connections share the same DB instance.
engine = create_engine(
    "sqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(autouse=True)
def setup_db():
    """Create tables before each test, drop after."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def client(db):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Fake socket for driving the hub without a transport
# ---------------------------------------------------------------------------


class FakeWebSocket:
    """Collects every frame the hub sends, decoded from JSON."""

    def __init__(self, broken: bool = False):
        self.sent: list[dict] = []
        self.broken = broken

    async def send_text(self, text: str) -> None:
        if self.broken:
            raise RuntimeError("socket is closed")
        self.sent.append(json.loads(text))

    def types(self) -> list[str]:
        return [frame["type"] for frame in self.sent]

    def of_type(self, event_type: str) -> list[dict]:
        return [frame for frame in self.sent if frame["type"] == event_type]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def register_user(client: TestClient, username="testuser", email="test@example.com", password="secret1"):
    return client.post("/api/register", json={"username": username, "email": email, "password": password})


def login_user(client: TestClient, username="testuser", password="secret1"):
    return client.post("/api/login", json={"username": username, "password": password})


def make_user(db, username="alice", email=None, password="secret1"):
    return chat_service.create_user(db, username, email or f"{username}@example.com", password)


def receive_until(ws, event_type: str, limit: int = 10) -> dict:
    """Read frames from a TestClient WebSocket until one of *event_type* arrives."""
    for _ in range(limit):
        frame = ws.receive_json()
        if frame["type"] == event_type:
            return frame
    raise AssertionError(f"no {event_type!r} frame within {limit} frames")
