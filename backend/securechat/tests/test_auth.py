"""Tests for the /api session endpoints."""

from fastapi.testclient import TestClient

from securechat.config import settings
from securechat.models.user import User
from securechat.tests.conftest import login_user, register_user


class TestRegister:
    def test_register_success(self, client: TestClient):
        resp = register_user(client)
        assert resp.status_code == 201
        assert resp.json() == {"success": True, "username": "testuser"}
        assert settings.SESSION_COOKIE_NAME in resp.cookies

    def test_register_stores_hashed_password_and_avatar(self, client: TestClient, db):
        register_user(client)
        user = db.query(User).filter(User.username == "testuser").one()
        assert user.hashed_password != "secret1"
        assert user.avatar_url.startswith("https://ui-avatars.com/api/?name=T")
        assert user.status == "active"
        assert user.is_online is False

    def test_register_duplicate_username(self, client: TestClient):
        register_user(client)
        resp = register_user(client, email="other@example.com")
        assert resp.status_code == 409
        assert resp.json()["error"] == "Username already exists"

    def test_register_duplicate_email(self, client: TestClient):
        register_user(client, username="user1")
        resp = register_user(client, username="user2")
        assert resp.status_code == 409
        assert resp.json()["error"] == "Email already exists"

    def test_register_username_too_short(self, client: TestClient):
        resp = register_user(client, username="ab")
        assert resp.status_code == 400
        assert "username" in resp.json()["error"]

    def test_register_username_too_long(self, client: TestClient):
        resp = register_user(client, username="x" * 51)
        assert resp.status_code == 400

    def test_register_invalid_email(self, client: TestClient):
        resp = register_user(client, email="not-an-email")
        assert resp.status_code == 400

    def test_register_short_password(self, client: TestClient):
        resp = register_user(client, password="12345")
        assert resp.status_code == 400

    def test_register_missing_field(self, client: TestClient):
        resp = client.post("/api/register", json={"username": "someone", "password": "secret1"})
        assert resp.status_code == 400
        assert "email" in resp.json()["error"]


class TestLogin:
    def test_login_success(self, client: TestClient):
        register_user(client)
        client.cookies.clear()
        resp = login_user(client)
        assert resp.status_code == 200
        assert resp.json() == {"success": True, "username": "testuser"}
        assert settings.SESSION_COOKIE_NAME in resp.cookies

    def test_login_with_email(self, client: TestClient):
        register_user(client)
        client.cookies.clear()
        resp = login_user(client, username="test@example.com")
        assert resp.status_code == 200
        assert resp.json()["username"] == "testuser"

    def test_login_does_not_flag_user_online(self, client: TestClient, db):
        register_user(client)
        client.cookies.clear()
        login_user(client)
        user = db.query(User).filter(User.username == "testuser").one()
        db.refresh(user)
        assert user.is_online is False
        assert user.last_seen is not None

    def test_login_wrong_password(self, client: TestClient):
        register_user(client)
        resp = login_user(client, password="wrong-password")
        assert resp.status_code == 401
        assert resp.json()["error"] == "Invalid username or password"

    def test_login_unknown_user(self, client: TestClient):
        resp = login_user(client, username="nobody")
        assert resp.status_code == 401

    def test_login_inactive_user(self, client: TestClient, db):
        register_user(client)
        user = db.query(User).filter(User.username == "testuser").one()
        user.status = "banned"
        db.commit()
        resp = login_user(client)
        assert resp.status_code == 401

    def test_login_missing_password(self, client: TestClient):
        resp = client.post("/api/login", json={"username": "testuser"})
        assert resp.status_code == 400

    def test_login_empty_username(self, client: TestClient):
        resp = client.post("/api/login", json={"username": "", "password": "secret1"})
        assert resp.status_code == 400


class TestSession:
    def test_session_anonymous(self, client: TestClient):
        resp = client.get("/api/session")
        assert resp.status_code == 200
        assert resp.json() == {"authenticated": False, "user": None}

    def test_session_after_register(self, client: TestClient):
        register_user(client)
        resp = client.get("/api/session")
        data = resp.json()
        assert data["authenticated"] is True
        assert data["user"]["username"] == "testuser"
        assert data["user"]["email"] == "test@example.com"
        assert "id" in data["user"]

    def test_session_rejects_forged_cookie(self, client: TestClient):
        client.cookies.set(settings.SESSION_COOKIE_NAME, "garbage")
        resp = client.get("/api/session")
        assert resp.json()["authenticated"] is False

    def test_logout_destroys_session(self, client: TestClient):
        register_user(client)
        token = client.cookies.get(settings.SESSION_COOKIE_NAME)

        resp = client.post("/api/logout")
        assert resp.status_code == 200
        assert resp.json() == {"success": True}

        # Replaying the old cookie must not resurrect the session
        client.cookies.set(settings.SESSION_COOKIE_NAME, token)
        assert client.get("/api/session").json()["authenticated"] is False

    def test_logout_marks_user_offline(self, client: TestClient, db):
        register_user(client)
        user = db.query(User).filter(User.username == "testuser").one()
        user.is_online = True
        db.commit()

        client.post("/api/logout")
        db.refresh(user)
        assert user.is_online is False

    def test_logout_without_session(self, client: TestClient):
        resp = client.post("/api/logout")
        assert resp.status_code == 200
        assert resp.json() == {"success": True}


class TestOnlineUsers:
    def test_requires_session(self, client: TestClient):
        resp = client.get("/api/users/online")
        assert resp.status_code == 401
        assert resp.json()["error"] == "Not authenticated"

    def test_lists_online_users(self, client: TestClient, db):
        register_user(client, username="bob", email="bob@example.com")
        register_user(client)
        bob = db.query(User).filter(User.username == "bob").one()
        bob.is_online = True
        db.commit()

        resp = client.get("/api/users/online")
        assert resp.status_code == 200
        assert [u["username"] for u in resp.json()] == ["bob"]
        assert set(resp.json()[0]) == {"id", "username", "avatar_url"}
