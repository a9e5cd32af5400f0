"""
Centralized auth service: all session decisions flow through here.

A login session is a row in the ``sessions`` table. The browser holds a
signed JWT whose ``sid`` claim points at that row, so a session can be
revoked server-side (logout, expiry purge) even while the cookie's own
signature is still valid. No JWT decoding should happen outside this module.
"""

import logging
import secrets
from datetime import timedelta

import bcrypt
from jose import JWTError, jwt
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from securechat.config import settings
from securechat.core.clock import as_utc, utcnow
from securechat.core.exceptions import PersistenceError
from securechat.models.session import UserSession
from securechat.models.user import STATUS_ACTIVE, User

logger = logging.getLogger(__name__)

# ── Password ──────────────────────────────────────────────────────────────────


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=settings.BCRYPT_ROUNDS)).decode()


def verify_password(plain: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(plain.encode(), hashed.encode())
    except ValueError:
        # Malformed stored hash, e.g. the system account's placeholder
        return False


# ── Token ─────────────────────────────────────────────────────────────────────


def create_session(db: Session, user: User, expires_delta: timedelta | None = None) -> str:
    """Persist a new session for *user* and return the signed cookie value."""
    expire = utcnow() + (expires_delta or timedelta(minutes=settings.SESSION_EXPIRE_MINUTES))
    session = UserSession(id=secrets.token_urlsafe(32), user_id=user.id, expires_at=expire)
    try:
        db.add(session)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Failed to create session for user %s: %s", user.id, exc)
        raise PersistenceError("Could not start a session") from exc

    payload = {"sub": str(user.id), "sid": session.id, "exp": expire}
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_session_token(token: str) -> dict | None:
    """Decode and validate a session JWT. Returns payload dict or None on failure."""
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        return None


def _load_session(token: str | None, db: Session) -> UserSession | None:
    if not token:
        return None
    payload = decode_session_token(token)
    if payload is None or not payload.get("sid"):
        return None

    session = db.query(UserSession).filter(UserSession.id == payload["sid"]).first()
    if session is None:
        return None
    if as_utc(session.expires_at) <= utcnow():
        return None
    if str(session.user_id) != str(payload.get("sub")):
        return None
    return session


# ── User Lookup ───────────────────────────────────────────────────────────────


def get_user_from_session_token(token: str | None, db: Session) -> User | None:
    """Resolve a session cookie value to an active User, or None."""
    session = _load_session(token, db)
    if session is None:
        return None
    return db.query(User).filter(User.id == session.user_id, User.status == STATUS_ACTIVE).first()


def destroy_session(token: str | None, db: Session) -> User | None:
    """Delete the session row behind *token*. Returns its user, if any."""
    session = _load_session(token, db)
    if session is None:
        return None
    user = session.user
    try:
        db.delete(session)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Failed to destroy session %s: %s", session.id, exc)
        raise PersistenceError("Logout failed") from exc
    return user


def purge_expired_sessions(db: Session) -> int:
    """Delete every session row past its expiry. Returns the number removed."""
    try:
        removed = (
            db.query(UserSession)
            .filter(UserSession.expires_at < utcnow())
            .delete(synchronize_session=False)
        )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise PersistenceError("Failed to purge sessions") from exc
    return removed
