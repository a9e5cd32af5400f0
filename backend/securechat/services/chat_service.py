"""
Store operations for users, the default room, memberships and messages.

Every function takes the caller's SQLAlchemy Session and is synchronous.
SQLAlchemy errors are rolled back, logged, and translated into the narrowest
``securechat.core.exceptions`` type before they leave this module; callers
never see driver detail.
"""

import logging
import secrets
from datetime import timedelta

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from securechat.config import settings
from securechat.core.clock import utcnow
from securechat.core.exceptions import AuthError, ConflictError, PersistenceError
from securechat.models.membership import ROLE_MEMBER, RoomMembership
from securechat.models.message import MESSAGE_TEXT, Message
from securechat.models.room import ROOM_PUBLIC, Room
from securechat.models.user import STATUS_ACTIVE, STATUS_INACTIVE, User
from securechat.services import auth_service

logger = logging.getLogger(__name__)

_AVATAR_COLOURS = ("FF6B6B", "4ECDC4", "45B7D1", "96CEB4", "FFEAA7", "DDA0DD", "FF7F7F")


def default_avatar_url(username: str) -> str:
    """Initials avatar with a background colour picked from the first letter."""
    colour = _AVATAR_COLOURS[ord(username[0]) % len(_AVATAR_COLOURS)]
    initial = username[0].upper()
    return f"https://ui-avatars.com/api/?name={initial}&background={colour}&color=fff&size=100"


# ── Users ─────────────────────────────────────────────────────────────────────


def create_user(db: Session, username: str, email: str, password: str) -> User:
    try:
        username_taken = db.query(User).filter(User.username == username).first() is not None
        email_taken = db.query(User).filter(User.email == email).first() is not None
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Failed to check registration for %s: %s", username, exc)
        raise PersistenceError("Registration failed. Please try again.") from exc
    if username_taken:
        raise ConflictError("Username already exists")
    if email_taken:
        raise ConflictError("Email already exists")

    user = User(
        username=username,
        email=email,
        hashed_password=auth_service.hash_password(password),
        avatar_url=default_avatar_url(username),
        status=STATUS_ACTIVE,
    )
    try:
        db.add(user)
        db.commit()
    except IntegrityError as exc:
        # Lost a race with a concurrent registration for the same name/email
        db.rollback()
        logger.info("Registration conflict for %s: %s", username, exc.orig)
        raise ConflictError("Username or email already exists") from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Failed to create user %s: %s", username, exc)
        raise PersistenceError("Registration failed. Please try again.") from exc

    db.refresh(user)
    return user


def authenticate_user(db: Session, login: str, password: str) -> User:
    """Check credentials against an active user matched by username or email."""
    try:
        user = (
            db.query(User)
            .filter((User.username == login) | (User.email == login), User.status == STATUS_ACTIVE)
            .first()
        )
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Failed to look up login %s: %s", login, exc)
        raise PersistenceError("Login failed. Please try again.") from exc
    if user is None or not auth_service.verify_password(password, user.hashed_password):
        raise AuthError("Invalid username or password")

    touch_last_seen(db, user.id)
    return user


def get_user_by_username(db: Session, username: str) -> User | None:
    try:
        return db.query(User).filter(User.username == username).first()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Failed to look up user %s: %s", username, exc)
        raise PersistenceError("Failed to load user") from exc


def update_user_online_status(db: Session, user_id: int, is_online: bool) -> None:
    try:
        db.query(User).filter(User.id == user_id).update(
            {User.is_online: is_online, User.last_seen: utcnow()},
            synchronize_session=False,
        )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Failed to update online status for user %s: %s", user_id, exc)
        raise PersistenceError("Failed to update presence") from exc


def touch_last_seen(db: Session, user_id: int) -> None:
    try:
        db.query(User).filter(User.id == user_id).update({User.last_seen: utcnow()}, synchronize_session=False)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Failed to stamp last_seen for user %s: %s", user_id, exc)
        raise PersistenceError("Failed to update presence") from exc


def get_online_users(db: Session, room_id: int | None = None) -> list[User]:
    """Users flagged online, optionally restricted to active members of *room_id*."""
    try:
        query = db.query(User).filter(User.is_online == True, User.status == STATUS_ACTIVE)  # noqa: E712
        if room_id is not None:
            query = query.join(RoomMembership, RoomMembership.user_id == User.id).filter(
                RoomMembership.room_id == room_id,
                RoomMembership.is_active == True,  # noqa: E712
            )
        return query.order_by(User.username).all()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Failed to load online users: %s", exc)
        raise PersistenceError("Failed to load online users") from exc


def cleanup_inactive_users(db: Session, threshold: timedelta) -> int:
    """Flag offline every online user not seen within *threshold*. Returns rows changed."""
    cutoff = utcnow() - threshold
    try:
        changed = (
            db.query(User)
            .filter(User.is_online == True, User.last_seen < cutoff)  # noqa: E712
            .update({User.is_online: False}, synchronize_session=False)
        )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Inactive user cleanup failed: %s", exc)
        raise PersistenceError("Inactive user cleanup failed") from exc
    return changed


# ── Rooms ─────────────────────────────────────────────────────────────────────


def _get_or_create_system_user(db: Session) -> User:
    user = get_user_by_username(db, settings.SYSTEM_USERNAME)
    if user:
        return user
    # Inactive with a random password: owns the default room, can never log in
    user = User(
        username=settings.SYSTEM_USERNAME,
        email=settings.SYSTEM_EMAIL,
        hashed_password=auth_service.hash_password(secrets.token_urlsafe(32)),
        status=STATUS_INACTIVE,
    )
    db.add(user)
    db.flush()
    return user


def get_default_room(db: Session) -> Room | None:
    try:
        return (
            db.query(Room)
            .filter(Room.name == settings.DEFAULT_ROOM_NAME, Room.type == ROOM_PUBLIC, Room.is_active == True)  # noqa: E712
            .order_by(Room.id)
            .first()
        )
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Failed to look up the default room: %s", exc)
        raise PersistenceError("Failed to prepare the chat room") from exc


def get_or_create_default_room(db: Session) -> tuple[Room, bool]:
    """Return ``(room, created)`` for the shared public room."""
    room = get_default_room(db)
    if room:
        return room, False

    try:
        creator = _get_or_create_system_user(db)
        room = Room(
            name=settings.DEFAULT_ROOM_NAME,
            description="Default public chat room",
            type=ROOM_PUBLIC,
            created_by=creator.id,
            is_active=True,
        )
        db.add(room)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        # Another worker may have bootstrapped the room first
        room = get_default_room(db)
        if room:
            return room, False
        logger.error("Failed to create default room: %s", exc)
        raise PersistenceError("Failed to prepare the chat room") from exc

    db.refresh(room)
    logger.info("Created default room %r (id=%s)", room.name, room.id)
    return room, True


def join_user_to_room(db: Session, user_id: int, room_id: int) -> RoomMembership:
    """Ensure an active membership row, creating it or reactivating an old one."""

    def _existing() -> RoomMembership | None:
        return (
            db.query(RoomMembership)
            .filter(RoomMembership.user_id == user_id, RoomMembership.room_id == room_id)
            .first()
        )

    def _activate(membership: RoomMembership) -> None:
        if not membership.is_active:
            membership.is_active = True
            db.commit()

    try:
        membership = _existing()
        if membership is None:
            membership = RoomMembership(user_id=user_id, room_id=room_id, role=ROLE_MEMBER, is_active=True)
            db.add(membership)
            db.commit()
        else:
            _activate(membership)
        return membership
    except IntegrityError:
        # A concurrent join inserted the row between our read and write
        db.rollback()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Failed to join user %s to room %s: %s", user_id, room_id, exc)
        raise PersistenceError("Failed to join room") from exc

    try:
        membership = _existing()
        if membership is not None:
            _activate(membership)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Failed to reactivate membership of user %s in room %s: %s", user_id, room_id, exc)
        raise PersistenceError("Failed to join room") from exc
    if membership is None:
        raise PersistenceError("Failed to join room")
    return membership


# ── Messages ──────────────────────────────────────────────────────────────────


def create_message(db: Session, user_id: int, room_id: int, content: str, type: str = MESSAGE_TEXT) -> Message:
    message = Message(content=content, user_id=user_id, room_id=room_id, type=type)
    try:
        db.add(message)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Failed to create message for user %s: %s", user_id, exc)
        raise PersistenceError("Failed to send message") from exc

    return db.query(Message).options(joinedload(Message.author)).filter(Message.id == message.id).one()


def get_recent_messages(db: Session, room_id: int, limit: int | None = None) -> list[Message]:
    """The newest *limit* visible messages of a room, oldest first."""
    limit = limit or settings.HISTORY_LIMIT
    try:
        newest_first = (
            db.query(Message)
            .options(joinedload(Message.author))
            .filter(Message.room_id == room_id, Message.is_deleted == False)  # noqa: E712
            .order_by(Message.created_at.desc(), Message.id.desc())
            .limit(limit)
            .all()
        )
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Failed to load history for room %s: %s", room_id, exc)
        raise PersistenceError("Failed to load message history") from exc
    return list(reversed(newest_first))
