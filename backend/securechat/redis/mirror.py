"""
Document mirror: best-effort copy of users, rooms and messages in Redis.

The relational database is the system of record. Nothing here is ever read
back to serve a request, and a failed mirror write must never fail the
operation that triggered it: every write failure is raised internally as
MirrorSyncError, caught below, and logged.

If Redis is unavailable every call is a no-op.
"""

import logging
from datetime import datetime, timezone

from securechat.core.exceptions import MirrorSyncError
from securechat.models.message import Message
from securechat.models.room import Room
from securechat.models.user import User
from securechat.redis.client import get_redis
from securechat.redis.keys import message_key, room_key, room_messages_key, user_key

logger = logging.getLogger(__name__)


def _field(value):
    if value is None:
        return ""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


async def _write(label: str, documents: dict[str, dict], appends: dict[str, str] | None = None) -> None:
    r = get_redis()
    if r is None:
        return
    try:
        pipe = r.pipeline()
        for key, doc in documents.items():
            pipe.hset(key, mapping={k: _field(v) for k, v in doc.items()})
        for key, value in (appends or {}).items():
            pipe.rpush(key, value)
        await pipe.execute()
    except Exception as exc:
        raise MirrorSyncError(f"mirror.{label} failed") from exc


async def _sync(label: str, documents: dict[str, dict], appends: dict[str, str] | None = None) -> None:
    try:
        await _write(label, documents, appends)
    except MirrorSyncError as exc:
        logger.warning("%s: %s", exc.message, exc.__cause__)


async def mirror_user(user: User) -> None:
    await _sync(
        "user",
        {
            user_key(user.id): {
                "username": user.username,
                "email": user.email,
                "status": user.status,
                "avatar_url": user.avatar_url,
                "is_online": user.is_online,
                "last_seen": user.last_seen,
                "created_at": user.created_at,
            }
        },
    )


async def mirror_presence(user_id: int, is_online: bool) -> None:
    """Partial update: only the presence fields of the user document."""
    await _sync(
        "presence",
        {user_key(user_id): {"is_online": is_online, "last_seen": datetime.now(timezone.utc)}},
    )


async def mirror_room(room: Room) -> None:
    await _sync(
        "room",
        {
            room_key(room.id): {
                "name": room.name,
                "description": room.description,
                "type": room.type,
                "created_by": room.created_by,
                "is_active": room.is_active,
                "created_at": room.created_at,
            }
        },
    )


async def mirror_message(message: Message) -> None:
    await _sync(
        "message",
        {
            message_key(message.id): {
                "content": message.content,
                "type": message.type,
                "user_id": message.user_id,
                "room_id": message.room_id,
                "username": message.author.username if message.author else None,
                "created_at": message.created_at,
            }
        },
        appends={room_messages_key(message.room_id): str(message.id)},
    )
