"""
Namespaced Redis key helpers for the document mirror.

Documents are stored as Redis hashes under:
  {MIRROR_NAMESPACE}:users:{user_id}
  {MIRROR_NAMESPACE}:rooms:{room_id}
  {MIRROR_NAMESPACE}:messages:{message_id}

Each room also keeps an append-only list of its message ids:
  {MIRROR_NAMESPACE}:rooms:{room_id}:messages
"""

from securechat.config import settings


def user_key(user_id: int) -> str:
    return f"{settings.MIRROR_NAMESPACE}:users:{user_id}"


def room_key(room_id: int) -> str:
    return f"{settings.MIRROR_NAMESPACE}:rooms:{room_id}"


def room_messages_key(room_id: int) -> str:
    return f"{settings.MIRROR_NAMESPACE}:rooms:{room_id}:messages"


def message_key(message_id: int) -> str:
    return f"{settings.MIRROR_NAMESPACE}:messages:{message_id}"
