"""
Redis connection for the write-only document mirror.

Mirror writes run right after a chat event is broadcast, so the client uses
short socket timeouts: an unreachable Redis turns into a logged mirror
failure within a couple of seconds. With MIRROR_REDIS_URL empty, or when the
first ping fails, get_redis() returns None and every mirror write is a no-op.
"""

import logging

import redis.asyncio as aioredis

from securechat.config import settings

logger = logging.getLogger(__name__)

MIRROR_SOCKET_TIMEOUT = 2.0

_client: aioredis.Redis | None = None


async def init_redis() -> None:
    """Connect the mirror. Call once at app startup."""
    global _client
    if not settings.MIRROR_REDIS_URL:
        logger.info("MIRROR_REDIS_URL is empty: document mirror disabled")
        return

    client = aioredis.from_url(
        settings.MIRROR_REDIS_URL,
        decode_responses=True,
        socket_timeout=MIRROR_SOCKET_TIMEOUT,
        socket_connect_timeout=MIRROR_SOCKET_TIMEOUT,
        health_check_interval=30,
    )
    try:
        await client.ping()
    except Exception as exc:
        logger.warning("Mirror Redis unavailable (%s): mirroring disabled", exc)
        await client.aclose()
        return
    _client = client
    logger.info("Mirror Redis connected, namespace %r", settings.MIRROR_NAMESPACE)


async def close_redis() -> None:
    """Close the mirror connection. Call once at app shutdown."""
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None


def get_redis() -> aioredis.Redis | None:
    """Return the live mirror client, or None if mirroring is off."""
    return _client


async def mirror_status() -> str:
    """One of "disabled", "connected" or "disconnected", for the health check."""
    client = get_redis()
    if client is None:
        return "disabled"
    try:
        await client.ping()
    except Exception as exc:
        logger.warning("Mirror Redis ping failed: %s", exc)
        return "disconnected"
    return "connected"
