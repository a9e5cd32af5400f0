"""
Presence sweeper: periodic background task started from the app lifespan.

Clients that crash or lose their network never send a disconnect, so their
durable online flag would stay set forever. Every PRESENCE_SWEEP_INTERVAL
seconds this task flags offline anyone not seen for PRESENCE_STALE_SECONDS
and purges expired login sessions. A failed pass is logged and the loop
carries on.
"""

import asyncio
import logging
from datetime import timedelta

from securechat.config import settings
from securechat.core.exceptions import PersistenceError
from securechat.database import SessionLocal
from securechat.services import auth_service
from securechat.websocket.hub import ChatHub, hub

logger = logging.getLogger(__name__)


def sweep_once(chat_hub: ChatHub, threshold: timedelta) -> int:
    db = SessionLocal()
    try:
        flagged = chat_hub.sweep_inactive(db, threshold)
        purged = auth_service.purge_expired_sessions(db)
    finally:
        db.close()
    logger.info("Presence sweep: %d user(s) flagged offline, %d expired session(s) purged", flagged, purged)
    return flagged


async def run_presence_sweeper(
    chat_hub: ChatHub = hub,
    interval: float | None = None,
    threshold: timedelta | None = None,
) -> None:
    interval = interval if interval is not None else settings.PRESENCE_SWEEP_INTERVAL
    threshold = threshold or timedelta(seconds=settings.PRESENCE_STALE_SECONDS)
    while True:
        await asyncio.sleep(interval)
        try:
            sweep_once(chat_hub, threshold)
        except PersistenceError as exc:
            logger.error("Presence sweep failed: %s", exc)
        except Exception as exc:
            logger.error("Presence sweep crashed: %s", exc, exc_info=True)
