import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from fastapi import WebSocket
from sqlalchemy.orm import Session

from securechat.core import events
from securechat.core.clock import as_utc, utcnow
from securechat.core.exceptions import AuthError, NotFoundError, PersistenceError
from securechat.models.message import Message
from securechat.redis import mirror
from securechat.schemas.chat import ChatMessage, PresenceNotice, TypingNotice
from securechat.schemas.user import RosterEntry
from securechat.services import chat_service

logger = logging.getLogger(__name__)


@dataclass
class LiveConnection:
    connection_id: str
    user_id: int
    username: str
    websocket: WebSocket
    join_time: datetime = field(default_factory=utcnow)
    # Frames addressed to this connection before its history went out
    backlog: list[dict] | None = field(default_factory=list)


def format_message(message: Message) -> dict:
    """Wire shape shared by history entries and live messages."""
    return ChatMessage(
        id=message.id,
        username=message.author.username,
        message=message.content,
        timestamp=as_utc(message.created_at),
    ).model_dump(mode="json")


class ChatHub:
    """Registry of live chat connections and the single room they share.

    Connections are stored as {connection_id: LiveConnection}. The map is
    process-local and only ever touched through the methods below; the
    WebSocket gateway never reaches into it.

    Durable state (users, memberships, messages, the online flag) lives in
    the database and is reached through chat_service with the caller's
    Session. Every store call is synchronous; the only suspension points are
    socket sends and mirror writes.
    """

    def __init__(self) -> None:
        # connection_id -> LiveConnection
        self._connections: dict[str, LiveConnection] = {}

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    def is_joined(self, connection_id: str) -> bool:
        return connection_id in self._connections

    def live_usernames(self) -> set[str]:
        return {conn.username for conn in self._connections.values()}

    def connection_count(self) -> int:
        return len(self._connections)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def announce_join(self, db: Session, connection_id: str, websocket: WebSocket, username: str) -> LiveConnection:
        """Register a connection for *username* and bring it up to date.

        The joiner gets the room history first, then everybody else hears
        about the join, then everybody (joiner included) gets the new roster.
        """
        user = chat_service.get_user_by_username(db, username)
        if user is None or not user.is_active:
            raise NotFoundError("User not found")

        conn = LiveConnection(connection_id=connection_id, user_id=user.id, username=user.username, websocket=websocket)
        previous = self._connections.get(connection_id)
        self._connections[connection_id] = conn

        try:
            chat_service.update_user_online_status(db, conn.user_id, True)
            room, _ = chat_service.get_or_create_default_room(db)
            chat_service.join_user_to_room(db, conn.user_id, room.id)
            history = [format_message(m) for m in chat_service.get_recent_messages(db, room.id)]
        except PersistenceError:
            # A failed rejoin leaves the earlier registration in place
            if previous is None:
                self._connections.pop(connection_id, None)
            else:
                self._connections[connection_id] = previous
            raise

        await self._deliver_history(conn, history)
        await mirror.mirror_presence(conn.user_id, True)

        notice = PresenceNotice(username=conn.username, message=f"{conn.username} joined the chat", timestamp=utcnow())
        await self._broadcast({"type": events.USER_JOINED, **notice.model_dump(mode="json")}, exclude=connection_id)
        await self._broadcast_roster(db)

        logger.info("%s joined the chat (connection %s)", conn.username, connection_id)
        return conn

    async def post_message(self, db: Session, connection_id: str, content: str) -> dict:
        """Persist a text message and echo it to every connection, sender included."""
        conn = self._connections.get(connection_id)
        if conn is None:
            raise AuthError("User not authenticated")

        room, _ = chat_service.get_or_create_default_room(db)
        message = chat_service.create_message(db, conn.user_id, room.id, content)
        payload = {"type": events.MESSAGE_NEW, **format_message(message)}
        # Broadcast straight after the write so broadcast order follows insert order
        await self._broadcast(payload)
        await mirror.mirror_message(message)

        logger.debug("%s posted message %s", conn.username, message.id)
        return payload

    async def set_typing(self, connection_id: str, is_typing: bool) -> None:
        conn = self._connections.get(connection_id)
        if conn is None:
            return
        notice = TypingNotice(username=conn.username, isTyping=is_typing)
        await self._broadcast({"type": events.USER_TYPING, **notice.model_dump()}, exclude=connection_id)

    async def heartbeat(self, db: Session, connection_id: str) -> None:
        """Refresh last_seen so a quiet but connected user survives the sweep."""
        conn = self._connections.get(connection_id)
        if conn is None:
            return
        chat_service.update_user_online_status(db, conn.user_id, True)

    async def disconnect(self, db: Session, connection_id: str) -> bool:
        """Drop a connection. Safe to call any number of times.

        Returns True only for the call that actually removed the connection.
        """
        conn = self._connections.pop(connection_id, None)
        if conn is None:
            return False

        if any(other.user_id == conn.user_id for other in self._connections.values()):
            # Another tab is still open, the user has not left
            logger.info("%s closed connection %s (still connected elsewhere)", conn.username, connection_id)
            return True

        try:
            chat_service.update_user_online_status(db, conn.user_id, False)
        except PersistenceError:
            logger.warning("Could not mark user %s offline; the sweep will catch up", conn.user_id)
        await mirror.mirror_presence(conn.user_id, False)

        notice = PresenceNotice(username=conn.username, message=f"{conn.username} left the chat", timestamp=utcnow())
        await self._broadcast({"type": events.USER_LEFT, **notice.model_dump(mode="json")})
        try:
            await self._broadcast_roster(db)
        except PersistenceError:
            logger.warning("Roster refresh after %s left was skipped", conn.username)

        logger.info("%s disconnected (connection %s)", conn.username, connection_id)
        return True

    def sweep_inactive(self, db: Session, threshold: timedelta) -> int:
        """Flag offline every online user silent for longer than *threshold*.

        Only the durable flag changes; live connections are left alone, so the
        roster may be stale until the next join or leave.
        """
        return chat_service.cleanup_inactive_users(db, threshold)

    # ------------------------------------------------------------------
    # Fan-out
    # ------------------------------------------------------------------

    async def _broadcast_roster(self, db: Session) -> None:
        users = chat_service.get_online_users(db)
        roster = [RosterEntry.model_validate(u).model_dump() for u in users]
        await self._broadcast({"type": events.PRESENCE_ROSTER, "users": roster})

    async def _deliver_history(self, conn: LiveConnection, history: list[dict]) -> None:
        await self._write(conn, {"type": events.MESSAGE_HISTORY, "messages": history})
        backlog, conn.backlog = conn.backlog or [], None
        for payload in backlog:
            await self._write(conn, payload)

    async def _send(self, conn: LiveConnection, payload: dict) -> None:
        if conn.backlog is not None:
            conn.backlog.append(payload)
            return
        await self._write(conn, payload)

    async def _broadcast(self, payload: dict, exclude: str | None = None) -> None:
        for conn in list(self._connections.values()):
            if conn.connection_id == exclude:
                continue
            await self._send(conn, payload)

    @staticmethod
    async def _write(conn: LiveConnection, payload: dict) -> None:
        try:
            await conn.websocket.send_text(json.dumps(payload))
        except Exception as exc:
            # Peer is gone; its own disconnect path removes the connection
            logger.debug("Dropped %s for connection %s: %s", payload.get("type"), conn.connection_id, exc)


hub = ChatHub()
