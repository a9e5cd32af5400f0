import json
import logging
import uuid
from typing import Any

import pydantic
from fastapi import WebSocket, WebSocketDisconnect
from sqlalchemy.orm import Session

from securechat.config import settings
from securechat.core import events
from securechat.core.exceptions import AuthError, ChatError, PersistenceError
from securechat.models.user import User
from securechat.schemas.chat import JoinEvent, MessageSendEvent, TypingEvent
from securechat.services import auth_service
from securechat.websocket.hub import hub

logger = logging.getLogger(__name__)

# Client-facing text for failures whose detail must stay server-side
_GENERIC_FAILURES = {
    events.USER_JOIN: "Failed to join chat",
    events.MESSAGE_SEND: "Failed to send message",
}


async def _authenticate(websocket: WebSocket, db: Session) -> User | None:
    """Bind the socket to the user behind the HTTP session cookie."""
    await websocket.accept()  # must accept before close() can carry a code
    token = websocket.cookies.get(settings.SESSION_COOKIE_NAME)
    try:
        user = auth_service.get_user_from_session_token(token, db)
    finally:
        # The user comes back detached; only its loaded columns are used later
        db.close()
    if user is None:
        await websocket.close(code=1008)
        return None
    return user


async def _send_error(websocket: WebSocket, message: str) -> None:
    try:
        await websocket.send_text(json.dumps({"type": events.ERROR, "message": message}))
    except Exception as exc:
        logger.debug("Could not deliver error event: %s", exc)


def _validation_message(exc: pydantic.ValidationError) -> str:
    first = exc.errors()[0]
    # Our own validators raise ValueError; surface their text without pydantic's prefix
    error = first.get("ctx", {}).get("error")
    if isinstance(error, ValueError):
        return str(error)
    return first.get("msg", "Invalid event")


async def _dispatch(websocket: WebSocket, db: Session, connection_id: str, user: User, data: dict[str, Any]) -> bool:
    """Route one inbound frame. Returns False when the client asked to leave."""
    event_type = data.get("type")

    if event_type == events.USER_JOIN:
        join = JoinEvent.model_validate(data)
        if join.username is not None and join.username != user.username:
            raise AuthError("Username does not match session")
        await hub.announce_join(db, connection_id, websocket, user.username)
        return True

    if not hub.is_joined(connection_id):
        raise AuthError("Join the chat first")

    if event_type == events.MESSAGE_SEND:
        await hub.post_message(db, connection_id, MessageSendEvent.model_validate(data).message)
    elif event_type == events.USER_TYPING:
        await hub.set_typing(connection_id, TypingEvent.model_validate(data).isTyping)
    elif event_type == events.PRESENCE_HEARTBEAT:
        await hub.heartbeat(db, connection_id)
    elif event_type == events.USER_LEAVE:
        return False
    else:
        logger.debug("Ignoring unknown event %r from user %s", event_type, user.id)
    return True


async def chat_ws_handler(websocket: WebSocket, db: Session) -> None:
    """Full lifecycle handler for a chat WebSocket connection.

    Unjoined -> Joined -> Closed. Only user.join is accepted until the hub has
    registered the connection; hub.disconnect runs exactly once on the way out
    no matter how the socket ends.

    The Session is closed after every event, so an idle socket holds no
    pooled database connection between frames.
    """
    user = await _authenticate(websocket, db)
    if user is None:
        return

    connection_id = uuid.uuid4().hex
    logger.info("WebSocket connected (user %s, connection %s)", user.id, connection_id)

    left = False
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                data = json.loads(raw)
            except json.JSONDecodeError:
                await _send_error(websocket, "Malformed event")
                continue
            if not isinstance(data, dict):
                await _send_error(websocket, "Malformed event")
                continue

            event_type = data.get("type")
            try:
                if not await _dispatch(websocket, db, connection_id, user, data):
                    left = True
                    break
            except pydantic.ValidationError as exc:
                await _send_error(websocket, _validation_message(exc))
            except PersistenceError as exc:
                logger.error("Store failure handling %r from user %s: %s", event_type, user.id, exc)
                await _send_error(websocket, _GENERIC_FAILURES.get(event_type, "Something went wrong"))
            except ChatError as exc:
                await _send_error(websocket, exc.message)
            except Exception as exc:
                logger.error("Error handling event %r from user %s: %s", event_type, user.id, exc, exc_info=True)
                await _send_error(websocket, _GENERIC_FAILURES.get(event_type, "Something went wrong"))
            finally:
                # Return the pooled connection while the socket sits idle
                db.close()

    except WebSocketDisconnect:
        pass
    finally:
        try:
            await hub.disconnect(db, connection_id)
        finally:
            db.close()

    if left:
        # Explicit user.leave: the socket is still open on our side
        await websocket.close()
    logger.info("WebSocket closed (user %s, connection %s)", user.id, connection_id)
