"""
Error taxonomy shared by the HTTP routes, the chat hub and the WebSocket gateway.

Every error carries a short, client-safe message and the HTTP status it maps
to. Raw driver/ORM detail is logged where it is caught and never placed in
``message``.
"""


class ChatError(Exception):
    status_code = 400

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class AuthError(ChatError):
    status_code = 401


class NotFoundError(ChatError):
    status_code = 404


class ConflictError(ChatError):
    status_code = 409


class PersistenceError(ChatError):
    status_code = 500


class MirrorSyncError(ChatError):
    """Secondary-store write failure. Logged by the mirror module, never re-raised."""

    status_code = 500
