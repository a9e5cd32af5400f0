from datetime import datetime

from pydantic import BaseModel, Field, field_validator


class ChatMessage(BaseModel):
    """A persisted message as it travels over the wire (history and live)."""

    id: int
    username: str
    message: str
    timestamp: datetime


class PresenceNotice(BaseModel):
    username: str
    message: str
    timestamp: datetime


class TypingNotice(BaseModel):
    username: str
    isTyping: bool


# ---------------------------------------------------------------------------
# Inbound frames
# ---------------------------------------------------------------------------


class JoinEvent(BaseModel):
    username: str | None = None


class MessageSendEvent(BaseModel):
    message: str = Field(..., max_length=2000)

    @field_validator("message")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Message cannot be empty")
        return v


class TypingEvent(BaseModel):
    isTyping: bool = False
