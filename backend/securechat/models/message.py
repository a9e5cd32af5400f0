from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from securechat.core.clock import utcnow
from securechat.database import Base

MESSAGE_TEXT = "text"
MESSAGE_IMAGE = "image"
MESSAGE_FILE = "file"
MESSAGE_SYSTEM = "system"
VALID_MESSAGE_TYPES = (MESSAGE_TEXT, MESSAGE_IMAGE, MESSAGE_FILE, MESSAGE_SYSTEM)


class Message(Base):
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, index=True)
    content = Column(String(2000), nullable=False)
    type = Column(String(20), nullable=False, default=MESSAGE_TEXT, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    room_id = Column(Integer, ForeignKey("rooms.id"), nullable=False, index=True)
    reply_to_id = Column(Integer, ForeignKey("messages.id", ondelete="SET NULL"), nullable=True)
    # Stamped application-side so history ordering keeps sub-second precision
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    edited_at = Column(DateTime(timezone=True), nullable=True)
    is_deleted = Column(Boolean, default=False, index=True)

    # Relationships
    author = relationship("User", back_populates="messages")
    room = relationship("Room", back_populates="messages")
    reply_to = relationship("Message", remote_side="Message.id", foreign_keys="Message.reply_to_id")

    __table_args__ = (
        CheckConstraint(f"type IN ({', '.join(repr(t) for t in VALID_MESSAGE_TYPES)})", name="ck_messages_type"),
    )
