from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from securechat.database import Base

ROOM_PUBLIC = "public"
ROOM_PRIVATE = "private"
ROOM_DIRECT = "direct"
VALID_ROOM_TYPES = (ROOM_PUBLIC, ROOM_PRIVATE, ROOM_DIRECT)


class Room(Base):
    __tablename__ = "rooms"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False, index=True)
    description = Column(Text, nullable=True)
    type = Column(String(20), nullable=False, default=ROOM_PUBLIC, index=True)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    max_members = Column(Integer, nullable=True)  # None means no limit
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    creator = relationship("User", back_populates="rooms_created")
    messages = relationship("Message", back_populates="room")
    memberships = relationship("RoomMembership", back_populates="room")

    __table_args__ = (
        CheckConstraint(f"type IN ({', '.join(repr(t) for t in VALID_ROOM_TYPES)})", name="ck_rooms_type"),
    )
