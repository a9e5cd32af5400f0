from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from securechat.database import Base

# Valid role values
ROLE_MEMBER = "member"
ROLE_MODERATOR = "moderator"
ROLE_ADMIN = "admin"
VALID_ROLES = (ROLE_MEMBER, ROLE_MODERATOR, ROLE_ADMIN)


class RoomMembership(Base):
    """Join table between User and Room, with role information."""

    __tablename__ = "room_memberships"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    room_id = Column(Integer, ForeignKey("rooms.id"), nullable=False, index=True)
    # role: "member" | "moderator" | "admin"
    role = Column(String(20), nullable=False, default=ROLE_MEMBER)
    joined_at = Column(DateTime(timezone=True), server_default=func.now())
    # Leaving deactivates the row; rejoining flips it back instead of inserting
    is_active = Column(Boolean, nullable=False, default=True)
    last_read_message_id = Column(Integer, ForeignKey("messages.id", ondelete="SET NULL"), nullable=True)

    # Relationships
    user = relationship("User", back_populates="memberships")
    room = relationship("Room", back_populates="memberships")
    last_read_message = relationship("Message", foreign_keys=[last_read_message_id])

    __table_args__ = (
        UniqueConstraint("user_id", "room_id", name="unique_room_member"),
        CheckConstraint(f"role IN ({', '.join(repr(r) for r in VALID_ROLES)})", name="ck_room_memberships_role"),
    )
