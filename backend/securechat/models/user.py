from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from securechat.core.clock import utcnow
from securechat.database import Base

STATUS_ACTIVE = "active"
STATUS_INACTIVE = "inactive"
STATUS_BANNED = "banned"
VALID_STATUSES = (STATUS_ACTIVE, STATUS_INACTIVE, STATUS_BANNED)


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(50), unique=True, index=True, nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    hashed_password = Column(String(255), nullable=False)
    avatar_url = Column(Text, nullable=True)
    # status: "active" | "inactive" | "banned": only active users may log in
    status = Column(String(20), nullable=False, default=STATUS_ACTIVE, index=True)
    # Durable presence flag. Set on join, cleared on leave/logout and by the
    # inactivity sweep; may lag behind the live connection set between sweeps.
    is_online = Column(Boolean, nullable=False, default=False, index=True)
    last_seen = Column(DateTime(timezone=True), default=utcnow)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    messages = relationship("Message", back_populates="author")
    rooms_created = relationship("Room", back_populates="creator")
    memberships = relationship("RoomMembership", back_populates="user")
    sessions = relationship("UserSession", back_populates="user", cascade="all, delete-orphan")

    __table_args__ = (
        CheckConstraint(f"status IN ({', '.join(repr(s) for s in VALID_STATUSES)})", name="ck_users_status"),
    )

    @property
    def is_active(self) -> bool:
        return self.status == STATUS_ACTIVE
