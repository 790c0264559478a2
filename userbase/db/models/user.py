import enum

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship

from ..base import Base, new_id, utcnow


class UserStatus(str, enum.Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"
    MERGED = "merged"


class User(Base):
    __tablename__ = 'userbase_users'

    id = Column(String(36), primary_key=True, default=new_id)
    handle = Column(String(64), unique=True, index=True, nullable=True)
    display_name = Column(String(100))
    avatar_url = Column(String(512))
    status = Column(String(16), nullable=False, default=UserStatus.ACTIVE.value)
    onboarding_step = Column(Integer, nullable=False, default=0)
    merged_into_user_id = Column(String(36), ForeignKey('userbase_users.id'), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # Relationships
    identities = relationship("Identity", back_populates="user")
    auth_methods = relationship("AuthMethod", back_populates="user")
    sessions = relationship("UserSession", back_populates="user")

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE.value

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "handle": self.handle,
            "display_name": self.display_name,
            "avatar_url": self.avatar_url,
            "status": self.status,
            "onboarding_step": self.onboarding_step,
        }
