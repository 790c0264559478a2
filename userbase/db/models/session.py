from sqlalchemy import Column, String, DateTime, ForeignKey, Text
from sqlalchemy.orm import relationship

from ..base import Base, new_id, utcnow


class UserSession(Base):
    """A long-lived login bound to a user. Only the refresh token's hash is stored."""
    __tablename__ = 'userbase_sessions'

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey('userbase_users.id'), nullable=False, index=True)
    refresh_token_hash = Column(String(64), unique=True, index=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    revoked_at = Column(DateTime(timezone=True), nullable=True)
    user_agent = Column(Text)
    device_id = Column(String(128))

    # Relationships
    user = relationship("User", back_populates="sessions")
