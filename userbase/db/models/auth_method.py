from sqlalchemy import Column, String, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship

from ..base import Base, new_id, utcnow

EMAIL_MAGIC = "email_magic"


class AuthMethod(Base):
    __tablename__ = 'userbase_auth_methods'

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey('userbase_users.id'), nullable=False, index=True)
    type = Column(String(32), nullable=False, default=EMAIL_MAGIC)
    identifier = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        UniqueConstraint('type', 'identifier', name='uq_userbase_auth_methods_type_identifier'),
    )

    # Relationships
    user = relationship("User", back_populates="auth_methods")


class MagicLinkToken(Base):
    __tablename__ = 'userbase_magic_links'

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey('userbase_users.id'), nullable=False)
    identifier = Column(String(255), nullable=False)
    token_hash = Column(String(64), unique=True, index=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    consumed_at = Column(DateTime(timezone=True), nullable=True)
