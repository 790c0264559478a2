from sqlalchemy import Column, String, DateTime, ForeignKey, Text, Index

from ..base import Base, new_id, utcnow


class AuthChallenge(Base):
    __tablename__ = 'userbase_identity_challenges'

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey('userbase_users.id'), nullable=False)
    type = Column(String(16), nullable=False)
    identifier = Column(String(64), nullable=False)
    nonce = Column(String(64), nullable=False)
    message = Column(Text)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    consumed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index('idx_userbase_challenges_scope', 'user_id', 'type', 'identifier', 'created_at'),
    )
