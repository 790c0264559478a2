from sqlalchemy import Column, String, DateTime, ForeignKey, JSON, Integer

from ..base import Base, new_id, utcnow


class SoftPost(Base):
    """A post queued by an app-only user, later broadcast to Hive."""
    __tablename__ = 'userbase_soft_posts'

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey('userbase_users.id'), nullable=False, index=True)
    author = Column(String(64))
    permlink = Column(String(255))
    status = Column(String(32), default="queued")
    payload = Column(JSON)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class SoftVote(Base):
    __tablename__ = 'userbase_soft_votes'

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey('userbase_users.id'), nullable=False, index=True)
    author = Column(String(64))
    permlink = Column(String(255))
    weight = Column(Integer)
    status = Column(String(32), default="queued")
    created_at = Column(DateTime(timezone=True), default=utcnow)
