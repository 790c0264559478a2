from sqlalchemy import Column, String, DateTime, ForeignKey, JSON

from ..base import Base, new_id, utcnow


class UserMerge(Base):
    __tablename__ = 'userbase_merges'

    id = Column(String(36), primary_key=True, default=new_id)
    source_user_id = Column(String(36), ForeignKey('userbase_users.id'), nullable=False)
    target_user_id = Column(String(36), ForeignKey('userbase_users.id'), nullable=False)
    actor_user_id = Column(String(36), ForeignKey('userbase_users.id'), nullable=False)
    reason = Column(String(64), nullable=False)
    metadata_ = Column("metadata", JSON, default=dict)
    created_at = Column(DateTime(timezone=True), default=utcnow)
