import enum

from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, JSON, Index, text
from sqlalchemy.orm import relationship

from ..base import Base, new_id, utcnow


class IdentityType(str, enum.Enum):
    HIVE = "hive"
    EVM = "evm"
    FARCASTER = "farcaster"


# Which column holds the identifier for each identity type
IDENTIFIER_COLUMNS = {
    IdentityType.HIVE.value: "handle",
    IdentityType.EVM.value: "address",
    IdentityType.FARCASTER.value: "external_id",
}


def _per_type_unique(name: str, column: str, identity_type: str) -> Index:
    where = text(f"type = '{identity_type}'")
    return Index(name, column, unique=True, postgresql_where=where, sqlite_where=where)


class Identity(Base):
    __tablename__ = 'userbase_identities'

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey('userbase_users.id'), nullable=False, index=True)
    type = Column(String(16), nullable=False)
    handle = Column(String(64))
    address = Column(String(64))
    external_id = Column(String(64))
    is_primary = Column(Boolean, nullable=False, default=False)
    verified_at = Column(DateTime(timezone=True), default=utcnow)
    metadata_ = Column("metadata", JSON, default=dict)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        _per_type_unique('uq_userbase_identities_hive_handle', 'handle', IdentityType.HIVE.value),
        _per_type_unique('uq_userbase_identities_evm_address', 'address', IdentityType.EVM.value),
        _per_type_unique('uq_userbase_identities_farcaster_fid', 'external_id', IdentityType.FARCASTER.value),
        Index('idx_userbase_identities_user_type', 'user_id', 'type'),
    )

    # Relationships
    user = relationship("User", back_populates="identities")

    @property
    def identifier(self) -> str:
        return getattr(self, IDENTIFIER_COLUMNS[self.type])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "type": self.type,
            "handle": self.handle,
            "address": self.address,
            "external_id": self.external_id,
            "is_primary": self.is_primary,
            "verified_at": self.verified_at.isoformat() if self.verified_at else None,
            "metadata": self.metadata_ or {},
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
