import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from userbase.core.errors import AuthorizationError, ConflictError, DependencyError, NotFoundError
from userbase.db.base import utcnow
from userbase.db.models import Identity, IdentityType, IDENTIFIER_COLUMNS
from userbase.services.verifiers import SELF_REPORTED_TIER, trust_tier_for

logger = logging.getLogger(__name__)

CONFLICT_MESSAGES = {
    IdentityType.HIVE.value: "Hive account already linked elsewhere",
    IdentityType.EVM.value: "Address already linked elsewhere",
    IdentityType.FARCASTER.value: "Farcaster account already linked elsewhere",
}


def conflict_for(identity_type: str, existing_user_id: Optional[str]) -> ConflictError:
    return ConflictError(
        CONFLICT_MESSAGES.get(identity_type, "Identity already linked elsewhere"),
        merge_required=True,
        existing_user_id=existing_user_id,
    )


class IdentityStore:
    """
    Persistence for linked external identities.

    Writes only flush; committing is left to the caller so that an identity
    insert can share a transaction with challenge consumption or user creation.
    """

    def __init__(self, db: Session):
        self.db = db

    def find(self, identity_type: str, identifier: str) -> Optional[Identity]:
        column = getattr(Identity, IDENTIFIER_COLUMNS[identity_type])
        try:
            return (
                self.db.query(Identity)
                .filter(Identity.type == identity_type, column == identifier)
                .first()
            )
        except SQLAlchemyError as e:
            logger.error(f"Failed to look up {identity_type} identity: {e}")
            raise DependencyError("Failed to load identity", details=str(e))

    def list_for_user(self, user_id: str) -> List[Identity]:
        try:
            return (
                self.db.query(Identity)
                .filter(Identity.user_id == user_id)
                .order_by(Identity.created_at.desc())
                .all()
            )
        except SQLAlchemyError as e:
            logger.error(f"Failed to list identities for user {user_id}: {e}")
            raise DependencyError("Failed to load identities", details=str(e))

    def has_primary(self, user_id: str, identity_type: str) -> bool:
        return (
            self.db.query(Identity.id)
            .filter(
                Identity.user_id == user_id,
                Identity.type == identity_type,
                Identity.is_primary.is_(True),
            )
            .first()
            is not None
        )

    def upsert(
        self,
        user_id: str,
        identity_type: str,
        identifier: str,
        handle: Optional[str] = None,
        address: Optional[str] = None,
        external_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        is_primary: Optional[bool] = None,
    ) -> Identity:
        """
        Bind (type, identifier) to a user.

        Idempotent for the current owner. A different owner, whether found up
        front or discovered through the unique index on flush, is a conflict
        that carries the owner's id so the client can offer a merge.

        Identities of a self-reported type always carry
        ``metadata["trust"] = "self_reported"``, whatever the caller passed.

        Raises:
            ConflictError: The identity belongs to another user
            DependencyError: The store failed
        """
        existing = self.find(identity_type, identifier)
        if existing is not None:
            if existing.user_id == user_id:
                return existing
            logger.info(f"{identity_type} identity {identifier} is owned by user {existing.user_id}")
            raise conflict_for(identity_type, existing.user_id)

        if is_primary is None:
            is_primary = not self.has_primary(user_id, identity_type)

        values = {"handle": handle, "address": address, "external_id": external_id}
        values[IDENTIFIER_COLUMNS[identity_type]] = identifier

        metadata = dict(metadata or {})
        if trust_tier_for(identity_type) == SELF_REPORTED_TIER:
            metadata["trust"] = SELF_REPORTED_TIER

        identity = Identity(
            user_id=user_id,
            type=identity_type,
            is_primary=is_primary,
            verified_at=utcnow(),
            metadata_=metadata,
            **values,
        )
        try:
            self.db.add(identity)
            self.db.flush()
        except IntegrityError:
            # Lost a race against a concurrent bind of the same identifier
            self.db.rollback()
            owner = self.find(identity_type, identifier)
            logger.warning(f"Concurrent bind of {identity_type} identity {identifier} rejected")
            raise conflict_for(identity_type, owner.user_id if owner else None)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to link {identity_type} identity: {e}")
            raise DependencyError("Failed to link identity", details=str(e))

        logger.info(f"Linked {identity_type} identity {identifier} to user {user_id}")
        return identity

    def delete(self, identity_id: str, user_id: str) -> None:
        """
        Remove one of the caller's identities and commit.

        Raises:
            NotFoundError: No identity has that id
            AuthorizationError: The identity belongs to someone else
        """
        identity = self.db.query(Identity).filter(Identity.id == identity_id).first()
        if identity is None:
            raise NotFoundError("Identity not found")
        if identity.user_id != user_id:
            raise AuthorizationError("Forbidden")

        try:
            self.db.delete(identity)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to delete identity {identity_id}: {e}")
            raise DependencyError("Failed to delete identity", details=str(e))
        logger.info(f"Deleted {identity.type} identity {identity_id} for user {user_id}")
