"""
Account merge.

When a user proves control of an identity that already belongs to another
account, everything the other (source) account owns is moved onto the acting
(target) account and the source is neutralized. The move, the challenge
consumption, and the audit row commit together or not at all.
"""
import logging
from typing import Any, Dict, Optional

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from userbase.core.config import Settings
from userbase.core.errors import (
    AuthorizationError,
    DependencyError,
    NotFoundError,
    UserbaseError,
    ValidationError,
)
from userbase.db.base import utcnow
from userbase.db.models import (
    AuthMethod,
    Identity,
    SoftPost,
    SoftVote,
    User,
    UserMerge,
    UserSession,
    UserStatus,
)
from userbase.services.alerts import AlertNotifier
from userbase.services.challenge_store import ChallengeStore
from userbase.services.hive_client import HiveClient
from userbase.services.identifiers import normalize_identifier, parse_identity_type
from userbase.services.identity_store import IdentityStore
from userbase.services.user_service import UserService
from userbase.services.verifiers import SELF_REPORTED_TIER, get_verifier

logger = logging.getLogger(__name__)

MERGE_REASON = "identity_conflict"

# Tables whose rows follow their owner through a merge
OWNED_MODELS = {
    "auth_methods": AuthMethod,
    "sessions": UserSession,
    "soft_posts": SoftPost,
    "soft_votes": SoftVote,
}


class MergeEngine:
    def __init__(
        self,
        db: Session,
        settings: Settings,
        hive_client: HiveClient,
        alerts: Optional[AlertNotifier] = None,
    ):
        self.db = db
        self.settings = settings
        self.hive_client = hive_client
        self.alerts = alerts
        self.identities = IdentityStore(db)
        self.challenges = ChallengeStore(db, ttl_minutes=settings.CHALLENGE_TTL_MINUTES)
        self.users = UserService(db)

    def _count(self, model, user_id: str) -> int:
        return self.db.query(model).filter(model.user_id == user_id).count()

    def preview(self, acting_user_id: str, identity_type: str, raw_identifier: Optional[str]) -> Dict[str, Any]:
        """Describe what merging the identity's owner into the caller would move. Read only."""
        identity_type = parse_identity_type(identity_type)
        identifier = normalize_identifier(identity_type, raw_identifier)

        identity = self.identities.find(identity_type, identifier)
        if identity is None:
            return {"exists": False}
        if identity.user_id == acting_user_id:
            return {"exists": True, "same_user": True}

        source_user_id = identity.user_id
        try:
            counts = {"identities": self._count(Identity, source_user_id)}
            for name, model in OWNED_MODELS.items():
                counts[name] = self._count(model, source_user_id)
        except SQLAlchemyError as e:
            logger.error(f"Failed to count rows for merge preview: {e}")
            raise DependencyError("Failed to preview merge", details=str(e))

        return {
            "exists": True,
            "same_user": False,
            "source_user_id": source_user_id,
            "counts": counts,
        }

    async def execute(
        self,
        acting_user_id: str,
        identity_type: str,
        raw_identifier: Optional[str],
        source_user_id: Optional[str] = None,
        signature: Optional[str] = None,
        public_key: Optional[str] = None,
    ) -> UserMerge:
        """
        Merge the identity's current owner into the acting user.

        The proof is checked against the acting user's newest challenge for
        the identity, the one a conflicting link attempt leaves unconsumed.

        Raises:
            ValidationError: Same user on both sides, or identity not owned by source
            NotFoundError: No such identity
            AuthorizationError: Proof failed, or the identity is only self-reported
            DependencyError: The merge transaction failed and was rolled back
        """
        identity_type = parse_identity_type(identity_type)
        identifier = normalize_identifier(identity_type, raw_identifier)

        if source_user_id and source_user_id == acting_user_id:
            raise ValidationError("Source and target users must be different")

        identity = self.identities.find(identity_type, identifier)
        resolved_source = source_user_id or (identity.user_id if identity else None)
        if identity is None or not resolved_source:
            raise NotFoundError("Identity not found")
        if resolved_source == acting_user_id:
            raise ValidationError("Source and target users must be different")
        if source_user_id and identity.user_id != source_user_id:
            raise ValidationError("Identity does not belong to source user")

        self.users.require_active_user(acting_user_id)

        verifier = get_verifier(identity_type, self.hive_client, key_prefix=self.settings.HIVE_KEY_PREFIX)
        if verifier.trust_tier == SELF_REPORTED_TIER and not self.settings.MERGE_ALLOW_SELF_REPORTED:
            raise AuthorizationError("Self-reported identities cannot authorize a merge")

        challenge = None
        if verifier.requires_challenge:
            challenge = self.challenges.get_active(acting_user_id, identity_type, identifier)
            await verifier.verify(challenge.message, signature, identifier, {"public_key": public_key})

        metadata = {"identity_type": identity_type, "identifier": identifier}
        try:
            if challenge is not None:
                self.challenges.consume(challenge)
            record = self._reassign(resolved_source, acting_user_id, metadata)
            self.db.commit()
        except UserbaseError:
            self.db.rollback()
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to merge user {resolved_source} into {acting_user_id}: {e}")
            if self.alerts:
                await self.alerts.notify({
                    "type": "userbase_merge_failed",
                    "source_user_id": resolved_source,
                    "target_user_id": acting_user_id,
                    "error": str(e),
                })
            raise DependencyError("Failed to merge users", details=str(e))

        logger.info(f"Merged user {resolved_source} into {acting_user_id} via {identity_type} {identifier}")
        return record

    def _reassign(self, source_id: str, target_id: str, metadata: Dict[str, Any]) -> UserMerge:
        source = self.db.get(User, source_id)
        if source is None:
            raise NotFoundError("Source user not found")

        # A target keeps its own primaries; moved identities of those types are demoted
        target_primary_types = [
            row.type for row in self.db.query(Identity.type).filter(
                Identity.user_id == target_id,
                Identity.is_primary.is_(True),
            ).distinct()
        ]
        if target_primary_types:
            self.db.execute(
                update(Identity)
                .where(Identity.user_id == source_id, Identity.type.in_(target_primary_types))
                .values(is_primary=False)
                .execution_options(synchronize_session=False)
            )

        moved = {}
        for name, model in {"identities": Identity, **OWNED_MODELS}.items():
            result = self.db.execute(
                update(model)
                .where(model.user_id == source_id)
                .values(user_id=target_id)
                .execution_options(synchronize_session=False)
            )
            moved[name] = result.rowcount

        source.status = UserStatus.MERGED.value
        source.handle = None
        source.merged_into_user_id = target_id

        record = UserMerge(
            source_user_id=source_id,
            target_user_id=target_id,
            actor_user_id=target_id,
            reason=MERGE_REASON,
            metadata_={**metadata, "moved": moved},
            created_at=utcnow(),
        )
        self.db.add(record)
        self.db.flush()
        return record
