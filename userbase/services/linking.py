import logging
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from userbase.core.config import Settings
from userbase.core.errors import (
    AuthorizationError,
    ConflictError,
    DependencyError,
    UserbaseError,
    ValidationError,
)
from userbase.db.models import AuthChallenge, Identity, IdentityType
from userbase.services.challenge_store import ChallengeStore
from userbase.services.hive_client import HiveAccount, HiveClient, extract_linked_identities
from userbase.services.identifiers import (
    is_evm_address,
    normalize_handle,
    normalize_identifier,
    parse_identity_type,
)
from userbase.services.identity_store import IdentityStore
from userbase.services.verifiers import get_verifier

logger = logging.getLogger(__name__)


class IdentityLinker:
    """Challenge issuing and verify-then-bind for additional identities."""

    def __init__(self, db: Session, settings: Settings, hive_client: HiveClient):
        self.db = db
        self.settings = settings
        self.hive_client = hive_client
        self.challenges = ChallengeStore(db, ttl_minutes=settings.CHALLENGE_TTL_MINUTES)
        self.identities = IdentityStore(db)

    def _verifier(self, identity_type: str):
        return get_verifier(identity_type, self.hive_client, key_prefix=self.settings.HIVE_KEY_PREFIX)

    def _atomically(self, work: Callable[[], Any]) -> Any:
        try:
            result = work()
            self.db.commit()
            return result
        except UserbaseError:
            self.db.rollback()
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to link identity: {e}")
            raise DependencyError("Failed to link identity", details=str(e))

    async def issue_challenge(self, user_id: str, identity_type: str, raw_identifier: Optional[str]) -> AuthChallenge:
        """
        Issue a message for the caller to sign with the identity's key.

        Hive handles must name an existing on-chain account.
        """
        identity_type = parse_identity_type(identity_type)
        verifier = self._verifier(identity_type)
        if not verifier.requires_challenge:
            raise ValidationError("Unsupported identity type")

        identifier = normalize_identifier(identity_type, raw_identifier)
        if identity_type == IdentityType.HIVE.value:
            await self.hive_client.get_account(identifier)

        return self.challenges.issue(
            user_id,
            identity_type,
            identifier,
            label=verifier.challenge_label,
            identifier_line=verifier.describe_identifier(identifier),
        )

    async def verify_and_link(
        self,
        user_id: str,
        identity_type: str,
        raw_identifier: Optional[str],
        signature: Optional[str],
        public_key: Optional[str] = None,
    ) -> Identity:
        """
        Check a signed challenge and bind the identity to the caller.

        The challenge is consumed in the same transaction as the bind, so a
        rejected signature or a conflict leaves it usable for a retry or a
        merge.

        Raises:
            NoActiveChallenge, ChallengeExpired: No usable challenge
            ValidationError: Malformed signature or key
            AuthorizationError: The proof does not match the identity
            ConflictError: Another user owns the identity (merge_required)
        """
        identity_type = parse_identity_type(identity_type)
        verifier = self._verifier(identity_type)
        if not verifier.requires_challenge:
            raise ValidationError("Unsupported identity type")

        identifier = normalize_identifier(identity_type, raw_identifier)
        challenge = self.challenges.get_active(user_id, identity_type, identifier)
        evidence = await verifier.verify(
            challenge.message,
            signature,
            identifier,
            {"public_key": public_key},
        )

        def bind():
            self.challenges.consume(challenge)
            return self.identities.upsert(user_id, identity_type, identifier)

        identity = self._atomically(bind)
        logger.info(f"User {user_id} verified {identity_type} identity {identifier}")

        account = evidence.get("account")
        if isinstance(account, HiveAccount):
            try:
                self.link_advertised_identities(user_id, account)
            except (UserbaseError, SQLAlchemyError) as e:
                logger.warning(f"Skipped advertised identities for Hive account {account.name}: {e}")
        return identity

    def link_advertised_identities(self, user_id: str, account: HiveAccount) -> List[Identity]:
        """
        Bind the wallets and Farcaster account a verified Hive profile lists.

        Best effort: identities owned by someone else are skipped.
        """
        linked = extract_linked_identities(account.json_metadata)
        results: List[Identity] = []

        for address in linked.addresses:
            try:
                results.append(self._atomically(lambda: self.identities.upsert(
                    user_id,
                    IdentityType.EVM.value,
                    address,
                    metadata={"source": "hive"},
                )))
            except ConflictError:
                logger.info(f"Skipping advertised address {address}, linked to another user")

        if linked.farcaster:
            farcaster = linked.farcaster
            try:
                fid = normalize_identifier(IdentityType.FARCASTER.value, farcaster.fid)
            except ValidationError:
                logger.info(f"Skipping advertised Farcaster fid {farcaster.fid!r}, not a valid fid")
                return results
            try:
                results.append(self._atomically(lambda: self.identities.upsert(
                    user_id,
                    IdentityType.FARCASTER.value,
                    fid,
                    handle=normalize_handle(farcaster.username),
                    address=farcaster.custody_address,
                    metadata={"verified_wallets": farcaster.verified_wallets, "source": "hive"},
                )))
            except ConflictError:
                logger.info(f"Skipping advertised Farcaster fid {farcaster.fid}, linked to another user")

        return results

    def link_self_reported(
        self,
        user_id: str,
        identity_type: Optional[str],
        external_id: Optional[Any],
        handle: Optional[str] = None,
        address: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        is_primary: Optional[bool] = None,
    ) -> Identity:
        """Record a Farcaster account the client vouches for, tagged as self-reported."""
        if not identity_type:
            raise ValidationError("Missing identity type")
        if identity_type != IdentityType.FARCASTER.value:
            raise ValidationError("Unsupported identity type")
        if external_id is None or str(external_id).strip() == "":
            raise ValidationError("Farcaster fid is required")

        fid = normalize_identifier(identity_type, str(external_id))
        return self._atomically(lambda: self.identities.upsert(
            user_id,
            identity_type,
            fid,
            handle=normalize_handle(handle),
            address=address.strip().lower() if address and address.strip() else None,
            metadata=metadata,
            is_primary=is_primary,
        ))

    def link_farcaster_verified_address(self, user_id: str, address: Optional[str], farcaster_fid: Optional[Any]) -> Identity:
        """
        Bind an address Farcaster has already verified for the caller's fid.

        Raises:
            ValidationError: Missing or malformed address or fid
            AuthorizationError: The caller has not linked that Farcaster account
            ConflictError: Another user owns the address
        """
        if not address or not isinstance(address, str):
            raise ValidationError("Missing or invalid address")
        if farcaster_fid is None or str(farcaster_fid).strip() == "":
            raise ValidationError("Missing farcaster_fid")
        if not is_evm_address(address):
            raise ValidationError("Invalid Ethereum address")

        fid = str(farcaster_fid).strip()
        owned = self.identities.find(IdentityType.FARCASTER.value, fid)
        if owned is None or owned.user_id != user_id:
            raise AuthorizationError("You must link your Farcaster account first")

        return self._atomically(lambda: self.identities.upsert(
            user_id,
            IdentityType.EVM.value,
            address.lower(),
            metadata={"verified_via": "farcaster", "farcaster_fid": fid},
        ))
