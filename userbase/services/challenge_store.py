import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from userbase.core.errors import (
    AuthError,
    ChallengeExpired,
    DependencyError,
    NoActiveChallenge,
    ValidationError,
)
from userbase.db.base import as_utc, utcnow
from userbase.db.models import AuthChallenge
from userbase.security.tokens import generate_nonce

logger = logging.getLogger(__name__)

DEFAULT_TTL_MINUTES = 10


def build_challenge_message(user_id: str, label: str, identifier_line: str, nonce: str, issued_at: datetime) -> str:
    return "\n".join([
        f"Skatehive wants to link your {label} to your app account.",
        "",
        f"User ID: {user_id}",
        identifier_line,
        f"Nonce: {nonce}",
        f"Issued at: {issued_at.isoformat()}",
        "",
        "If you did not request this, you can ignore this message.",
    ])


class ChallengeStore:
    """Short-lived, single-use signing challenges scoped to (user, type, identifier)."""

    def __init__(self, db: Session, ttl_minutes: int = DEFAULT_TTL_MINUTES):
        self.db = db
        self.ttl = timedelta(minutes=ttl_minutes)

    def issue(
        self,
        user_id: str,
        identity_type: str,
        identifier: str,
        label: str = "account",
        identifier_line: Optional[str] = None,
    ) -> AuthChallenge:
        """
        Persist a fresh challenge and return it; the caller signs ``challenge.message``.

        Commits immediately: a challenge is useless unless it survives the request.
        """
        nonce = generate_nonce()
        issued_at = utcnow()
        challenge = AuthChallenge(
            user_id=user_id,
            type=identity_type,
            identifier=identifier,
            nonce=nonce,
            message=build_challenge_message(
                user_id, label, identifier_line or identifier, nonce, issued_at
            ),
            created_at=issued_at,
            expires_at=issued_at + self.ttl,
        )
        try:
            self.db.add(challenge)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to create {identity_type} challenge for user {user_id}: {e}")
            raise DependencyError("Failed to create challenge", details=str(e))

        logger.info(f"Issued {identity_type} challenge {challenge.id} for user {user_id}")
        return challenge

    def get_active(self, user_id: str, identity_type: str, identifier: str) -> AuthChallenge:
        """
        Return the newest unconsumed challenge for the scope without mutating it.

        Raises:
            NoActiveChallenge: No unconsumed challenge exists
            ChallengeExpired: The newest one is past its expiry
            ValidationError: The stored challenge has no message to sign
        """
        try:
            challenge = (
                self.db.query(AuthChallenge)
                .filter(
                    AuthChallenge.user_id == user_id,
                    AuthChallenge.type == identity_type,
                    AuthChallenge.identifier == identifier,
                    AuthChallenge.consumed_at.is_(None),
                )
                .order_by(AuthChallenge.created_at.desc())
                .first()
            )
        except SQLAlchemyError as e:
            logger.error(f"Failed to fetch {identity_type} challenge: {e}")
            raise DependencyError("Failed to verify challenge", details=str(e))

        if challenge is None:
            raise NoActiveChallenge()
        if as_utc(challenge.expires_at) <= utcnow():
            raise ChallengeExpired()
        if not challenge.message:
            raise ValidationError("Challenge must be refreshed")
        return challenge

    def consume(self, challenge: AuthChallenge) -> None:
        """
        Atomically mark a challenge used.

        One conditional UPDATE: it only matches while the row is still unconsumed
        and unexpired, so two concurrent consumers cannot both succeed. Does not
        commit; the caller's transaction decides whether consumption sticks.
        """
        now = utcnow()
        result = self.db.execute(
            update(AuthChallenge)
            .where(
                AuthChallenge.id == challenge.id,
                AuthChallenge.consumed_at.is_(None),
                AuthChallenge.expires_at > now,
            )
            .values(consumed_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning(f"Challenge {challenge.id} was already consumed or expired")
            raise AuthError("Challenge already used or expired")
        challenge.consumed_at = now
