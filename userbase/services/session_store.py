import logging
from datetime import timedelta
from typing import Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from userbase.core.errors import DependencyError, InvalidSession, SessionExpired
from userbase.db.base import as_utc, utcnow
from userbase.db.models import User, UserSession
from userbase.security.tokens import generate_refresh_token, hash_token

logger = logging.getLogger(__name__)

DEFAULT_TTL_DAYS = 30


class SessionStore:
    """Opaque refresh-token sessions. Only the SHA-256 of a token is persisted."""

    def __init__(self, db: Session, ttl_days: int = DEFAULT_TTL_DAYS):
        self.db = db
        self.ttl = timedelta(days=ttl_days)

    def create(
        self,
        user_id: str,
        user_agent: Optional[str] = None,
        device_id: Optional[str] = None,
    ) -> Tuple[UserSession, str]:
        """
        Start a session for a user.

        Returns:
            The stored session row and the raw refresh token. The raw token is
            handed to the client exactly once and cannot be recovered later.
        """
        raw_token = generate_refresh_token()
        now = utcnow()
        session = UserSession(
            user_id=user_id,
            refresh_token_hash=hash_token(raw_token),
            created_at=now,
            expires_at=now + self.ttl,
            user_agent=user_agent,
            device_id=device_id,
        )
        try:
            self.db.add(session)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to create session for user {user_id}: {e}")
            raise DependencyError("Failed to create session", details=str(e))

        logger.info(f"Created session {session.id} for user {user_id}")
        return session, raw_token

    def lookup(self, raw_token: Optional[str]) -> Optional[UserSession]:
        """Find the unrevoked session for a raw token, expired or not."""
        if not raw_token:
            return None
        try:
            return (
                self.db.query(UserSession)
                .filter(
                    UserSession.refresh_token_hash == hash_token(raw_token),
                    UserSession.revoked_at.is_(None),
                )
                .first()
            )
        except SQLAlchemyError as e:
            logger.error(f"Failed to look up session: {e}")
            raise DependencyError("Failed to validate session", details=str(e))

    def validate(self, raw_token: Optional[str]) -> UserSession:
        """
        Resolve a presented refresh token to its live session.

        Raises:
            InvalidSession: Unknown or revoked token, or the owner is not active
            SessionExpired: The session reached its expiry
        """
        session = self.lookup(raw_token)
        if session is None:
            raise InvalidSession()
        if as_utc(session.expires_at) <= utcnow():
            raise SessionExpired()

        user = self.db.get(User, session.user_id)
        if user is None or not user.is_active:
            raise InvalidSession()
        return session

    def revoke(self, session_id: str) -> None:
        session = self.db.get(UserSession, session_id)
        if session is None or session.revoked_at is not None:
            return
        try:
            session.revoked_at = utcnow()
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to revoke session {session_id}: {e}")
            raise DependencyError("Failed to revoke session", details=str(e))
        logger.info(f"Revoked session {session_id}")
