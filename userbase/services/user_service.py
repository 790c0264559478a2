from typing import Optional
from urllib.parse import quote
import logging
import secrets

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from userbase.core.errors import (
    AuthorizationError,
    CapacityError,
    ConflictError,
    DependencyError,
    NotFoundError,
)
from userbase.db.models import AuthMethod, EMAIL_MAGIC, User, UserStatus
from userbase.services.identifiers import slugify

logger = logging.getLogger(__name__)

DEFAULT_HANDLE_BASE = "skater"
DEFAULT_DISPLAY_NAME = "Skater"
DEFAULT_HANDLE_SUFFIX_ATTEMPTS = 6


def derive_display_name(identifier: Optional[str], handle: Optional[str] = None) -> str:
    """Turn a handle or the local part of an email into a presentable name."""
    if handle:
        return handle[:1].upper() + handle[1:]
    if not identifier:
        return DEFAULT_DISPLAY_NAME
    local = identifier.split("@")[0]
    for separator in "_-.":
        local = local.replace(separator, " ")
    words = [word for word in local.split(" ") if word][:4]
    if not words:
        return DEFAULT_DISPLAY_NAME
    return " ".join(word[:1].upper() + word[1:] for word in words)


def generated_avatar_url(seed: Optional[str]) -> str:
    return f"https://api.dicebear.com/7.x/pixel-art/svg?seed={quote(seed or 'skatehive', safe='')}"


def hive_avatar_url(handle: str) -> str:
    return f"https://images.hive.blog/u/{handle}/avatar"


class UserService:
    """Service for handling user-related operations in the database."""

    def __init__(self, db: Session, suffix_attempts: int = DEFAULT_HANDLE_SUFFIX_ATTEMPTS):
        """Initialize the UserService.

        Args:
            db: Request-scoped SQLAlchemy session.
            suffix_attempts: How many random handle suffixes to try before giving up.
        """
        self.db = db
        self.suffix_attempts = suffix_attempts

    def get_user(self, user_id: str) -> Optional[User]:
        try:
            return self.db.get(User, user_id)
        except SQLAlchemyError as e:
            logger.error(f"Error loading user {user_id}: {e}")
            raise DependencyError("Failed to load user", details=str(e))

    def require_active_user(self, user_id: str) -> User:
        """Load a user that is allowed to act.

        Raises:
            NotFoundError: No such user
            AuthorizationError: The account is suspended or was merged away
        """
        user = self.get_user(user_id)
        if user is None:
            raise NotFoundError("User not found")
        if user.status == UserStatus.SUSPENDED.value:
            raise AuthorizationError("Account suspended")
        if user.status == UserStatus.MERGED.value:
            raise AuthorizationError("Account has been merged", merged_into_user_id=user.merged_into_user_id)
        return user

    def is_handle_available(self, handle: str) -> bool:
        return self.db.query(User.id).filter(User.handle == handle).first() is None

    def allocate_handle(self, base: Optional[str]) -> str:
        """Find a free handle derived from ``base``.

        Tries the slug itself, then a bounded number of random 4-hex-char
        suffixes.

        Raises:
            CapacityError: Every candidate collided
        """
        sanitized = slugify(base) or DEFAULT_HANDLE_BASE
        if self.is_handle_available(sanitized):
            return sanitized

        for _ in range(self.suffix_attempts):
            candidate = f"{sanitized}-{secrets.token_hex(2)}"
            if self.is_handle_available(candidate):
                return candidate

        logger.warning(f"Handle allocation exhausted for base '{sanitized}'")
        raise CapacityError("Unable to generate unique handle, please try again")

    def create_user(
        self,
        handle: Optional[str],
        display_name: Optional[str] = None,
        avatar_url: Optional[str] = None,
    ) -> User:
        """Create a new active user. Flushes only; the caller commits.

        Args:
            handle: Unique handle, already allocated
            display_name: Name shown in the app
            avatar_url: Profile image

        Returns:
            The newly created User object.

        Raises:
            ConflictError: The handle was taken between allocation and insert
        """
        db_user = User(
            handle=handle,
            display_name=display_name,
            avatar_url=avatar_url,
            status=UserStatus.ACTIVE.value,
            onboarding_step=0,
        )
        try:
            self.db.add(db_user)
            self.db.flush()
        except IntegrityError:
            self.db.rollback()
            logger.warning(f"Handle '{handle}' was claimed concurrently")
            raise ConflictError("Handle already in use")
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Error creating user: {e}")
            raise DependencyError("Failed to create user", details=str(e))

        logger.info(f"Created new user {db_user.id} with handle {handle}")
        return db_user

    def backfill_profile(
        self,
        user: User,
        display_name: Optional[str] = None,
        avatar_url: Optional[str] = None,
        handle: Optional[str] = None,
    ) -> bool:
        """Fill blank profile fields without overwriting anything already set.

        Returns:
            True if the user row changed. The caller commits.
        """
        changed = False
        if not user.display_name and display_name:
            user.display_name = display_name
            changed = True
        if not user.avatar_url and avatar_url:
            user.avatar_url = avatar_url
            changed = True
        if not user.handle and handle:
            candidate = slugify(handle)
            if candidate and self.is_handle_available(candidate):
                user.handle = candidate
                changed = True
        if changed:
            logger.debug(f"Backfilled profile fields for user {user.id}")
        return changed

    def find_email_method(self, email: str) -> Optional[AuthMethod]:
        try:
            return (
                self.db.query(AuthMethod)
                .filter(AuthMethod.type == EMAIL_MAGIC, AuthMethod.identifier == email)
                .first()
            )
        except SQLAlchemyError as e:
            logger.error(f"Error finding auth method: {e}")
            raise DependencyError("Failed to lookup auth method", details=str(e))

    def email_for_user(self, user_id: str) -> Optional[str]:
        method = (
            self.db.query(AuthMethod)
            .filter(AuthMethod.user_id == user_id, AuthMethod.type == EMAIL_MAGIC)
            .first()
        )
        return method.identifier if method else None

    def add_email_method(self, user_id: str, email: str) -> AuthMethod:
        """Bind a normalized email to a user. Flushes only; the caller commits.

        Raises:
            ConflictError: The email already belongs to an account
        """
        method = AuthMethod(user_id=user_id, type=EMAIL_MAGIC, identifier=email)
        try:
            self.db.add(method)
            self.db.flush()
        except IntegrityError:
            self.db.rollback()
            raise ConflictError("Auth method already exists")
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Error creating auth method: {e}")
            raise DependencyError("Failed to create auth method", details=str(e))
        return method
