"""
Account bootstrap and login.

Three entry points share one find-or-create algorithm: chain/wallet bootstrap,
email magic links, and the internal session exchange. A new user and the
identity or auth method that names it are written in one database
transaction, so a failure never leaves an orphaned user behind.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlencode

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from userbase.core.config import Settings
from userbase.core.errors import (
    AuthError,
    ConflictError,
    DependencyError,
    NotFoundError,
    UserbaseError,
    ValidationError,
)
from userbase.db.base import utcnow
from userbase.db.models import EMAIL_MAGIC, IdentityType, MagicLinkToken, User, UserSession
from userbase.security.tokens import generate_magic_token, hash_token
from userbase.services.alerts import AlertNotifier
from userbase.services.hive_client import HiveClient
from userbase.services.identifiers import (
    normalize_email,
    normalize_handle,
    normalize_identifier,
    parse_identity_type,
    sanitize_redirect,
    slugify,
)
from userbase.services.identity_store import IdentityStore
from userbase.services.mailer import SmtpMailer
from userbase.services.session_store import SessionStore
from userbase.services.user_service import (
    DEFAULT_DISPLAY_NAME,
    UserService,
    derive_display_name,
    generated_avatar_url,
    hive_avatar_url,
)

logger = logging.getLogger(__name__)

MAGIC_LINK_PATH = "/api/v1/userbase/auth/magic-link"
INCONSISTENT_STATE = "Inconsistent account state, contact support"


@dataclass
class ProvisionResult:
    user_id: str
    session: Optional[UserSession] = None
    refresh_token: Optional[str] = None
    identity_id: Optional[str] = None
    auth_method_id: Optional[str] = None
    created_user: bool = False
    reused_session: bool = False


class AccountProvisioner:
    def __init__(
        self,
        db: Session,
        settings: Settings,
        hive_client: Optional[HiveClient] = None,
        mailer: Optional[SmtpMailer] = None,
        alerts: Optional[AlertNotifier] = None,
    ):
        self.db = db
        self.settings = settings
        self.hive_client = hive_client
        self.mailer = mailer
        self.alerts = alerts
        self.users = UserService(db, suffix_attempts=settings.HANDLE_SUFFIX_ATTEMPTS)
        self.identities = IdentityStore(db)
        self.sessions = SessionStore(db, ttl_days=settings.SESSION_TTL_DAYS)

    async def _rollback(self, context: str, cause: Exception) -> None:
        try:
            self.db.rollback()
        except SQLAlchemyError as e:
            logger.critical(f"Rollback failed during {context}: {e} (original error: {cause})")
            if self.alerts:
                await self.alerts.notify({
                    "type": "userbase_inconsistent_state",
                    "context": context,
                    "error": str(e),
                })
            raise DependencyError(INCONSISTENT_STATE, details=str(e))

    async def _in_transaction(self, context: str, work: Callable[[], Any]) -> Any:
        """Run ``work`` and commit, or roll everything it wrote back."""
        try:
            result = work()
            self.db.commit()
            return result
        except UserbaseError as e:
            await self._rollback(context, e)
            raise
        except SQLAlchemyError as e:
            logger.error(f"Store failure during {context}: {e}")
            await self._rollback(context, e)
            raise DependencyError(f"Failed to {context}", details=str(e))

    async def _commit(self, context: str) -> None:
        await self._in_transaction(context, lambda: None)

    # Chain / wallet bootstrap

    async def bootstrap(
        self,
        identity_type: str,
        identifier: Optional[str],
        handle: Optional[str] = None,
        display_name: Optional[str] = None,
        avatar_url: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        current_token: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> ProvisionResult:
        """
        Find or create the account behind an external identity and log it in.

        Calling this twice for the same identifier yields the same user. A
        caller already holding a live session gets that session's user back
        without a new session being minted.

        Raises:
            ValidationError: Unsupported type or malformed identifier
            AuthorizationError: The owning account is suspended or merged
            CapacityError: No free handle could be allocated
            DependencyError: The store failed
        """
        identity_type = parse_identity_type(identity_type)
        identifier = normalize_identifier(identity_type, identifier)

        if current_token:
            try:
                session = self.sessions.validate(current_token)
                logger.info(f"Bootstrap reused live session for user {session.user_id}")
                return ProvisionResult(user_id=session.user_id, session=session, reused_session=True)
            except AuthError:
                logger.debug("Presented session is not usable, continuing bootstrap")

        existing = self.identities.find(identity_type, identifier)
        if existing is not None:
            user = self.users.require_active_user(existing.user_id)
            if self.users.backfill_profile(user, display_name, avatar_url, handle):
                await self._commit("update user")
            session, raw = self.sessions.create(user.id, user_agent=user_agent)
            return ProvisionResult(
                user_id=user.id,
                session=session,
                refresh_token=raw,
                identity_id=existing.id,
            )

        if handle:
            handle_base = handle
        elif identity_type == IdentityType.HIVE.value:
            handle_base = identifier
        elif identity_type == IdentityType.EVM.value:
            handle_base = f"wallet-{identifier[2:8]}"
        else:
            handle_base = ""

        if display_name:
            default_name = display_name
        elif identity_type == IdentityType.HIVE.value:
            default_name = identifier
        elif identity_type == IdentityType.FARCASTER.value:
            default_name = handle or DEFAULT_DISPLAY_NAME
        else:
            default_name = DEFAULT_DISPLAY_NAME

        if avatar_url:
            default_avatar = avatar_url
        elif identity_type == IdentityType.HIVE.value:
            default_avatar = hive_avatar_url(identifier)
        else:
            default_avatar = None

        def create_account():
            user = self.users.create_user(
                self.users.allocate_handle(handle_base),
                display_name=default_name,
                avatar_url=default_avatar,
            )
            identity = self.identities.upsert(
                user.id,
                identity_type,
                identifier,
                handle=handle,
                metadata=metadata,
            )
            return user, identity

        user, identity = await self._in_transaction("create user", create_account)
        session, raw = self.sessions.create(user.id, user_agent=user_agent)
        return ProvisionResult(
            user_id=user.id,
            session=session,
            refresh_token=raw,
            identity_id=identity.id,
            created_user=True,
        )

    # Email magic links

    def _magic_link_url(self, base_url: str, token: str, redirect: Optional[str]) -> str:
        origin = (self.settings.APP_ORIGIN or base_url).rstrip("/")
        params = {"token": token}
        redirect_path = sanitize_redirect(redirect)
        if redirect_path != "/":
            params["redirect"] = redirect_path
        return f"{origin}{MAGIC_LINK_PATH}?{urlencode(params)}"

    async def _send_magic_link(
        self, user_id: str, email: str, base_url: str, redirect: Optional[str]
    ) -> datetime:
        raw_token = generate_magic_token()
        now = utcnow()
        expires_at = now + timedelta(minutes=self.settings.MAGIC_LINK_TTL_MINUTES)
        link = MagicLinkToken(
            user_id=user_id,
            identifier=email,
            token_hash=hash_token(raw_token),
            created_at=now,
            expires_at=expires_at,
        )
        self.db.add(link)
        await self._commit("create magic link")
        logger.info(f"Issued magic link for user {user_id}")

        if self.mailer is None:
            raise DependencyError("Email transport is not configured")
        await self.mailer.send_login_link(email, self._magic_link_url(base_url, raw_token, redirect))
        return expires_at

    async def request_magic_link(
        self,
        email: str,
        base_url: str,
        handle: Optional[str] = None,
        avatar_url: Optional[str] = None,
        redirect: Optional[str] = None,
    ) -> datetime:
        """
        Find or create the email account and mail it a single-use login link.

        Returns:
            When the emailed link stops working
        """
        email = normalize_email(email)
        handle = normalize_handle(handle)
        method = self.users.find_email_method(email)
        base_handle = slugify(handle) if handle else email.split("@")[0]

        if method is None:
            def create_account():
                user = self.users.create_user(
                    self.users.allocate_handle(base_handle),
                    display_name=derive_display_name(email),
                    avatar_url=avatar_url or generated_avatar_url(base_handle or email),
                )
                self.users.add_email_method(user.id, email)
                return user

            user = await self._in_transaction("create user", create_account)
        else:
            user = self.users.require_active_user(method.user_id)
            changed = self.users.backfill_profile(
                user,
                display_name=derive_display_name(email),
                avatar_url=avatar_url or generated_avatar_url(user.handle or email),
            )
            if not user.handle:
                user.handle = self.users.allocate_handle(base_handle)
                changed = True
            if changed:
                await self._commit("update user")

        return await self._send_magic_link(user.id, email, base_url, redirect)

    async def sign_up(
        self,
        email: str,
        display_name: str,
        handle: Optional[str],
        base_url: str,
        avatar_url: Optional[str] = None,
        redirect: Optional[str] = None,
    ) -> datetime:
        """
        Register an email account under a chosen handle and mail a login link.

        The handle must be free both locally and on the Hive chain so the user
        can later claim the matching Hive account.

        Raises:
            ValidationError: Missing display name or handle
            ConflictError: The handle is taken on Hive or locally
        """
        email = normalize_email(email)
        display_name = (display_name or "").strip()
        handle = normalize_handle(handle)
        if not display_name:
            raise ValidationError("Missing required field: display_name")
        if not handle:
            raise ValidationError("Missing required field: handle")
        if self.hive_client and await self.hive_client.account_exists(handle):
            raise ConflictError("Handle already in use on Hive")

        avatar = avatar_url or generated_avatar_url(handle or display_name or email)
        method = self.users.find_email_method(email)

        if method is None:
            if not self.users.is_handle_available(handle):
                raise ConflictError("Handle already in use")

            def create_account():
                user = self.users.create_user(handle, display_name=display_name, avatar_url=avatar)
                self.users.add_email_method(user.id, email)
                return user

            user = await self._in_transaction("create user", create_account)
        else:
            user = self.users.require_active_user(method.user_id)
            if not user.handle and not self.users.is_handle_available(handle):
                raise ConflictError("Handle already in use")
            if self.users.backfill_profile(user, display_name, avatar, handle):
                await self._commit("update user")

        return await self._send_magic_link(user.id, email, base_url, redirect)

    def consume_magic_link(self, raw_token: Optional[str], user_agent: Optional[str] = None) -> ProvisionResult:
        """
        Trade a magic-link token for a session. Each token works once.

        Raises:
            ValidationError: No token given
            AuthError: Unknown, expired, or already used token
        """
        if not raw_token:
            raise ValidationError("Missing token")

        link = (
            self.db.query(MagicLinkToken)
            .filter(
                MagicLinkToken.token_hash == hash_token(raw_token),
                MagicLinkToken.consumed_at.is_(None),
            )
            .first()
        )
        if link is None:
            raise AuthError("Invalid or expired token")

        now = utcnow()
        try:
            result = self.db.execute(
                update(MagicLinkToken)
                .where(
                    MagicLinkToken.id == link.id,
                    MagicLinkToken.consumed_at.is_(None),
                    MagicLinkToken.expires_at > now,
                )
                .values(consumed_at=now)
                .execution_options(synchronize_session=False)
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to consume magic link {link.id}: {e}")
            raise DependencyError("Failed to consume token", details=str(e))
        if result.rowcount != 1:
            self.db.rollback()
            raise AuthError("Token has expired or was already used")

        user = self.users.get_user(link.user_id)
        if user is None or not user.is_active:
            self.db.rollback()
            raise AuthError("Invalid or expired token")

        # Committing the session also commits the consumption above
        session, raw = self.sessions.create(link.user_id, user_agent=user_agent)
        logger.info(f"Magic link {link.id} exchanged for session {session.id}")
        return ProvisionResult(user_id=link.user_id, session=session, refresh_token=raw)

    # Internal session exchange

    async def exchange_session(
        self,
        identifier: Optional[str],
        method_type: str = EMAIL_MAGIC,
        handle: Optional[str] = None,
        device_id: Optional[str] = None,
        user_agent: Optional[str] = None,
        create_user: bool = True,
    ) -> ProvisionResult:
        """
        Mint a session for an email identity on behalf of a trusted caller.

        Raises:
            ValidationError: Missing identifier or unsupported method type
            NotFoundError: Unknown identifier and ``create_user`` is off
        """
        if not identifier or not identifier.strip():
            raise ValidationError("Missing required field: identifier")
        if method_type != EMAIL_MAGIC:
            raise ValidationError("Unsupported auth method type")

        email = normalize_email(identifier)
        handle = normalize_handle(handle)
        method = self.users.find_email_method(email)
        created = False

        if method is None:
            if not create_user:
                raise NotFoundError("User not found for identifier")

            def create_account():
                user = self.users.create_user(handle)
                return self.users.add_email_method(user.id, email)

            method = await self._in_transaction("create user", create_account)
            created = True
        else:
            self.users.require_active_user(method.user_id)

        session, raw = self.sessions.create(method.user_id, user_agent=user_agent, device_id=device_id)
        return ProvisionResult(
            user_id=method.user_id,
            session=session,
            refresh_token=raw,
            auth_method_id=method.id,
            created_user=created,
        )

    # Session introspection

    async def current_session(self, raw_token: Optional[str]) -> tuple:
        """Resolve the caller's session and fill in a missing display name or avatar."""
        session = self.sessions.validate(raw_token)
        user: User = self.users.get_user(session.user_id)
        if not user.display_name or not user.avatar_url:
            email = self.users.email_for_user(user.id)
            self.users.backfill_profile(
                user,
                display_name=derive_display_name(email, user.handle),
                avatar_url=generated_avatar_url(user.handle or email),
            )
            await self._commit("update user")
        return session, user

    def logout(self, raw_token: Optional[str]) -> None:
        session = self.sessions.lookup(raw_token)
        if session is not None:
            self.sessions.revoke(session.id)
