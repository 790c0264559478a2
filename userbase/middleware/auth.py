from typing import Any, Dict, Optional
import logging

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from userbase.core.config import Settings
from userbase.core.errors import AuthError, ConfigurationError, InvalidSession
from userbase.db.session import get_db
from userbase.security.tokens import tokens_match
from userbase.services.session_store import SessionStore

logger = logging.getLogger(__name__)

INTERNAL_TOKEN_HEADER = "x-userbase-internal-token"


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_session_token(request: Request) -> Optional[str]:
    settings = get_settings(request)
    return request.cookies.get(settings.SESSION_COOKIE_NAME)


async def get_current_user(
    request: Request,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """
    Dependency that resolves the session cookie to the calling user.

    Returns:
        User context with ``userId`` and ``sessionId``

    Raises:
        InvalidSession: No cookie, unknown or revoked token, inactive user
        SessionExpired: The session is past its expiry
    """
    token = get_session_token(request)
    if not token:
        logger.debug("Request without session cookie")
        raise InvalidSession()

    settings = get_settings(request)
    session = SessionStore(db, ttl_days=settings.SESSION_TTL_DAYS).validate(token)
    return {"userId": session.user_id, "sessionId": session.id}


async def require_internal_token(request: Request) -> None:
    """
    Guard for service-to-service endpoints.

    Without a configured token the guard is open outside production and
    refuses to serve in production.
    """
    settings = get_settings(request)
    required = settings.USERBASE_INTERNAL_TOKEN
    if not required:
        if settings.is_production:
            raise ConfigurationError("USERBASE_INTERNAL_TOKEN is required in production")
        return

    if not tokens_match(request.headers.get(INTERNAL_TOKEN_HEADER, ""), required):
        logger.warning("Rejected internal request with a bad token")
        raise AuthError("Unauthorized")
