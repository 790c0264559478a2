from typing import Any, Dict, Optional
import logging

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import RedirectResponse

from userbase.api.deps import get_provisioner
from userbase.core.config import Settings
from userbase.core.errors import AuthError, ValidationError
from userbase.db.base import as_utc
from userbase.middleware.auth import get_session_token, get_settings, require_internal_token
from userbase.models.auth import (
    BootstrapRequest,
    BootstrapResponse,
    MagicLinkRequest,
    MagicLinkResponse,
    SessionExchangeRequest,
    SessionExchangeResponse,
    SignUpRequest,
)
from userbase.services.identifiers import sanitize_redirect
from userbase.services.provisioning import AccountProvisioner

logger = logging.getLogger(__name__)

router = APIRouter()


def set_session_cookie(response: Response, settings: Settings, refresh_token: str) -> None:
    response.set_cookie(
        key=settings.SESSION_COOKIE_NAME,
        value=refresh_token,
        max_age=settings.SESSION_TTL_DAYS * 24 * 60 * 60,
        path="/",
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
    )


def clear_session_cookie(response: Response, settings: Settings) -> None:
    response.delete_cookie(
        key=settings.SESSION_COOKIE_NAME,
        path="/",
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
    )


@router.post("/bootstrap", response_model=BootstrapResponse, response_model_exclude_none=True)
async def bootstrap(
    body: BootstrapRequest,
    request: Request,
    response: Response,
    settings: Settings = Depends(get_settings),
    provisioner: AccountProvisioner = Depends(get_provisioner),
):
    """
    Find or create the account for a chain identity and start a session.

    A caller that already holds a live session cookie gets its user back and
    keeps its cookie.

    Returns:
        The user id, the identity id, whether a user was created, and the
        session expiry
    """
    result = await provisioner.bootstrap(
        body.type,
        body.identifier,
        handle=body.handle,
        display_name=body.display_name,
        avatar_url=body.avatar_url,
        metadata=body.metadata,
        current_token=get_session_token(request),
        user_agent=request.headers.get("user-agent"),
    )
    if result.reused_session:
        return BootstrapResponse(user_id=result.user_id)

    set_session_cookie(response, settings, result.refresh_token)
    logger.info(f"Bootstrapped user {result.user_id} (created={result.created_user})")
    return BootstrapResponse(
        user_id=result.user_id,
        identity_id=result.identity_id,
        created_user=result.created_user,
        expires_at=as_utc(result.session.expires_at),
    )


@router.post("/magic-link", response_model=MagicLinkResponse)
async def request_magic_link(
    body: MagicLinkRequest,
    request: Request,
    provisioner: AccountProvisioner = Depends(get_provisioner),
):
    if not body.identifier or not body.identifier.strip():
        raise ValidationError("Missing required field: identifier")

    expires_at = await provisioner.request_magic_link(
        body.identifier,
        base_url=str(request.base_url),
        handle=body.handle,
        avatar_url=body.avatar_url,
        redirect=body.redirect,
    )
    return MagicLinkResponse(expires_at=expires_at)


@router.get("/magic-link")
async def consume_magic_link(
    request: Request,
    token: Optional[str] = None,
    redirect: Optional[str] = None,
    settings: Settings = Depends(get_settings),
    provisioner: AccountProvisioner = Depends(get_provisioner),
):
    """
    Exchange an emailed token for a session and send the browser on.

    The redirect target is always a local path; anything else lands on ``/``.
    """
    result = provisioner.consume_magic_link(token, user_agent=request.headers.get("user-agent"))

    origin = (settings.APP_ORIGIN or str(request.base_url)).rstrip("/")
    response = RedirectResponse(url=f"{origin}{sanitize_redirect(redirect)}")
    set_session_cookie(response, settings, result.refresh_token)
    return response


@router.post("/sign-up", response_model=MagicLinkResponse)
async def sign_up(
    body: SignUpRequest,
    request: Request,
    provisioner: AccountProvisioner = Depends(get_provisioner),
):
    expires_at = await provisioner.sign_up(
        body.email,
        body.display_name,
        body.handle,
        base_url=str(request.base_url),
        avatar_url=body.avatar_url,
        redirect=body.redirect,
    )
    return MagicLinkResponse(expires_at=expires_at)


@router.post(
    "/session",
    response_model=SessionExchangeResponse,
    dependencies=[Depends(require_internal_token)],
)
async def exchange_session(
    body: SessionExchangeRequest,
    request: Request,
    provisioner: AccountProvisioner = Depends(get_provisioner),
):
    """
    Mint a session for an email identity on behalf of a trusted service.

    Guarded by the internal token header. The raw refresh token is returned
    in the body since there is no browser to hold a cookie.
    """
    result = await provisioner.exchange_session(
        body.identifier,
        method_type=body.type,
        handle=body.handle,
        device_id=body.device_id,
        user_agent=body.user_agent or request.headers.get("user-agent"),
        create_user=body.create_user,
    )
    return SessionExchangeResponse(
        user_id=result.user_id,
        auth_method_id=result.auth_method_id,
        refresh_token=result.refresh_token,
        expires_at=as_utc(result.session.expires_at),
    )


@router.get("/session")
async def get_session(
    request: Request,
    provisioner: AccountProvisioner = Depends(get_provisioner),
) -> Dict[str, Any]:
    token = get_session_token(request)
    if not token:
        raise AuthError("Missing session token")

    session, user = await provisioner.current_session(token)
    return {
        "user_id": session.user_id,
        "session_id": session.id,
        "expires_at": as_utc(session.expires_at).isoformat(),
        "user": user.to_dict(),
    }


@router.post("/logout")
async def logout(
    request: Request,
    response: Response,
    settings: Settings = Depends(get_settings),
    provisioner: AccountProvisioner = Depends(get_provisioner),
) -> Dict[str, Any]:
    provisioner.logout(get_session_token(request))
    clear_session_cookie(response, settings)
    return {"success": True}
