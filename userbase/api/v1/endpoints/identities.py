from typing import Any, Dict
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from userbase.api.deps import get_linker
from userbase.db.base import as_utc
from userbase.db.session import get_db
from userbase.middleware.auth import get_current_user
from userbase.models.identity import (
    ChallengeRequest,
    FarcasterAddressRequest,
    SelfReportRequest,
    VerifyRequest,
)
from userbase.services.identity_store import IdentityStore
from userbase.services.linking import IdentityLinker

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("")
def list_identities(
    db: Session = Depends(get_db),
    current_user: Dict[str, Any] = Depends(get_current_user),
) -> Dict[str, Any]:
    """
    Retrieve the caller's linked identities, newest first.

    Args:
        db: Database session
        current_user: Authenticated user context from the session cookie

    Returns:
        Dict with the list of identities
    """
    identities = IdentityStore(db).list_for_user(current_user["userId"])
    return {"identities": [identity.to_dict() for identity in identities]}


@router.post("")
def report_identity(
    body: SelfReportRequest,
    linker: IdentityLinker = Depends(get_linker),
    current_user: Dict[str, Any] = Depends(get_current_user),
) -> Dict[str, Any]:
    """Record a Farcaster account on the client's word. Stored as self-reported."""
    identity = linker.link_self_reported(
        current_user["userId"],
        body.type,
        body.external_id,
        handle=body.handle,
        address=body.address,
        metadata=body.metadata,
        is_primary=body.is_primary,
    )
    return {"identity": identity.to_dict()}


@router.delete("/{identity_id}")
def delete_identity(
    identity_id: str,
    db: Session = Depends(get_db),
    current_user: Dict[str, Any] = Depends(get_current_user),
) -> Dict[str, Any]:
    IdentityStore(db).delete(identity_id, current_user["userId"])
    return {"success": True}


@router.post("/evm/verify-farcaster")
def verify_farcaster_address(
    body: FarcasterAddressRequest,
    linker: IdentityLinker = Depends(get_linker),
    current_user: Dict[str, Any] = Depends(get_current_user),
) -> Dict[str, Any]:
    """
    Link an address Farcaster has already verified for the caller.

    No wallet signature is needed, but the caller must already own the fid.
    """
    identity = linker.link_farcaster_verified_address(
        current_user["userId"], body.address, body.farcaster_fid
    )
    return {"identity_id": identity.id, "identity": identity.to_dict()}


@router.post("/{identity_type}/challenge")
async def issue_challenge(
    identity_type: str,
    body: ChallengeRequest,
    linker: IdentityLinker = Depends(get_linker),
    current_user: Dict[str, Any] = Depends(get_current_user),
) -> Dict[str, Any]:
    """
    Issue a challenge message for the caller to sign.

    Args:
        identity_type: hive or evm
        body: The handle or address to link

    Returns:
        Dict with the message to sign and its expiry

    Raises:
        ValidationError: 400 for an unsupported type or malformed identifier
        NotFoundError: 404 when the Hive account does not exist
        UpstreamError: 502 when the Hive node cannot be reached
    """
    challenge = await linker.issue_challenge(current_user["userId"], identity_type, body.claimed)
    return {
        "message": challenge.message,
        "expires_at": as_utc(challenge.expires_at).isoformat(),
    }


@router.post("/{identity_type}/verify")
async def verify_identity(
    identity_type: str,
    body: VerifyRequest,
    linker: IdentityLinker = Depends(get_linker),
    current_user: Dict[str, Any] = Depends(get_current_user),
) -> Dict[str, Any]:
    """
    Verify a signed challenge and link the identity.

    Raises:
        ConflictError: 409 with ``merge_required`` and ``existing_user_id``
            when another account owns the identity
    """
    identity = await linker.verify_and_link(
        current_user["userId"],
        identity_type,
        body.claimed,
        body.signature,
        public_key=body.public_key.strip() if body.public_key else None,
    )
    return {"identity": identity.to_dict()}
