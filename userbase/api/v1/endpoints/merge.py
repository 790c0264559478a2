from typing import Any, Dict
import logging

from fastapi import APIRouter, Depends

from userbase.api.deps import get_merge_engine
from userbase.middleware.auth import get_current_user
from userbase.models.merge import MergePreviewRequest, MergeRequest
from userbase.services.merge import MergeEngine

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/preview")
def preview_merge(
    body: MergePreviewRequest,
    engine: MergeEngine = Depends(get_merge_engine),
    current_user: Dict[str, Any] = Depends(get_current_user),
) -> Dict[str, Any]:
    return engine.preview(current_user["userId"], body.type, body.identifier)


@router.post("")
async def merge_accounts(
    body: MergeRequest,
    engine: MergeEngine = Depends(get_merge_engine),
    current_user: Dict[str, Any] = Depends(get_current_user),
) -> Dict[str, Any]:
    """
    Fold the account that owns an identity into the caller's account.

    Requires a fresh signature over the caller's outstanding challenge for
    that identity.

    Returns:
        Dict with success flag and the merge audit id
    """
    logger.info(f"User {current_user['userId']} requested merge via {body.type} identity")
    record = await engine.execute(
        current_user["userId"],
        body.type,
        body.identifier,
        source_user_id=body.source_user_id,
        signature=body.signature,
        public_key=body.public_key.strip() if body.public_key else None,
    )
    return {"success": True, "merge_id": record.id, "source_user_id": record.source_user_id}
