from typing import Any, Dict, Optional

from userbase.db.models import IdentityType
from userbase.services.verifiers.base import IdentityVerifier, SELF_REPORTED_TIER


class FarcasterVerifier(IdentityVerifier):
    """
    Farcaster identities are self-reported by the authenticated client.

    There is no custody signature check yet, so this is a reduced trust tier:
    the evidence is tagged and the merge engine refuses it unless explicitly
    allowed by configuration.
    """

    identity_type = IdentityType.FARCASTER.value
    trust_tier = SELF_REPORTED_TIER
    requires_challenge = False

    async def verify(
        self,
        message: Optional[str],
        signature: Optional[str],
        claimed_identifier: str,
        extra: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        return {"trust": SELF_REPORTED_TIER}
