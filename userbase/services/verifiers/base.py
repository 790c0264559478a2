from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

SIGNATURE_TIER = "signature"
SELF_REPORTED_TIER = "self_reported"


class IdentityVerifier(ABC):
    """
    Proof-of-control check for one identity type.

    ``verify`` returns an evidence mapping on success and raises a
    ``UserbaseError`` subclass on failure (ValidationError for malformed input,
    AuthorizationError when the proof does not match the claimed identity).
    """

    identity_type: str
    trust_tier: str = SIGNATURE_TIER
    requires_challenge: bool = True
    challenge_label: str = "account"

    @abstractmethod
    async def verify(
        self,
        message: Optional[str],
        signature: Optional[str],
        claimed_identifier: str,
        extra: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        ...

    def describe_identifier(self, identifier: str) -> str:
        """Line naming the identity inside a challenge message."""
        return identifier
