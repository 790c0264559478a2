import logging
from typing import Any, Dict, Optional

from eth_account import Account
from eth_account.messages import encode_defunct

from userbase.core.errors import AuthorizationError, ValidationError
from userbase.db.models import IdentityType
from userbase.services.verifiers.base import IdentityVerifier

logger = logging.getLogger(__name__)


class EvmVerifier(IdentityVerifier):
    identity_type = IdentityType.EVM.value
    challenge_label = "wallet"

    def describe_identifier(self, identifier: str) -> str:
        return f"Address: {identifier}"

    async def verify(
        self,
        message: Optional[str],
        signature: Optional[str],
        claimed_identifier: str,
        extra: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        if not signature:
            raise ValidationError("Missing signature")
        if not message:
            raise ValidationError("Challenge must be refreshed")

        try:
            recovered = Account.recover_message(encode_defunct(text=message), signature=signature)
        except Exception as e:
            # eth-account raises a mix of ValueError/TypeError/BadSignature for malformed input
            logger.warning(f"EVM signature recovery failed: {e}")
            raise ValidationError("Invalid signature", details=str(e))

        if recovered.lower() != claimed_identifier.lower():
            logger.warning(f"Recovered address {recovered} does not match {claimed_identifier}")
            raise AuthorizationError("Signature does not match address")

        return {"recovered_address": recovered.lower()}
