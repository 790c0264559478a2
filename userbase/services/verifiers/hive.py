import hashlib
import logging
from typing import Any, Dict, Optional, Tuple

import base58
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import Prehashed, encode_dss_signature

from userbase.core.errors import AuthorizationError, ValidationError
from userbase.db.models import IdentityType
from userbase.services.hive_client import HiveClient
from userbase.services.verifiers.base import IdentityVerifier

logger = logging.getLogger(__name__)

COMPACT_SIGNATURE_BYTES = 64
RECOVERABLE_SIGNATURE_BYTES = 65
COMPRESSED_KEY_BYTES = 33
CHECKSUM_BYTES = 4


def parse_signature(raw: str) -> Optional[Tuple[int, int]]:
    """
    Decode a hex Hive signature into (r, s).

    Accepts an optional 0x prefix. A 65-byte blob carries a leading recovery
    byte which plain verification does not need; a 64-byte blob is bare r||s.
    Returns None for anything else.
    """
    normalized = raw.strip().lower()
    if normalized.startswith("0x"):
        normalized = normalized[2:]
    try:
        blob = bytes.fromhex(normalized)
    except ValueError:
        return None

    if len(blob) == RECOVERABLE_SIGNATURE_BYTES:
        blob = blob[1:]
    elif len(blob) != COMPACT_SIGNATURE_BYTES:
        return None
    return int.from_bytes(blob[:32], "big"), int.from_bytes(blob[32:], "big")


def load_public_key(public_key: str, prefix: str) -> ec.EllipticCurvePublicKey:
    """
    Decode an ``STM...`` Hive public key into a secp256k1 key.

    The trailing checksum is not validated here; the caller compares the key
    string verbatim against the on-chain authority set.
    """
    if not public_key.startswith(prefix):
        raise ValueError(f"Public key must start with {prefix}")
    decoded = base58.b58decode(public_key[len(prefix):])
    if len(decoded) != COMPRESSED_KEY_BYTES + CHECKSUM_BYTES:
        raise ValueError("Unexpected public key length")
    return ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256K1(), decoded[:COMPRESSED_KEY_BYTES])


class HiveVerifier(IdentityVerifier):
    identity_type = IdentityType.HIVE.value
    challenge_label = "Hive account"

    def __init__(self, hive_client: HiveClient, key_prefix: str = "STM"):
        self.hive_client = hive_client
        self.key_prefix = key_prefix

    def describe_identifier(self, identifier: str) -> str:
        return f"Hive: @{identifier}"

    def check_signature(self, message: str, signature: str, public_key: str) -> None:
        rs = parse_signature(signature)
        if rs is None:
            raise ValidationError("Invalid signature format")

        try:
            key = load_public_key(public_key, self.key_prefix)
            digest = hashlib.sha256(message.encode("utf-8")).digest()
            key.verify(encode_dss_signature(*rs), digest, ec.ECDSA(Prehashed(hashes.SHA256())))
        except InvalidSignature:
            logger.warning("Hive signature does not match the supplied public key")
            raise AuthorizationError("Signature does not match")
        except ValueError as e:
            logger.warning(f"Hive signature verification failed: {e}")
            raise ValidationError("Signature verification failed", details=str(e))

    async def verify(
        self,
        message: Optional[str],
        signature: Optional[str],
        claimed_identifier: str,
        extra: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        public_key = ((extra or {}).get("public_key") or "").strip()
        if not signature:
            raise ValidationError("Missing signature")
        if not public_key:
            raise ValidationError("Missing public key")
        if not message:
            raise ValidationError("Challenge must be refreshed")

        self.check_signature(message, signature, public_key)

        # The key pair is only meaningful if the chain says it may post for this account
        account = await self.hive_client.get_account(claimed_identifier)
        if public_key not in account.posting_keys:
            logger.warning(f"Public key is not a posting key of @{claimed_identifier}")
            raise AuthorizationError("Public key not authorized for posting")

        logger.info(f"Verified Hive signature for @{claimed_identifier}")
        return {"account": account, "public_key": public_key}
