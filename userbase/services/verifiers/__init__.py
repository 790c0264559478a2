from userbase.core.errors import ValidationError
from userbase.db.models import IdentityType
from userbase.services.hive_client import HiveClient

from .base import IdentityVerifier, SIGNATURE_TIER, SELF_REPORTED_TIER
from .evm import EvmVerifier
from .farcaster import FarcasterVerifier
from .hive import HiveVerifier


VERIFIER_CLASSES = {
    IdentityType.HIVE.value: HiveVerifier,
    IdentityType.EVM.value: EvmVerifier,
    IdentityType.FARCASTER.value: FarcasterVerifier,
}


def trust_tier_for(identity_type: str) -> str:
    """Trust tier of the proof accepted for an identity type."""
    verifier_class = VERIFIER_CLASSES.get(identity_type)
    if verifier_class is None:
        raise ValidationError("Unsupported identity type")
    return verifier_class.trust_tier


def get_verifier(identity_type: str, hive_client: HiveClient, key_prefix: str = "STM") -> IdentityVerifier:
    """Select the verifier for an identity type once, at the entry point."""
    if identity_type == IdentityType.HIVE.value:
        return HiveVerifier(hive_client, key_prefix=key_prefix)
    if identity_type == IdentityType.EVM.value:
        return EvmVerifier()
    if identity_type == IdentityType.FARCASTER.value:
        return FarcasterVerifier()
    raise ValidationError("Unsupported identity type")


__all__ = [
    "IdentityVerifier",
    "HiveVerifier",
    "EvmVerifier",
    "FarcasterVerifier",
    "SIGNATURE_TIER",
    "SELF_REPORTED_TIER",
    "get_verifier",
    "trust_tier_for",
]
