import re
from typing import Optional

from eth_utils import is_address

from userbase.core.errors import ValidationError
from userbase.db.models import IdentityType

HIVE_MIN_LENGTH = 3
HIVE_MAX_LENGTH = 16
_HIVE_SEGMENT = re.compile(r"^[a-z][a-z0-9-]*[a-z0-9]$")
_FID = re.compile(r"^\d+$")
_SLUG_INVALID = re.compile(r"[^a-z0-9]+")


def parse_identity_type(value: Optional[str]) -> str:
    try:
        return IdentityType(value).value
    except ValueError:
        raise ValidationError("Unsupported identity type")


def is_valid_hive_username(name: str) -> bool:
    """Hive account name rules: 3-16 chars, dot-separated segments of 3+ chars."""
    if not HIVE_MIN_LENGTH <= len(name) <= HIVE_MAX_LENGTH:
        return False
    for segment in name.split("."):
        if len(segment) < HIVE_MIN_LENGTH:
            return False
        if not _HIVE_SEGMENT.match(segment) or "--" in segment:
            return False
    return True


def is_evm_address(value: str) -> bool:
    return isinstance(value, str) and is_address(value)


def normalize_identifier(identity_type: str, raw: Optional[str]) -> str:
    """
    Normalize and validate an external identifier for its identity type.

    Args:
        identity_type: One of hive, evm, farcaster
        raw: The identifier as submitted by the client

    Returns:
        Lowercase Hive handle, lowercase EVM address, or numeric fid string

    Raises:
        ValidationError: If the identifier is missing or malformed
    """
    if raw is None or not isinstance(raw, str) or not raw.strip():
        raise ValidationError("Missing identifier")

    identifier = raw.strip()
    if identity_type == IdentityType.HIVE.value:
        identifier = identifier.lstrip("@").lower()
        if not is_valid_hive_username(identifier):
            raise ValidationError("Invalid Hive handle")
        return identifier

    if identity_type == IdentityType.EVM.value:
        if not is_evm_address(identifier):
            raise ValidationError("Invalid address")
        return identifier.lower()

    if identity_type == IdentityType.FARCASTER.value:
        if not _FID.match(identifier):
            raise ValidationError("Invalid Farcaster fid")
        return identifier

    raise ValidationError("Unsupported identity type")


def normalize_email(raw: str) -> str:
    return raw.strip().lower()


def normalize_handle(raw: Optional[str]) -> Optional[str]:
    if not raw or not raw.strip():
        return None
    return raw.strip().lower()


def slugify(value: Optional[str]) -> str:
    if not value:
        return ""
    return _SLUG_INVALID.sub("-", value.lower().strip()).strip("-")


def sanitize_redirect(value: Optional[str]) -> str:
    """Only same-origin absolute paths survive; anything else falls back to '/'."""
    if not value or not value.startswith("/") or value.startswith("//"):
        return "/"
    if "\\" in value or "://" in value or "\n" in value or "\r" in value:
        return "/"
    return value
