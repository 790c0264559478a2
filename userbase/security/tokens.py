import hashlib
import hmac
import secrets
import uuid
from typing import Optional

NONCE_BYTES = 16
MAGIC_TOKEN_BYTES = 32


def hash_token(token: str) -> str:
    """
    One-way hash of an opaque bearer token.

    Only this digest is ever persisted; lookups hash the presented token and
    match on the digest.

    Args:
        token: The raw token as handed to the client

    Returns:
        Lowercase hex SHA-256 digest
    """
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def generate_refresh_token() -> str:
    """Create a new raw refresh token. Returned to the caller once, never stored."""
    return str(uuid.uuid4())


def generate_magic_token() -> str:
    return secrets.token_hex(MAGIC_TOKEN_BYTES)


def generate_nonce() -> str:
    return secrets.token_hex(NONCE_BYTES)


def tokens_match(provided: Optional[str], expected: str) -> bool:
    """Constant-time comparison for shared secrets such as the internal service token."""
    if provided is None:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))
