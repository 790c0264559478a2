"""
Security helpers for opaque bearer tokens and nonces.
"""
from .tokens import (
    hash_token,
    generate_refresh_token,
    generate_magic_token,
    generate_nonce,
    tokens_match,
)

__all__ = [
    "hash_token",
    "generate_refresh_token",
    "generate_magic_token",
    "generate_nonce",
    "tokens_match",
]
