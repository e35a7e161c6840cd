"""
JWT access token verification.

Tokens are issued by the platform's auth service; this engine only holds
the verification key and reads the user id from the ``sub`` claim.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import jwt

from bookpost.config import get_settings

_public_key: str | None = None


def _load_key() -> str:
    """Load the verification key from disk (cached after first call)."""
    global _public_key  # noqa: PLW0603
    if _public_key is None:
        _public_key = Path(get_settings().jwt_public_key_path).read_text()
    return _public_key


def reset_keys() -> None:
    """Reset the cached key (useful for testing)."""
    global _public_key  # noqa: PLW0603
    _public_key = None


def verify_token(token: str, expected_type: str = "access") -> dict[str, Any]:
    """
    Verify and decode a JWT token.

    Args:
        token: The encoded JWT string.
        expected_type: Expected token type claim.

    Returns:
        Decoded payload dictionary.

    Raises:
        jwt.InvalidTokenError: If the token is invalid, expired, of the wrong
            type, or carries no usable subject.
    """
    settings = get_settings()
    try:
        payload: dict[str, Any] = jwt.decode(
            token,
            _load_key(),
            algorithms=[settings.jwt_algorithm],
            issuer=settings.jwt_issuer,
        )
    except jwt.ExpiredSignatureError:
        msg = "Token has expired"
        raise jwt.InvalidTokenError(msg) from None

    if payload.get("type", expected_type) != expected_type:
        msg = f"Expected token type '{expected_type}', got '{payload.get('type')}'"
        raise jwt.InvalidTokenError(msg)

    sub = payload.get("sub")
    if sub is None or not str(sub).isdigit():
        msg = "Token subject is not a user id"
        raise jwt.InvalidTokenError(msg)

    return payload
