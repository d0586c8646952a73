"""
Access token verification.

Tokens are issued by the external identity service; this module only
validates them with the shared secret and extracts the subject.
"""

from typing import Any, Dict

from jose import JWTError, jwt

from gigmarket.core.config import Settings
from gigmarket.core.logging import get_logger

logger = get_logger(__name__)


class SecurityError(Exception):
    """Base exception for security-related errors."""

    def __init__(self, message: str, code: str, **context):
        super().__init__(message)
        self.code = code
        self.context = context


class TokenError(SecurityError):
    """Exception raised for token-related errors."""

    pass


def decode_token(token: str, settings: Settings) -> Dict[str, Any]:
    """
    Decode and validate a JWT token.

    Args:
        token: JWT token string to decode
        settings: Settings holding the verification key and algorithm

    Returns:
        Dictionary of decoded token claims

    Raises:
        TokenError: If token is invalid, expired, or malformed
    """
    if not token:
        logger.warning("Attempted to decode empty token")
        raise TokenError("Token cannot be empty", code="EMPTY_TOKEN")

    try:
        payload = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except jwt.ExpiredSignatureError as e:
        logger.warning("Token has expired", error=str(e))
        raise TokenError("Token has expired", code="TOKEN_EXPIRED") from e
    except JWTError as e:
        logger.warning(
            "Token validation failed",
            error=str(e),
            error_type=type(e).__name__,
        )
        raise TokenError("Invalid token", code="INVALID_TOKEN") from e

    logger.debug(
        "Token decoded successfully",
        subject=payload.get("sub"),
        token_type=payload.get("type"),
    )
    return payload


def verify_token_type(payload: Dict[str, Any], expected_type: str) -> bool:
    """
    Verify that a token payload has the expected type.

    Tokens without a ``type`` claim are treated as access tokens.

    Args:
        payload: Decoded token payload
        expected_type: Expected token type ("access" or "refresh")

    Returns:
        True if token type matches, False otherwise
    """
    token_type = payload.get("type", "access")
    is_valid = token_type == expected_type

    if not is_valid:
        logger.warning(
            "Token type mismatch",
            expected=expected_type,
            actual=token_type,
            subject=payload.get("sub"),
        )

    return is_valid
