"""
JWT Token Handler

Creation and verification of JWT access tokens. The ``sub`` claim
carries the owner id that scopes every execution.
"""

from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, Dict, Any

from jose import JWTError, jwt

from flowrunner.config import settings
from flowrunner.logging_config import get_logger

logger = get_logger(__name__)


class TokenType(str, Enum):
    """Token type enumeration."""
    ACCESS = "access"


def create_access_token(
    owner_id: str,
    additional_claims: Optional[Dict[str, Any]] = None,
    expires_minutes: Optional[int] = None,
) -> str:
    """
    Create JWT access token.

    Args:
        owner_id: Caller identity placed in the ``sub`` claim
        additional_claims: Optional additional claims
        expires_minutes: Lifetime override (default ACCESS_TOKEN_EXPIRE_MINUTES)

    Returns:
        Encoded JWT token string
    """
    minutes = expires_minutes if expires_minutes is not None else settings.ACCESS_TOKEN_EXPIRE_MINUTES
    now = datetime.utcnow()

    claims = {
        "sub": str(owner_id),
        "type": TokenType.ACCESS.value,
        "exp": now + timedelta(minutes=minutes),
        "iat": now,
    }

    if additional_claims:
        claims.update(additional_claims)

    token = jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.ALGORITHM)

    logger.debug("Access token created", owner_id=str(owner_id), expires_in_minutes=minutes)
    return token


def verify_token(
    token: str,
    expected_type: Optional[TokenType] = TokenType.ACCESS,
) -> Dict[str, Any]:
    """
    Verify and decode JWT token.

    Args:
        token: JWT token string
        expected_type: Expected token type

    Returns:
        Decoded token payload

    Raises:
        JWTError: If token is invalid, expired or of the wrong type
    """
    try:
        payload = jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM],
        )
    except JWTError as e:
        logger.warning("Token verification failed", error=str(e))
        raise

    if expected_type:
        token_type = payload.get("type")
        if token_type != expected_type.value:
            raise JWTError(f"Expected {expected_type.value} token, got {token_type}")

    logger.debug("Token verified successfully", owner_id=payload.get("sub"))
    return payload
