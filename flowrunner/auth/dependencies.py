"""
Authentication Dependencies

FastAPI dependency resolving the caller's owner id from a bearer token.
"""

from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError

from flowrunner.auth.jwt_handler import verify_token, TokenType
from flowrunner.exceptions import AuthError, ErrorCode
from flowrunner.logging_config import get_logger

logger = get_logger(__name__)

# HTTP Bearer token security scheme
security = HTTPBearer(auto_error=False)


async def get_current_owner(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> str:
    """
    Get the authenticated caller's owner id

    Raises:
        AuthError: If the token is missing, invalid or has no subject

    Example:
        @router.get("/executions")
        async def list_executions(owner_id: str = Depends(get_current_owner)):
            ...
    """
    if not credentials:
        raise AuthError("Not authenticated")

    try:
        payload = verify_token(credentials.credentials, expected_type=TokenType.ACCESS)
    except JWTError as e:
        raise AuthError(
            "Could not validate credentials",
            details={"reason": str(e)},
            error_code=ErrorCode.AUTH_TOKEN_INVALID,
        )

    owner_id = payload.get("sub")
    if not owner_id:
        logger.warning("Token missing 'sub' claim")
        raise AuthError(
            "Invalid token: missing owner identifier",
            error_code=ErrorCode.AUTH_TOKEN_INVALID,
        )

    return str(owner_id)
