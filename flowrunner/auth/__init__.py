"""
Authentication Module

Bearer token verification for the control endpoints. Token issuance
belongs to the identity provider; create_access_token exists for
development and tests.
"""

from .jwt_handler import TokenType, create_access_token, verify_token
from .dependencies import get_current_owner

__all__ = [
    "TokenType",
    "create_access_token",
    "verify_token",
    "get_current_owner",
]
