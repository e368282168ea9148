"""
Authentication boundary for the management API.
"""

from .core import (
    JWTService,
    TokenType,
    UserInfo,
    create_access_token,
    get_current_user,
    get_jwt_service,
)

__all__ = [
    "JWTService",
    "TokenType",
    "UserInfo",
    "create_access_token",
    "get_current_user",
    "get_jwt_service",
]
