"""
Auth core - bearer JWT verification for the management API.

Session issuance (login, refresh, logout) lives outside this service. Tokens
are signed with the shared secret and verified here with Authlib.
"""

import secrets
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any, cast

import structlog
from authlib.jose import JoseError, jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, ConfigDict, Field

from flagdeck.settings import settings

logger = structlog.get_logger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


# ============================================
# Models
# ============================================


class TokenType(str, Enum):
    """Token types."""

    ACCESS = "access"
    REFRESH = "refresh"


class UserInfo(BaseModel):
    """Authenticated caller, built from token claims.

    User IDs are stored as strings; applications reference their owner by
    this value.
    """

    model_config = ConfigDict(extra="forbid")

    user_id: str
    email: str | None = None
    roles: list[str] = Field(default_factory=list)

    @property
    def is_admin(self) -> bool:
        return settings.jwt.admin_role in self.roles


# ============================================
# JWT Service
# ============================================


class JWTService:
    """JWT signing and verification using Authlib."""

    def __init__(self, secret: str | None = None, algorithm: str | None = None):
        self.secret = secret or settings.jwt.secret_key
        self.algorithm = algorithm or settings.jwt.algorithm
        self.header = {"alg": self.algorithm}

    def create_access_token(
        self,
        subject: str,
        additional_claims: dict[str, Any] | None = None,
        expire_minutes: int | None = None,
    ) -> str:
        """Create access token."""
        data = {"sub": subject, "type": TokenType.ACCESS.value, "iss": settings.jwt.issuer}
        if additional_claims:
            data.update(additional_claims)

        expires_delta = timedelta(
            minutes=expire_minutes or settings.jwt.access_token_expire_minutes
        )
        return self._create_token(data, expires_delta)

    def _create_token(self, data: dict, expires_delta: timedelta) -> str:
        """Internal token creation."""
        to_encode = data.copy()
        now = datetime.now(UTC)
        to_encode.update(
            {
                "exp": int((now + expires_delta).timestamp()),
                "iat": int(now.timestamp()),
                "jti": secrets.token_urlsafe(16),
            }
        )

        token = jwt.encode(self.header, to_encode, self.secret)
        return token.decode("utf-8") if isinstance(token, bytes) else token

    def verify_token(self, token: str, expected_type: TokenType | None = None) -> dict[str, Any]:
        """Verify and decode token.

        Raises:
            HTTPException: If token is invalid, expired, or has wrong type
        """
        try:
            claims_raw = jwt.decode(token, self.secret)
            claims_raw.validate()
            claims = cast(dict[str, Any], dict(claims_raw))

            if expected_type:
                token_type = claims.get("type")
                if token_type != expected_type.value:
                    raise JoseError(
                        f"Invalid token type. Expected {expected_type.value}, got {token_type}"
                    )
            if not claims.get("sub"):
                raise JoseError("Token has no subject")

            return claims
        except (JoseError, ValueError) as e:
            logger.debug("auth.token.rejected", error=str(e))
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail=f"Invalid token: {e}",
                headers={"WWW-Authenticate": "Bearer"},
            )


_jwt_service: JWTService | None = None


def get_jwt_service() -> JWTService:
    global _jwt_service
    if _jwt_service is None:
        _jwt_service = JWTService()
    return _jwt_service


# ============================================
# FastAPI Dependencies
# ============================================


async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> UserInfo:
    """Get current authenticated user from a Bearer token or the access_token cookie.

    Only ACCESS tokens are accepted.
    """
    token = credentials.credentials if credentials and credentials.credentials else None
    if token is None:
        token = request.cookies.get("access_token")

    if token:
        claims = get_jwt_service().verify_token(token, TokenType.ACCESS)
        return _claims_to_user_info(claims)

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Not authenticated",
        headers={"WWW-Authenticate": "Bearer"},
    )


def _claims_to_user_info(claims: dict) -> UserInfo:
    """Convert JWT claims to UserInfo."""
    roles = claims.get("roles") or []
    if isinstance(roles, str):
        roles = [roles]
    return UserInfo(
        user_id=str(claims["sub"]),
        email=claims.get("email"),
        roles=list(roles),
    )


def create_access_token(user_id: str, expire_minutes: int | None = None, **kwargs: Any) -> str:
    """Create access token; extra keyword arguments become claims."""
    return get_jwt_service().create_access_token(user_id, kwargs, expire_minutes)
