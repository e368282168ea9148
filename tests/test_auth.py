"""
Tests for bearer token verification and the management API auth boundary.
"""

from datetime import UTC, datetime, timedelta

import pytest
from authlib.jose import jwt
from fastapi import HTTPException
from httpx import ASGITransport, AsyncClient

from flagdeck.auth.core import (
    JWTService,
    TokenType,
    UserInfo,
    _claims_to_user_info,
    create_access_token,
    get_current_user,
    get_jwt_service,
)


@pytest.fixture
def jwt_service() -> JWTService:
    return JWTService(secret="test-secret", algorithm="HS256")


class TestJWTService:
    def test_round_trip_claims(self, jwt_service):
        token = jwt_service.create_access_token("user-1", {"roles": ["admin"], "email": "a@b.c"})

        claims = jwt_service.verify_token(token, TokenType.ACCESS)

        assert claims["sub"] == "user-1"
        assert claims["roles"] == ["admin"]
        assert claims["type"] == "access"
        assert claims["jti"]

    def test_wrong_secret_rejected(self, jwt_service):
        token = JWTService(secret="other-secret").create_access_token("user-1")

        with pytest.raises(HTTPException) as exc_info:
            jwt_service.verify_token(token)

        assert exc_info.value.status_code == 401
        assert exc_info.value.headers["WWW-Authenticate"] == "Bearer"

    def test_expired_token_rejected(self, jwt_service):
        past = datetime.now(UTC) - timedelta(hours=1)
        token = jwt.encode(
            {"alg": "HS256"},
            {"sub": "user-1", "type": "access", "exp": int(past.timestamp())},
            "test-secret",
        ).decode()

        with pytest.raises(HTTPException):
            jwt_service.verify_token(token)

    def test_refresh_token_not_accepted_as_access(self, jwt_service):
        token = jwt.encode(
            {"alg": "HS256"}, {"sub": "user-1", "type": "refresh"}, "test-secret"
        ).decode()

        with pytest.raises(HTTPException):
            jwt_service.verify_token(token, TokenType.ACCESS)

    def test_token_without_subject_rejected(self, jwt_service):
        token = jwt.encode({"alg": "HS256"}, {"type": "access"}, "test-secret").decode()

        with pytest.raises(HTTPException):
            jwt_service.verify_token(token)


class TestUserInfo:
    def test_admin_role_elevates(self):
        assert UserInfo(user_id="u", roles=["admin"]).is_admin
        assert not UserInfo(user_id="u", roles=["user"]).is_admin

    def test_claims_accept_single_role_string(self):
        user = _claims_to_user_info({"sub": 42, "roles": "admin"})
        assert user.user_id == "42"
        assert user.roles == ["admin"]

    def test_module_helper_passes_expiry_separately(self):
        token = create_access_token("user-7", expire_minutes=5, roles=["user"])

        claims = get_jwt_service().verify_token(token)
        assert "expire_minutes" not in claims
        assert claims["exp"] - claims["iat"] == 300


class TestManagementAuthBoundary:
    """The real dependency, without the per-test caller override."""

    @pytest.fixture
    async def anonymous_client(self, test_app):
        test_app.dependency_overrides.pop(get_current_user)
        transport = ASGITransport(app=test_app)
        async with AsyncClient(transport=transport, base_url="http://testserver") as client:
            yield client

    async def test_missing_token_401(self, anonymous_client):
        response = await anonymous_client.get("/api/v1/applications")

        assert response.status_code == 401
        assert response.headers["www-authenticate"] == "Bearer"

    async def test_invalid_token_401(self, anonymous_client):
        response = await anonymous_client.get(
            "/api/v1/applications", headers={"Authorization": "Bearer not-a-jwt"}
        )
        assert response.status_code == 401

    async def test_valid_token_accepted(self, anonymous_client):
        token = create_access_token("owner-1", roles=["user"])

        created = await anonymous_client.post(
            "/api/v1/applications",
            json={"name": "Tokened"},
            headers={"Authorization": f"Bearer {token}"},
        )

        assert created.status_code == 201
        assert created.json()["owner_id"] == "owner-1"

    async def test_access_token_cookie_accepted(self, anonymous_client):
        anonymous_client.cookies.set("access_token", create_access_token("owner-1"))

        response = await anonymous_client.get("/api/v1/applications")

        assert response.status_code == 200
        assert response.json() == []
