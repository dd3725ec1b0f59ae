"""
Authentication and session tests.

Tests cover:
- Session token creation and validation
- Registration upsert by identifier
- Bearer and cookie authentication
- Logout revocation
"""

from __future__ import annotations

import uuid
from datetime import timedelta

import jwt
import pytest

from teamup.core.auth import (
    REDIS_REVOKED_PREFIX,
    create_session_token,
    decode_session_token,
    resolve_session,
)
from teamup.core.config import get_settings
from teamup.core.errors import Unauthenticated


class TestSessionTokens:
    def test_token_roundtrip(self):
        user_id = uuid.uuid4()
        token, jti = create_session_token(user_id)
        claims = decode_session_token(token)
        assert claims["sub"] == str(user_id)
        assert claims["jti"] == jti
        assert claims["exp"] - claims["iat"] == get_settings().session_ttl_minutes * 60

    def test_default_lifetime_is_fourteen_days(self):
        assert get_settings().session_ttl_minutes == 14 * 24 * 60

    def test_expired_token_rejected(self):
        token, _ = create_session_token(uuid.uuid4(), expires_delta=timedelta(seconds=-5))
        with pytest.raises(jwt.ExpiredSignatureError):
            decode_session_token(token)

    def test_foreign_signature_rejected(self):
        forged = jwt.encode(
            {"sub": str(uuid.uuid4()), "jti": "x", "exp": 9999999999},
            "some-other-secret-that-is-long-enough-for-hs256",
            algorithm="HS256",
        )
        with pytest.raises(jwt.InvalidSignatureError):
            decode_session_token(forged)

    async def test_missing_token_is_unauthenticated(self):
        with pytest.raises(Unauthenticated):
            await resolve_session(None)


class TestRegister:
    async def test_register_issues_session(self, client):
        response = await client.post(
            "/auth/register",
            json={"name": "Ada", "identifier": "Ada@Example.com", "role_category": "PRODUCT"},
        )
        assert response.status_code == 200
        body = response.json()
        assert body["ok"] is True
        assert body["user"]["identifier"] == "ada@example.com"
        assert body["user"]["role_category"] == "PRODUCT"
        assert body["token"]

        cookie = response.headers["set-cookie"]
        assert cookie.startswith(f"{get_settings().session_cookie_name}=")
        assert "HttpOnly" in cookie
        assert "samesite=lax" in cookie.lower()

    async def test_register_again_updates_in_place(self, client):
        first = await client.post(
            "/auth/register",
            json={"name": "Ada", "identifier": "ada@example.com", "role_category": "RND"},
        )
        second = await client.post(
            "/auth/register",
            json={"name": "Ada L.", "identifier": " ADA@example.com ", "role_category": "GROWTH"},
        )
        assert first.json()["user"]["id"] == second.json()["user"]["id"]
        assert second.json()["user"]["name"] == "Ada L."
        assert second.json()["user"]["role_category"] == "GROWTH"

    async def test_invalid_role_rejected(self, client):
        response = await client.post(
            "/auth/register",
            json={"name": "Ada", "identifier": "ada@example.com", "role_category": "CEO"},
        )
        assert response.status_code == 422


class TestAuthentication:
    async def test_me_with_bearer(self, client, register):
        user, headers = await register("Grace")
        response = await client.get("/auth/me", headers=headers)
        assert response.status_code == 200
        assert response.json()["user"]["id"] == user["id"]

    async def test_me_with_cookie(self, client, register):
        user, _ = await register("Grace")
        # The register response stored the session cookie in the client jar
        response = await client.get("/auth/me")
        assert response.status_code == 200
        assert response.json()["user"]["id"] == user["id"]

    async def test_me_without_session(self, client):
        response = await client.get("/auth/me")
        assert response.status_code == 401
        assert response.json() == {
            "ok": False,
            "code": "UNAUTHENTICATED",
            "message": "Authentication required",
        }

    async def test_garbage_token(self, client):
        response = await client.get("/auth/me", headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401
        assert response.json()["code"] == "UNAUTHENTICATED"

    async def test_token_for_deleted_user(self, client):
        token, _ = create_session_token(uuid.uuid4())
        response = await client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401


class TestLogout:
    async def test_logout_revokes_token(self, client, register, mock_redis):
        _, headers = await register()

        response = await client.post("/auth/logout", headers=headers)
        assert response.status_code == 200
        assert response.json() == {"ok": True}

        key, ttl, value = mock_redis.setex.await_args.args
        assert key.startswith(REDIS_REVOKED_PREFIX)
        assert 0 < ttl <= get_settings().session_ttl_minutes * 60

        mock_redis.exists.return_value = 1
        response = await client.get("/auth/me", headers=headers)
        assert response.status_code == 401
        assert "revoked" in response.json()["message"]

    async def test_logout_without_session_is_ok(self, client, mock_redis):
        response = await client.post("/auth/logout")
        assert response.status_code == 200
        mock_redis.setex.assert_not_awaited()
