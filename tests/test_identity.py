"""Tests for bearer parsing and the two identity verifiers."""
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from jose import jwt

from rewriter.errors import Unauthorized
from rewriter.services.identity import JWTIdentityVerifier, SupabaseIdentityVerifier, parse_bearer

SECRET = "test-secret-that-is-long-enough-for-hs256"


def make_token(secret=SECRET, **overrides):
    claims = {
        "sub": "user-123",
        "email": "writer@example.com",
        "role": "authenticated",
        "aud": "authenticated",
        "exp": datetime.now(timezone.utc) + timedelta(minutes=5),
    }
    claims.update(overrides)
    claims = {k: v for k, v in claims.items() if v is not None}
    return jwt.encode(claims, secret, algorithm="HS256")


class TestParseBearer:
    def test_bearer(self):
        assert parse_bearer("Bearer abc.def") == "abc.def"

    def test_case_insensitive_scheme(self):
        assert parse_bearer("bearer abc") == "abc"

    @pytest.mark.parametrize("header", [None, "", "Bearer", "Bearer   ", "Basic abc", "abc"])
    def test_missing_or_other_scheme(self, header):
        assert parse_bearer(header) is None


@pytest.mark.asyncio
class TestJWTIdentityVerifier:
    async def test_valid_token(self):
        identity = await JWTIdentityVerifier(SECRET).verify(make_token())
        assert identity.user_id == "user-123"
        assert identity.email == "writer@example.com"
        assert identity.claims["aud"] == "authenticated"

    async def test_wrong_secret(self):
        token = make_token(secret="another-secret-that-is-also-long-enough")
        with pytest.raises(Unauthorized):
            await JWTIdentityVerifier(SECRET).verify(token)

    async def test_expired(self):
        token = make_token(exp=datetime.now(timezone.utc) - timedelta(minutes=1))
        with pytest.raises(Unauthorized):
            await JWTIdentityVerifier(SECRET).verify(token)

    async def test_wrong_audience(self):
        with pytest.raises(Unauthorized):
            await JWTIdentityVerifier(SECRET).verify(make_token(aud="anon"))

    async def test_missing_subject(self):
        with pytest.raises(Unauthorized):
            await JWTIdentityVerifier(SECRET).verify(make_token(sub=None))

    async def test_missing_token(self):
        with pytest.raises(Unauthorized):
            await JWTIdentityVerifier(SECRET).verify(None)

    def test_requires_secret(self):
        with pytest.raises(ValueError):
            JWTIdentityVerifier("")


def supabase_client(get_user):
    client = MagicMock()
    client.auth.get_user = get_user
    return client


@pytest.mark.asyncio
class TestSupabaseIdentityVerifier:
    async def test_resolves_user(self):
        user = SimpleNamespace(id="uuid-1", email="a@b.c", role="authenticated")
        get_user = AsyncMock(return_value=SimpleNamespace(user=user))
        verifier = SupabaseIdentityVerifier(supabase_client(get_user))

        identity = await verifier.verify("tok")

        assert identity.user_id == "uuid-1"
        get_user.assert_awaited_once_with("tok")

    async def test_no_user_is_unauthorized(self):
        verifier = SupabaseIdentityVerifier(supabase_client(AsyncMock(return_value=None)))
        with pytest.raises(Unauthorized):
            await verifier.verify("tok")

    async def test_transport_error_is_unauthorized(self):
        get_user = AsyncMock(side_effect=httpx.ConnectError("down"))
        verifier = SupabaseIdentityVerifier(supabase_client(get_user))
        with pytest.raises(Unauthorized):
            await verifier.verify("tok")

    async def test_missing_token_skips_lookup(self):
        get_user = AsyncMock()
        verifier = SupabaseIdentityVerifier(supabase_client(get_user))
        with pytest.raises(Unauthorized):
            await verifier.verify(None)
        get_user.assert_not_awaited()
