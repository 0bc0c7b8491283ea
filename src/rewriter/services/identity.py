"""
Identity Verifier — exchanges a bearer token for a caller identity.

``SupabaseIdentityVerifier`` asks the hosted auth service about the token;
``JWTIdentityVerifier`` checks the signature locally with the project's JWT
secret, which avoids a network hop per request.
"""
from abc import ABC, abstractmethod
from typing import Optional

import httpx
import structlog
from jose import JWTError, jwt
from supabase import AsyncClient, AuthError

from rewriter.errors import Unauthorized
from rewriter.models.records import Identity

log = structlog.get_logger()


def parse_bearer(authorization: Optional[str]) -> Optional[str]:
    """Extract the token from an ``Authorization: Bearer <token>`` header."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer":
        return None
    token = token.strip()
    return token or None


class IdentityVerifier(ABC):
    @abstractmethod
    async def verify(self, token: Optional[str]) -> Identity:
        """Return the caller identity or raise Unauthorized."""
        ...


class JWTIdentityVerifier(IdentityVerifier):
    """Verify HS256 access tokens signed with the shared project secret."""

    def __init__(self, secret: str, algorithm: str = "HS256", audience: Optional[str] = "authenticated"):
        if not secret:
            raise ValueError("A JWT secret is required for local token verification")
        self.secret = secret
        self.algorithm = algorithm
        self.audience = audience or None

    async def verify(self, token: Optional[str]) -> Identity:
        if not token:
            raise Unauthorized()
        try:
            payload = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                audience=self.audience,
                options={"verify_aud": self.audience is not None},
            )
        except JWTError as e:
            log.warning("jwt_verification_failed", error=str(e))
            raise Unauthorized() from e

        user_id = payload.get("sub")
        if not user_id:
            log.warning("jwt_missing_subject")
            raise Unauthorized()

        return Identity(
            user_id=str(user_id),
            email=payload.get("email"),
            role=payload.get("role"),
            claims=payload,
        )


class SupabaseIdentityVerifier(IdentityVerifier):
    """Resolve tokens through the hosted auth service."""

    def __init__(self, client: AsyncClient):
        self.client = client

    async def verify(self, token: Optional[str]) -> Identity:
        if not token:
            raise Unauthorized()
        try:
            response = await self.client.auth.get_user(token)
        except (AuthError, httpx.HTTPError) as e:
            log.warning("auth_get_user_failed", error=str(e))
            raise Unauthorized() from e

        user = getattr(response, "user", None)
        if user is None:
            raise Unauthorized()
        return Identity(user_id=str(user.id), email=user.email, role=user.role)
