"""
Authentication dependencies — resolve the caller from the bearer token.

Usage in a route:
    @router.get("/protected")
    async def protected_route(caller: Identity = Depends(get_current_identity)):
        return {"user_id": caller.user_id}
"""
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from rewriter.models.records import Identity
from rewriter.services.chat_relay import ChatRelay
from rewriter.services.conversation_store import ConversationStore
from rewriter.services.identity import IdentityVerifier

# auto_error=False so a missing header becomes our own 401 payload
security = HTTPBearer(auto_error=False)


def get_relay(request: Request) -> ChatRelay:
    return request.app.state.relay


def get_store(request: Request) -> ConversationStore:
    return request.app.state.relay.store


def get_identity_verifier(request: Request) -> IdentityVerifier:
    return request.app.state.relay.identity


async def get_current_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    verifier: IdentityVerifier = Depends(get_identity_verifier),
) -> Identity:
    """Raises Unauthorized (401) if the token is missing or rejected."""
    token = credentials.credentials if credentials else None
    return await verifier.verify(token)
