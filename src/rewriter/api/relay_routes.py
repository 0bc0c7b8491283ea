"""
Relay endpoint — ``POST`` streams the rewrite chat, ``OPTIONS`` answers preflight.
"""
from typing import Dict, Optional

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import StreamingResponse

from rewriter.config import CorsConfig
from rewriter.errors import BadRequest
from rewriter.middleware.auth_middleware import get_relay
from rewriter.services.chat_relay import ChatRelay
from rewriter.services.identity import parse_bearer


def cors_headers(cfg: CorsConfig, origin: Optional[str] = None) -> Dict[str, str]:
    """CORS headers for one response; explicit allow-lists echo the matching request origin."""
    headers = {"Access-Control-Allow-Headers": ", ".join(cfg.allow_headers)}
    if not cfg.allow_origins or "*" in cfg.allow_origins:
        headers["Access-Control-Allow-Origin"] = "*"
        return headers
    headers["Access-Control-Allow-Origin"] = origin if origin in cfg.allow_origins else cfg.allow_origins[0]
    return headers


def create_relay_router(path: str, cors: CorsConfig) -> APIRouter:
    """Router mounting the relay at ``path`` (the edge function URL by default)."""
    router = APIRouter(tags=["relay"])

    @router.options(path)
    async def relay_preflight(request: Request):
        return Response(status_code=200, headers=cors_headers(cors, request.headers.get("origin")))

    @router.post(path)
    async def relay_chat(request: Request, relay: ChatRelay = Depends(get_relay)):
        try:
            body = await request.json()
        except ValueError:
            raise BadRequest("Request body must be valid JSON")

        token = parse_bearer(request.headers.get("authorization"))
        stream = await relay.open(token, body)

        return StreamingResponse(
            stream,
            media_type="text/event-stream",
            headers={
                **cors_headers(cors, request.headers.get("origin")),
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no",
            },
        )

    return router
