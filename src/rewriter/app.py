"""
Application entry point — creates and configures the FastAPI app.
"""
from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from rewriter.api.relay_routes import cors_headers, create_relay_router
from rewriter.api.routes import router as api_router
from rewriter.config import Config, load_config
from rewriter.errors import RelayError
from rewriter.services.chat_relay import ChatRelay
from rewriter.services.conversation_store import ConversationStore, SQLConversationStore
from rewriter.services.database import Database
from rewriter.services.identity import IdentityVerifier, JWTIdentityVerifier, SupabaseIdentityVerifier
from rewriter.services.openai_client import OpenAIClient
from rewriter.services.supabase_store import SupabaseConversationStore, create_supabase_client

log = structlog.get_logger()


async def build_relay(cfg: Config) -> ChatRelay:
    """Wire the configured store, identity verifier and upstream client."""
    supabase_client = None
    if cfg.store.backend == "supabase" or cfg.auth.verifier == "supabase":
        supabase_client = await create_supabase_client(cfg.supabase)

    store: ConversationStore
    if cfg.store.backend == "supabase":
        store = SupabaseConversationStore(supabase_client)
    elif cfg.store.backend == "sql":
        database = Database(cfg.store.database_url, echo=cfg.store.echo)
        await database.init()
        store = SQLConversationStore(database)
    else:
        raise ValueError(f"Unknown store backend: {cfg.store.backend}")

    identity: IdentityVerifier
    if cfg.auth.verifier == "jwt":
        identity = JWTIdentityVerifier(
            cfg.supabase.jwt_secret,
            algorithm=cfg.auth.jwt_algorithm,
            audience=cfg.auth.jwt_audience,
        )
    elif cfg.auth.verifier == "supabase":
        identity = SupabaseIdentityVerifier(supabase_client)
    else:
        raise ValueError(f"Unknown identity verifier: {cfg.auth.verifier}")

    return ChatRelay(cfg, identity, store, OpenAIClient(cfg.openai))


def create_app(config: Optional[Config] = None, relay: Optional[ChatRelay] = None) -> FastAPI:
    """Build the app. Pass ``relay`` to run against pre-built collaborators."""
    cfg = config or load_config()
    owns_relay = relay is None

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        log.info("app_starting", version=cfg.app.version, store=cfg.store.backend, verifier=cfg.auth.verifier)
        if owns_relay:
            app.state.relay = await build_relay(cfg)
        log.info("app_started")
        yield
        log.info("app_shutting_down")
        if owns_relay:
            await app.state.relay.upstream.close()
            await app.state.relay.store.close()
        log.info("app_stopped")

    app = FastAPI(title=cfg.app.name, version=cfg.app.version, lifespan=lifespan)
    app.state.config = cfg
    app.state.relay = relay

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.cors.allow_origins,
        allow_methods=["*"],
        allow_headers=cfg.cors.allow_headers,
    )

    def error_headers(request: Request):
        return cors_headers(cfg.cors, request.headers.get("origin"))

    @app.exception_handler(RelayError)
    async def relay_error_handler(request: Request, exc: RelayError):
        return JSONResponse(exc.to_payload(), status_code=exc.status_code, headers=error_headers(request))

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse({"error": str(exc.detail)}, status_code=exc.status_code, headers=error_headers(request))

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            {"error": "Invalid request", "details": str(exc.errors())},
            status_code=400,
            headers=error_headers(request),
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        log.exception("unhandled_exception", path=request.url.path)
        return JSONResponse({"error": str(exc) or "Unknown error"}, status_code=500, headers=error_headers(request))

    app.include_router(create_relay_router(cfg.relay.path, cfg.cors))
    app.include_router(api_router)
    return app
