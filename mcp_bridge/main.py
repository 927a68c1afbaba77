# mcp_bridge/main.py
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import logging
import sqlite3
from typing import Dict, Optional

import httpx
from fastmcp import FastMCP
from redis.exceptions import RedisError

from . import __version__
from .settings import settings, validate_encryption_secret
from .utils.security import TokenCipher
from .storage.sqlite_base import close_sqlite_db_connection, get_sqlite_db_connection
from .storage.janitor import StorageJanitor
from .vault import get_credential_vault
from .ratelimit import RateLimitMiddleware, get_rate_limiter
from .provider import ProviderApiClient, ProviderOAuthClient
from .oauth.errors import OAuthError, ServerError
from .oauth.provider import BridgeOAuthBroker
from .oauth.storage import get_auth_code_store, get_auth_session_store, get_client_store
from .oauth.endpoints import oauth_router
from .sessions.endpoints import mcp_router
from .sessions.protocol import McpSessionHandler, OutboundSender
from .sessions.session_manager import SessionTransportManager
from .tools import register_provider_tools

if not logging.getLogger().hasHandlers():
    logging.basicConfig(
        level="DEBUG" if settings.debug_mode else "INFO",
        format='%(asctime)s - %(name)s [%(levelname)s] - %(message)s'
    )

logger = logging.getLogger(__name__)
logger.setLevel(logging.DEBUG if settings.debug_mode else logging.INFO)

STATE_ATTRIBUTES = (
    "oauth_broker",
    "vault",
    "rate_limiter",
    "provider_api_client",
    "session_manager",
    "janitor",
)


def build_handler_factory(api_client: ProviderApiClient):
    """Each session gets its own FastMCP server whose tools close over that session's bridge token."""

    def build_session_handler(session_id: str, bridge_token: str, send: OutboundSender) -> McpSessionHandler:
        server = FastMCP(name=settings.app_name)
        register_provider_tools(server, api_client, bridge_token)
        return McpSessionHandler(session_id, server, send)

    return build_session_handler


def create_app(provider_transport: Optional[httpx.AsyncBaseTransport] = None) -> FastAPI:
    """
    Build the bridge application.

    ``provider_transport`` replaces the network transport of the provider
    HTTP client; tests pass an ``httpx.MockTransport`` here.
    """

    @asynccontextmanager
    async def bridge_lifespan(app_instance: FastAPI):
        """
        Initializes every store and service, publishes them on ``app.state``
        and tears them down in reverse order on shutdown.
        """
        logger.info(f"{settings.app_name} lifespan startup. Storage backend: {settings.storage_backend}")
        validate_encryption_secret()

        cipher = TokenCipher(settings.encryption_secret, settings.encryption_kdf_iterations)
        client_store = await get_client_store()
        session_store = await get_auth_session_store()
        code_store = await get_auth_code_store()
        vault = await get_credential_vault(cipher)
        rate_limiter = await get_rate_limiter()

        http_client = httpx.AsyncClient(timeout=settings.provider_http_timeout, transport=provider_transport)
        provider_oauth = ProviderOAuthClient(http_client)
        api_client = ProviderApiClient(vault, provider_oauth, http_client)
        broker = BridgeOAuthBroker(
            client_store=client_store,
            session_store=session_store,
            code_store=code_store,
            vault=vault,
            cipher=cipher,
            provider_oauth=provider_oauth,
        )

        session_manager = SessionTransportManager(
            build_handler_factory(api_client),
            idle_timeout_seconds=settings.session_idle_timeout_seconds,
            heartbeat_interval_seconds=settings.session_heartbeat_interval_seconds,
            sweep_interval_seconds=settings.session_sweep_interval_seconds,
        )
        session_manager.start()

        janitor = StorageJanitor(
            {"oauth_sessions": session_store, "auth_codes": code_store, "rate_limits": rate_limiter},
            vault=vault,
            interval_seconds=settings.janitor_interval_seconds,
            token_interval_seconds=settings.janitor_token_interval_seconds,
        )
        janitor.start()

        app_instance.state.oauth_broker = broker
        app_instance.state.vault = vault
        app_instance.state.rate_limiter = rate_limiter
        app_instance.state.provider_api_client = api_client
        app_instance.state.session_manager = session_manager
        app_instance.state.janitor = janitor
        logger.info(f"{settings.app_name} ready.")

        try:
            yield
        finally:
            logger.info(f"{settings.app_name} lifespan shutdown.")
            for attribute in STATE_ATTRIBUTES:
                setattr(app_instance.state, attribute, None)
            await janitor.stop()
            await session_manager.stop()
            await http_client.aclose()
            for store in (rate_limiter, vault, code_store, session_store, client_store):
                await store.teardown()
            if settings.storage_backend == "sqlite":
                await close_sqlite_db_connection()
            logger.info(f"{settings.app_name} shutdown complete.")

    app = FastAPI(
        title=settings.app_name,
        debug=settings.debug_mode,
        version=__version__,
        lifespan=bridge_lifespan,
    )

    @app.exception_handler(OAuthError)
    async def oauth_error_handler(request: Request, exc: OAuthError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_body(), headers=exc.headers)

    @app.exception_handler(sqlite3.Error)
    @app.exception_handler(RedisError)
    async def storage_error_handler(request: Request, exc: Exception):
        logger.error(f"Storage failure on {request.method} {request.url.path}: {exc}", exc_info=exc)
        error = ServerError("A storage error occurred while processing the request.")
        return JSONResponse(status_code=error.status_code, content=error.to_body())

    app.add_middleware(
        RateLimitMiddleware,
        limits={
            "/register": settings.rate_limit_register,
            "/authorize": settings.rate_limit_authorize,
            "/token": settings.rate_limit_token,
        },
        window_seconds=settings.rate_limit_window_seconds,
    )
    if settings.allowed_origins_list:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.allowed_origins_list,
            allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
            allow_headers=["Authorization", "Content-Type", "Mcp-Session-Id"],
            expose_headers=["Mcp-Session-Id"],
        )

    @app.get("/")
    async def root_api():
        return {"message": f"Welcome to {settings.app_name}!", "version": __version__}

    @app.get("/health")
    async def health_api(request: Request):
        """Health check endpoint that validates storage backend connectivity."""
        store_statuses: Dict[str, str] = {}
        all_healthy = True

        if settings.storage_backend == "sqlite":
            try:
                conn = await get_sqlite_db_connection()
                conn.execute("SELECT 1")
                store_statuses["sqlite_main_db"] = "healthy"
            except sqlite3.Error as e:
                store_statuses["sqlite_main_db"] = f"unhealthy: {e}"
                all_healthy = False
        else:
            vault = getattr(request.app.state, "vault", None)
            try:
                if vault is None:
                    raise RuntimeError("vault not initialized")
                redis_client = await vault._get_client()
                await redis_client.ping()
                store_statuses["redis"] = "healthy"
            except (RedisError, RuntimeError) as e:
                store_statuses["redis"] = f"unhealthy: {e}"
                all_healthy = False

        session_manager = getattr(request.app.state, "session_manager", None)
        return {
            "status": "healthy" if all_healthy else "degraded",
            "storage_backend": settings.storage_backend,
            "active_sessions": session_manager.active_session_count if session_manager else 0,
            "details": store_statuses,
        }

    app.include_router(oauth_router, tags=["OAuth 2.1"])
    app.include_router(mcp_router, tags=["MCP"])

    logger.info(f"{settings.app_name} initialized. Storage: {settings.storage_backend}. Routers mounted.")
    return app


app = create_app()
