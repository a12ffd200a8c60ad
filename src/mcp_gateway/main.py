"""
Gateway Layer - FastAPI Application

Builds the MCP gateway: capability registry, dispatcher, rate limiter,
transports and the HTTP surface around them.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI

from mcp_gateway import __version__
from mcp_gateway.auth.authenticator import Authenticator, DefaultAuthenticator
from mcp_gateway.capabilities.builtin import register_builtin_capabilities
from mcp_gateway.config import GatewaySettings
from mcp_gateway.config import settings as default_settings
from mcp_gateway.middleware.cors import make_cors_middleware
from mcp_gateway.middleware.logging import configure_logging, logging_middleware
from mcp_gateway.middleware.metrics import metrics_middleware
from mcp_gateway.protocol.dispatcher import ProtocolDispatcher
from mcp_gateway.ratelimit.limiter import RateLimiter
from mcp_gateway.ratelimit.store import InMemoryQuotaStore, QuotaStore, RedisQuotaStore
from mcp_gateway.registry.capabilities import CapabilityRegistry
from mcp_gateway.relay.store import InMemoryRelayStore, RedisRelayStore, RelayStore
from mcp_gateway.routes import health, manifest, mcp
from mcp_gateway.transport.direct import DirectTransport
from mcp_gateway.transport.session_bridge import SessionBridge

logger = structlog.get_logger()


def build_quota_store(settings: GatewaySettings) -> QuotaStore:
    if settings.RATE_LIMIT_REDIS_URL:
        return RedisQuotaStore(redis_url=settings.RATE_LIMIT_REDIS_URL)
    return InMemoryQuotaStore()


def build_relay_store(settings: GatewaySettings) -> RelayStore | None:
    """Relay store for the session bridge, or None when the bridge is disabled."""
    if settings.RELAY_REDIS_URL:
        return RedisRelayStore(
            redis_url=settings.RELAY_REDIS_URL,
            key_prefix=settings.RELAY_KEY_PREFIX,
            ttl_seconds=settings.RELAY_MESSAGE_TTL_SECONDS,
        )
    if settings.RELAY_IN_MEMORY:
        return InMemoryRelayStore(ttl_seconds=settings.RELAY_MESSAGE_TTL_SECONDS)
    return None


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    settings: GatewaySettings = app.state.settings

    try:
        logger.info(
            "Starting MCP gateway",
            name=settings.SERVER_NAME,
            version=settings.SERVER_VERSION,
        )

        await app.state.quota_store.initialize()
        logger.info("Quota store initialized", store=type(app.state.quota_store).__name__)

        if app.state.relay_store is not None:
            await app.state.relay_store.initialize()
            logger.info("Relay store initialized", store=type(app.state.relay_store).__name__)
        else:
            logger.info("No relay store configured; session-bridge streams disabled")

        yield
    finally:
        logger.info("Shutting down MCP gateway")

        await app.state.quota_store.close()
        if app.state.relay_store is not None:
            await app.state.relay_store.close()


def create_app(
    settings: GatewaySettings | None = None,
    registry: CapabilityRegistry | None = None,
    authenticator: Authenticator | None = None,
    quota_store: QuotaStore | None = None,
    relay_store: RelayStore | None = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: Gateway settings (module-level settings when omitted)
        registry: Capability registry (built-in capabilities when omitted)
        authenticator: Request authenticator (JWT/API key from settings when omitted)
        quota_store: Quota counter store (derived from settings when omitted)
        relay_store: Session relay store (derived from settings when omitted)

    Returns:
        Configured application. Stores are connected by the lifespan.
    """
    settings = settings or default_settings
    configure_logging(settings.LOG_LEVEL)

    registry = registry if registry is not None else register_builtin_capabilities(CapabilityRegistry())
    authenticator = authenticator or DefaultAuthenticator(
        secret_key=settings.JWT_SECRET_KEY,
        algorithm=settings.JWT_ALGORITHM,
        issuer=settings.JWT_ISSUER,
        audience=settings.JWT_AUDIENCE,
        api_keys=settings.API_KEYS,
        cookie_name=settings.SESSION_COOKIE_NAME,
    )
    quota_store = quota_store or build_quota_store(settings)
    relay_store = relay_store if relay_store is not None else build_relay_store(settings)

    dispatcher = ProtocolDispatcher(
        registry=registry,
        server_name=settings.SERVER_NAME,
        server_version=settings.SERVER_VERSION,
        supported_protocol_versions=settings.SUPPORTED_PROTOCOL_VERSIONS,
        instructions=settings.SERVER_INSTRUCTIONS,
    )
    rate_limiter = RateLimiter.from_settings(settings, quota_store, registry)
    direct_transport = DirectTransport(dispatcher, rate_limiter)

    session_bridge = None
    if relay_store is not None:
        session_bridge = SessionBridge(
            direct=direct_transport,
            relay=relay_store,
            poll_interval=settings.SSE_POLL_INTERVAL_SECONDS,
            session_timeout=settings.SSE_SESSION_TIMEOUT_SECONDS,
            failure_backoff=settings.SSE_FAILURE_BACKOFF_SECONDS,
            max_consecutive_failures=settings.SSE_MAX_CONSECUTIVE_FAILURES,
        )

    app = FastAPI(
        title=settings.SERVER_NAME,
        description="JSON-RPC gateway exposing tools, resources and prompts to model clients",
        version=__version__,
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.registry = registry
    app.state.authenticator = authenticator
    app.state.quota_store = quota_store
    app.state.relay_store = relay_store
    app.state.dispatcher = dispatcher
    app.state.rate_limiter = rate_limiter
    app.state.direct_transport = direct_transport
    app.state.session_bridge = session_bridge

    @app.middleware("http")
    async def add_logging_middleware(request, call_next):
        return await logging_middleware(request, call_next)

    if settings.ENABLE_METRICS:
        @app.middleware("http")
        async def add_metrics_middleware(request, call_next):
            return await metrics_middleware(request, call_next)

    # Registered last so it wraps everything, preflight included
    app.middleware("http")(make_cors_middleware(settings.ALLOWED_ORIGINS))

    app.include_router(mcp.router, tags=["mcp"])
    app.include_router(manifest.router, tags=["mcp"])
    app.include_router(health.router, tags=["health"])

    return app


# Create the app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "mcp_gateway.main:app",
        host=default_settings.HOST,
        port=default_settings.PORT,
        reload=default_settings.DEBUG,
        log_level=default_settings.LOG_LEVEL.lower(),
        access_log=True,
    )
