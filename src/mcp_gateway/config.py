"""
Gateway Configuration

Environment-based configuration management for the MCP gateway.
"""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings


class GatewaySettings(BaseSettings):
    """Gateway configuration loaded from environment variables."""

    # Application
    DEBUG: bool = Field(default=False, description="Enable debug mode")
    HOST: str = Field(default="0.0.0.0", description="Server host")
    PORT: int = Field(default=8080, description="Server port")

    # Server identity
    SERVER_NAME: str = Field(default="mcp-gateway", description="Server name reported on initialize")
    SERVER_VERSION: str = Field(default="0.1.0", description="Server version reported on initialize")
    SERVER_INSTRUCTIONS: str = Field(
        default="Use tools/list to discover available tools. All calls are scoped to the authenticated tenant.",
        description="Instructions returned to clients on initialize",
    )

    # Protocol
    SUPPORTED_PROTOCOL_VERSIONS: list[str] = Field(
        default=["2025-03-26", "2024-11-05"],
        description="Supported protocol versions, newest first",
    )

    # CORS Configuration
    ALLOWED_ORIGINS: list[str] = Field(default=["*"], description="Allowed CORS origins")

    # Authentication
    JWT_SECRET_KEY: str = Field(
        default="change-me-in-production",
        description="Shared secret for HS256 access tokens",
    )
    JWT_ALGORITHM: str = Field(default="HS256", description="JWT signing algorithm")
    JWT_ISSUER: str | None = Field(default=None, description="Expected JWT issuer (optional)")
    JWT_AUDIENCE: str | None = Field(default=None, description="Expected JWT audience (optional)")
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = Field(default=60, description="Access token expiration in minutes")
    SESSION_COOKIE_NAME: str = Field(default="mcp_session", description="Session cookie carrying a JWT")
    API_KEYS: dict[str, str] = Field(
        default_factory=dict,
        description="Static API keys mapped to 'tenant_id:user_id[:scope,scope]'",
    )

    # Rate Limiting
    RATE_LIMIT_ENABLED: bool = Field(default=True, description="Enable rate limiting")
    RATE_LIMIT_REDIS_URL: str | None = Field(
        default=None,
        description="Redis URL for quota counters (in-memory when unset)",
    )
    RATE_LIMIT_ALGORITHM: str = Field(
        default="fixed_window",
        description="Rate limit algorithm (fixed_window, sliding_window)",
    )
    RATE_LIMIT_KEY_PREFIX: str = Field(default="mcp:ratelimit", description="Quota key prefix")
    RATE_LIMIT_TENANT_LIMIT: int = Field(default=100, description="Calls per window per tenant and method")
    RATE_LIMIT_WINDOW_SECONDS: int = Field(default=60, description="Rate limit window in seconds")
    RATE_LIMIT_MEDIUM_TIER_LIMIT: int = Field(default=50, description="Calls per window for medium-tier tools")
    RATE_LIMIT_HIGH_TIER_LIMIT: int = Field(default=10, description="Calls per window for high-tier tools")
    RATE_LIMIT_COST_BUDGET: int = Field(
        default=1000,
        description="Tool cost units per tenant per minute (0 disables the budget)",
    )
    RATE_LIMIT_FAIL_OPEN: bool = Field(
        default=True,
        description="Allow calls when the quota store is unreachable",
    )

    # Relay store (session bridge)
    RELAY_REDIS_URL: str | None = Field(
        default=None,
        description="Redis URL for the session relay store",
    )
    RELAY_IN_MEMORY: bool = Field(
        default=False,
        description="Use an in-process relay store when no Redis URL is configured",
    )
    RELAY_KEY_PREFIX: str = Field(default="mcp:relay", description="Relay key prefix")
    RELAY_MESSAGE_TTL_SECONDS: int = Field(default=600, description="TTL of undrained relay messages")

    # SSE session bridge
    SSE_POLL_INTERVAL_SECONDS: float = Field(default=0.2, description="Relay poll interval")
    SSE_SESSION_TIMEOUT_SECONDS: float = Field(default=300.0, description="Idle timeout of a session")
    SSE_FAILURE_BACKOFF_SECONDS: float = Field(default=1.0, description="Backoff after a relay failure")
    SSE_MAX_CONSECUTIVE_FAILURES: int = Field(
        default=5,
        description="Consecutive relay failures before the stream closes",
    )

    # Monitoring
    ENABLE_METRICS: bool = Field(default=True, description="Enable Prometheus metrics")
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")

    model_config = {
        "env_file": ".env",
        "env_prefix": "MCP_GATEWAY_",
        "case_sensitive": True,
        "extra": "ignore",
    }


# Global settings instance
settings = GatewaySettings()
