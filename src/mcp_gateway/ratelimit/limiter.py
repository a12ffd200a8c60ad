"""
Rate Limiter

Per-tenant quota enforcement for JSON-RPC calls. Listing and health methods are
exempt by exact name. Tool calls additionally draw from the tool's declared
tier and from a per-tenant cost budget.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

import structlog

from mcp_gateway.monitoring.metrics import RATE_LIMIT_REJECTIONS, RATE_LIMIT_STORE_ERRORS
from mcp_gateway.protocol.errors import RateLimitExceededError
from mcp_gateway.ratelimit.algorithms import (
    FixedWindowCounter,
    RateLimitAlgorithm,
    SlidingWindowCounter,
)
from mcp_gateway.ratelimit.store import QuotaStore
from mcp_gateway.registry.capabilities import CapabilityRegistry, RateLimitTier

if TYPE_CHECKING:
    from mcp_gateway.config import GatewaySettings

logger = structlog.get_logger()

# Exact-match allowlist. Never pattern-match method names here.
RATE_LIMIT_EXEMPT_METHODS: frozenset[str] = frozenset(
    {"ping", "tools/list", "resources/list", "prompts/list"}
)

TOOL_CALL_METHOD = "tools/call"
COST_BUDGET_WINDOW_SECONDS = 60


class RateLimitScope(str, Enum):
    """Counter that produced a rate limit decision."""

    TENANT = "tenant"
    TOOL_TIER = "tool_tier"
    COST_BUDGET = "cost_budget"


class RateLimitAlgorithmType(str, Enum):
    """Supported rate limiting algorithms."""

    FIXED_WINDOW = "fixed_window"
    SLIDING_WINDOW = "sliding_window"


@dataclass
class RateLimitPolicy:
    """
    Rate limit policy configuration.

    Defines the limits and behavior for a specific rate limit scope.
    """

    limit: int  # Maximum units allowed
    window_seconds: int  # Time window in seconds
    algorithm: RateLimitAlgorithmType = RateLimitAlgorithmType.FIXED_WINDOW
    enabled: bool = True


@dataclass
class RateLimitResult:
    """
    Result of a rate limit check.

    Contains the allow/deny decision and metadata for response headers.
    """

    allowed: bool
    limit: int
    remaining: int
    reset_at: int
    retry_after: int
    tier: str
    scope: RateLimitScope
    key: str

    def headers(self) -> dict[str, str]:
        """Standard rate limit response headers."""
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_at),
            "X-RateLimit-Tier": self.tier,
        }
        if not self.allowed:
            headers["Retry-After"] = str(self.retry_after)
        return headers


class RateLimiter:
    """
    Quota enforcement backed by a QuotaStore.

    Counters:
        - tenant: ``{prefix}:{tenant}:{method}`` for every non-exempt call
        - tool tier: ``{prefix}:{tenant}:tools/call:{tool}`` for medium and high tier tools
        - cost budget: ``{prefix}:{tenant}:cost`` weighted by the tool's declared cost
    """

    def __init__(
        self,
        store: QuotaStore,
        registry: CapabilityRegistry | None = None,
        tenant_policy: RateLimitPolicy | None = None,
        tier_policies: dict[RateLimitTier, RateLimitPolicy] | None = None,
        cost_budget_policy: RateLimitPolicy | None = None,
        key_prefix: str = "mcp:ratelimit",
        fail_open: bool = True,
        enabled: bool = True,
        algorithms: dict[RateLimitAlgorithmType, RateLimitAlgorithm] | None = None,
    ) -> None:
        """
        Initialize rate limiter.

        Args:
            store: Quota store performing atomic increments
            registry: Capability registry used to look up tool tiers and costs
            tenant_policy: Default per-tenant, per-method policy
            tier_policies: Extra policies for tool tiers (LOW has none by default)
            cost_budget_policy: Per-tenant cost budget (None disables it)
            key_prefix: Prefix for all quota keys
            fail_open: Allow calls when the store raises
            enabled: Master switch
            algorithms: Algorithm instances, mainly to inject a clock in tests
        """
        self.store = store
        self.registry = registry
        self.tenant_policy = tenant_policy or RateLimitPolicy(limit=100, window_seconds=60)
        self.tier_policies = tier_policies or {}
        self.cost_budget_policy = cost_budget_policy
        self.key_prefix = key_prefix
        self.fail_open = fail_open
        self.enabled = enabled

        self._tenant_overrides: dict[str, RateLimitPolicy] = {}
        self._algorithms: dict[RateLimitAlgorithmType, RateLimitAlgorithm] = algorithms or {
            RateLimitAlgorithmType.FIXED_WINDOW: FixedWindowCounter(),
            RateLimitAlgorithmType.SLIDING_WINDOW: SlidingWindowCounter(),
        }

    @classmethod
    def from_settings(
        cls,
        settings: GatewaySettings,
        store: QuotaStore,
        registry: CapabilityRegistry | None = None,
    ) -> RateLimiter:
        """Build a limiter from gateway settings."""
        algorithm = RateLimitAlgorithmType(settings.RATE_LIMIT_ALGORITHM)
        window = settings.RATE_LIMIT_WINDOW_SECONDS

        cost_budget = None
        if settings.RATE_LIMIT_COST_BUDGET > 0:
            cost_budget = RateLimitPolicy(
                limit=settings.RATE_LIMIT_COST_BUDGET,
                window_seconds=COST_BUDGET_WINDOW_SECONDS,
                algorithm=algorithm,
            )

        return cls(
            store=store,
            registry=registry,
            tenant_policy=RateLimitPolicy(
                limit=settings.RATE_LIMIT_TENANT_LIMIT,
                window_seconds=window,
                algorithm=algorithm,
            ),
            tier_policies={
                RateLimitTier.MEDIUM: RateLimitPolicy(
                    limit=settings.RATE_LIMIT_MEDIUM_TIER_LIMIT,
                    window_seconds=window,
                    algorithm=algorithm,
                ),
                RateLimitTier.HIGH: RateLimitPolicy(
                    limit=settings.RATE_LIMIT_HIGH_TIER_LIMIT,
                    window_seconds=window,
                    algorithm=algorithm,
                ),
            },
            cost_budget_policy=cost_budget,
            key_prefix=settings.RATE_LIMIT_KEY_PREFIX,
            fail_open=settings.RATE_LIMIT_FAIL_OPEN,
            enabled=settings.RATE_LIMIT_ENABLED,
        )

    @staticmethod
    def is_exempt(method: str) -> bool:
        return method in RATE_LIMIT_EXEMPT_METHODS

    def set_tenant_policy(self, tenant_id: str, policy: RateLimitPolicy | None) -> None:
        """Override (or with None, reset) the tenant policy for one tenant."""
        if policy is None:
            self._tenant_overrides.pop(tenant_id, None)
        else:
            self._tenant_overrides[tenant_id] = policy
        logger.info(
            "Tenant rate limit policy updated",
            tenant_id=tenant_id,
            limit=policy.limit if policy else None,
        )

    def policy_for(self, tenant_id: str) -> RateLimitPolicy:
        return self._tenant_overrides.get(tenant_id, self.tenant_policy)

    def _key(self, tenant_id: str, *parts: str) -> str:
        return ":".join((self.key_prefix, tenant_id, *parts))

    def _checks(
        self, tenant_id: str, method: str, tool_name: str | None
    ) -> list[tuple[RateLimitScope, str, RateLimitPolicy, int, str]]:
        """Counters a call draws from, in evaluation order."""
        tenant_policy = self.policy_for(tenant_id)
        tier = RateLimitTier.LOW
        cost = 1
        if tool_name and method == TOOL_CALL_METHOD and self.registry is not None:
            tier = self.registry.tool_tier(tool_name) or RateLimitTier.LOW
            cost = self.registry.tool_cost(tool_name)

        checks = [
            (RateLimitScope.TENANT, self._key(tenant_id, method), tenant_policy, 1, tier.value)
        ]

        if tool_name and method == TOOL_CALL_METHOD:
            tier_policy = self.tier_policies.get(tier)
            if tier_policy is not None and tier_policy.enabled:
                # A tier can only tighten the tenant allowance
                tier_policy = RateLimitPolicy(
                    limit=min(tier_policy.limit, tenant_policy.limit),
                    window_seconds=tier_policy.window_seconds,
                    algorithm=tier_policy.algorithm,
                )
                checks.append(
                    (
                        RateLimitScope.TOOL_TIER,
                        self._key(tenant_id, method, tool_name),
                        tier_policy,
                        1,
                        tier.value,
                    )
                )

            if self.cost_budget_policy is not None and self.cost_budget_policy.enabled:
                checks.append(
                    (
                        RateLimitScope.COST_BUDGET,
                        self._key(tenant_id, "cost"),
                        self.cost_budget_policy,
                        cost,
                        tier.value,
                    )
                )

        return checks

    async def check(
        self, tenant_id: str, method: str, tool_name: str | None = None
    ) -> RateLimitResult | None:
        """
        Consume quota for one call.

        Args:
            tenant_id: Authenticated tenant
            method: JSON-RPC method name
            tool_name: Tool name for ``tools/call``

        Returns:
            None for exempt methods, otherwise the most restrictive result.
            Evaluation stops at the first rejecting counter.
        """
        if self.is_exempt(method) or not self.enabled:
            return None

        tightest: RateLimitResult | None = None

        for scope, key, policy, cost, tier in self._checks(tenant_id, method, tool_name):
            if not policy.enabled:
                continue

            result = await self._consume(scope, key, policy, cost, tier)

            if not result.allowed:
                RATE_LIMIT_REJECTIONS.labels(scope=scope.value).inc()
                logger.warning(
                    "Rate limit exceeded",
                    tenant_id=tenant_id,
                    method=method,
                    tool=tool_name,
                    scope=scope.value,
                    limit=result.limit,
                    retry_after=result.retry_after,
                )
                return result

            if tightest is None or result.remaining < tightest.remaining:
                tightest = result

        return tightest

    async def enforce(
        self, tenant_id: str, method: str, tool_name: str | None = None
    ) -> RateLimitResult | None:
        """
        Like ``check`` but raises on rejection.

        Raises:
            RateLimitExceededError: If any counter rejects the call
        """
        result = await self.check(tenant_id, method, tool_name)
        if result is not None and not result.allowed:
            raise RateLimitExceededError(result)
        return result

    async def _consume(
        self,
        scope: RateLimitScope,
        key: str,
        policy: RateLimitPolicy,
        cost: int,
        tier: str,
    ) -> RateLimitResult:
        algorithm = self._algorithms[policy.algorithm]

        try:
            allowed, metadata = await algorithm.is_allowed(
                key=key,
                limit=policy.limit,
                window_seconds=policy.window_seconds,
                store=self.store,
                cost=cost,
            )
        except Exception as e:
            RATE_LIMIT_STORE_ERRORS.inc()
            logger.error(
                "Rate limit check failed",
                error=str(e),
                scope=scope.value,
                key=key,
                fail_open=self.fail_open,
            )
            reset_at = int(time.time()) + policy.window_seconds
            return RateLimitResult(
                allowed=self.fail_open,
                limit=policy.limit,
                remaining=policy.limit if self.fail_open else 0,
                reset_at=reset_at,
                retry_after=0 if self.fail_open else policy.window_seconds,
                tier=tier,
                scope=scope,
                key=key,
            )

        return RateLimitResult(
            allowed=allowed,
            limit=policy.limit,
            remaining=metadata["remaining"],
            reset_at=metadata["reset_at"],
            retry_after=metadata["retry_after"],
            tier=tier,
            scope=scope,
            key=key,
        )

    async def get_status(
        self, tenant_id: str, method: str, tool_name: str | None = None
    ) -> list[dict[str, Any]]:
        """Current usage for every counter a call would draw from, without consuming."""
        if self.is_exempt(method):
            return []

        status = []
        for scope, key, policy, _, tier in self._checks(tenant_id, method, tool_name):
            algorithm = self._algorithms[policy.algorithm]
            metadata = await algorithm.peek(key, policy.limit, policy.window_seconds, self.store)
            status.append({"scope": scope.value, "tier": tier, "key": key, **metadata})
        return status

    async def reset(self, tenant_id: str, method: str, tool_name: str | None = None) -> None:
        """Clear the current window of every counter a call draws from."""
        for _, key, policy, _, _ in self._checks(tenant_id, method, tool_name):
            window_start = int(time.time() // policy.window_seconds) * policy.window_seconds
            await self.store.delete(f"{key}:{window_start}")
        logger.info("Rate limit reset", tenant_id=tenant_id, method=method, tool=tool_name)

    def get_config(self) -> dict[str, Any]:
        """Describe the active policies, as published in the manifest."""
        return {
            "enabled": self.enabled,
            "exemptMethods": sorted(RATE_LIMIT_EXEMPT_METHODS),
            "tenant": {
                "limit": self.tenant_policy.limit,
                "windowSeconds": self.tenant_policy.window_seconds,
                "algorithm": self.tenant_policy.algorithm.value,
            },
            "tiers": {
                tier.value: {"limit": policy.limit, "windowSeconds": policy.window_seconds}
                for tier, policy in sorted(self.tier_policies.items(), key=lambda item: item[0].value)
            },
            "costBudget": (
                {
                    "limit": self.cost_budget_policy.limit,
                    "windowSeconds": self.cost_budget_policy.window_seconds,
                }
                if self.cost_budget_policy
                else None
            ),
        }
