"""
Built-in Capabilities

Tenant-agnostic tools, resources and prompts registered on every gateway.
Domain capabilities are registered by the embedding application through the
same registry decorators.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from datetime import UTC, datetime
from typing import Any

from mcp_gateway.protocol.context import CallContext
from mcp_gateway.protocol.errors import InvalidParamsError
from mcp_gateway.protocol.streaming import batch_process
from mcp_gateway.registry.capabilities import (
    CapabilityArgument,
    CapabilityKind,
    CapabilityRegistry,
    RateLimitTier,
    ToolAnnotations,
)

ITEM_OPERATIONS = ("upper", "lower", "length", "reverse")
MAX_BATCH_ITEMS = 1000


def _apply(operation: str, item: Any) -> Any:
    text = str(item)
    if operation == "upper":
        return text.upper()
    if operation == "lower":
        return text.lower()
    if operation == "length":
        return {"item": text, "length": len(text)}
    return text[::-1]


def register_builtin_capabilities(registry: CapabilityRegistry) -> CapabilityRegistry:
    """Register the built-in capabilities on ``registry`` and return it."""

    @registry.tool(
        input_schema={
            "type": "object",
            "properties": {"message": {"type": "string", "description": "Text to echo back"}},
            "required": ["message"],
        },
        annotations=ToolAnnotations(read_only=True, idempotent=True),
        category="system",
    )
    async def echo(arguments: dict[str, Any], context: CallContext) -> str:
        """Echo a message back to the caller."""
        return str(arguments["message"])

    @registry.tool(
        annotations=ToolAnnotations(read_only=True, idempotent=True),
        category="system",
    )
    async def whoami(arguments: dict[str, Any], context: CallContext) -> dict[str, Any]:
        """Describe the authenticated caller."""
        return {
            "tenantId": context.tenant_id,
            "userId": context.user_id,
            "scopes": sorted(context.scopes),
            "sessionId": context.session_id,
        }

    @registry.tool(
        input_schema={
            "type": "object",
            "properties": {
                "items": {"type": "array", "description": "Values to transform"},
                "operation": {"type": "string", "enum": list(ITEM_OPERATIONS)},
                "batchSize": {"type": "integer", "minimum": 1, "default": 10},
            },
            "required": ["items", "operation"],
        },
        annotations=ToolAnnotations(
            read_only=True,
            idempotent=True,
            rate_limit_tier=RateLimitTier.MEDIUM,
            cost=5,
        ),
        category="data",
    )
    async def transform_items(arguments: dict[str, Any], context: CallContext) -> AsyncIterator[dict[str, Any]]:
        """Transform a list of values in batches, streaming progress as it goes."""
        items = arguments["items"]
        operation = arguments["operation"]
        if not isinstance(items, list):
            raise InvalidParamsError("items must be an array")
        if len(items) > MAX_BATCH_ITEMS:
            raise InvalidParamsError(f"At most {MAX_BATCH_ITEMS} items per call")
        if operation not in ITEM_OPERATIONS:
            raise InvalidParamsError(f"Unknown operation: {operation}", data={"allowed": list(ITEM_OPERATIONS)})

        batch_size = max(1, int(arguments.get("batchSize", 10)))

        async def process(item: Any, index: int) -> Any:
            return _apply(operation, item)

        async for chunk in batch_process(items, process, batch_size=batch_size):
            yield chunk

    @registry.resource(
        uri="gateway://capabilities",
        name="capabilities",
        mime_type="application/json",
    )
    async def capability_index(arguments: dict[str, Any], context: CallContext) -> dict[str, Any]:
        """Index of every capability registered on this gateway."""
        return {
            "generatedAt": datetime.now(UTC).isoformat(),
            "tools": [tool.name for tool in registry.list(CapabilityKind.TOOL)],
            "resources": [resource.uri for resource in registry.list(CapabilityKind.RESOURCE)],
            "prompts": [prompt.name for prompt in registry.list(CapabilityKind.PROMPT)],
        }

    @registry.prompt(
        arguments=[
            CapabilityArgument(name="topic", description="Subject to analyze", required=True),
            CapabilityArgument(name="period", description="Time period, e.g. 'last 30 days'"),
        ],
    )
    async def analyze(arguments: dict[str, Any], context: CallContext) -> list[dict[str, Any]]:
        """Ask for an analysis of a topic over a time period."""
        period = arguments.get("period") or "the last 30 days"
        text = (
            f"Analyze {arguments['topic']} for {period}. "
            "Summarize the main trends, call out anomalies and suggest next steps."
        )
        return [{"role": "user", "content": {"type": "text", "text": text}}]

    return registry
