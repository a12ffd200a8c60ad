"""
Capability Registry Module

Tool, resource and prompt definitions exposed through the gateway.
"""

from __future__ import annotations

from mcp_gateway.registry.capabilities import (
    CapabilityArgument,
    CapabilityKind,
    CapabilityNotFoundError,
    CapabilityRegistry,
    PromptDefinition,
    RateLimitTier,
    ResourceDefinition,
    ToolAnnotations,
    ToolDefinition,
    validate_arguments,
)

__all__ = [
    "CapabilityArgument",
    "CapabilityKind",
    "CapabilityNotFoundError",
    "CapabilityRegistry",
    "PromptDefinition",
    "RateLimitTier",
    "ResourceDefinition",
    "ToolAnnotations",
    "ToolDefinition",
    "validate_arguments",
]
