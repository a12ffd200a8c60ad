"""
Built-in Capabilities

Gateway-level tools, resources and prompts available to every tenant.
"""

from __future__ import annotations

from mcp_gateway.capabilities.builtin import register_builtin_capabilities

__all__ = ["register_builtin_capabilities"]
