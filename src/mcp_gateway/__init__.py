"""
MCP Gateway

Protocol gateway exposing tools, resources and prompts to agent clients over
JSON-RPC. Serves a direct request/response transport and an SSE session-bridge
transport from one dispatch core, with per-tenant quota and authentication
enforced before any handler runs.
"""

__version__ = "0.1.0"
