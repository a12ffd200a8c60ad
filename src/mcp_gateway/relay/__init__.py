"""
Relay Store Module

Cross-connection message hand-off for session-bridge streams.
"""

from __future__ import annotations

from mcp_gateway.relay.store import InMemoryRelayStore, RedisRelayStore, RelayStore

__all__ = ["InMemoryRelayStore", "RedisRelayStore", "RelayStore"]
