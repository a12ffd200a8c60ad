"""
Protocol Module

JSON-RPC envelopes, error taxonomy, streaming chunks and the dispatcher.
"""

from __future__ import annotations

from mcp_gateway.protocol.context import CallContext
from mcp_gateway.protocol.dispatcher import (
    SESSION_SETUP_METHODS,
    McpMethod,
    ProtocolDispatcher,
    StreamingExecution,
    parse_envelope,
)
from mcp_gateway.protocol.errors import (
    AuthenticationRequiredError,
    AuthorizationFailedError,
    GatewayError,
    InternalError,
    InvalidParamsError,
    InvalidRequestError,
    MethodNotFoundError,
    ParseError,
    ProtocolVersionUnsupportedError,
    RateLimitExceededError,
    ResourceNotFoundError,
    SessionNotFoundError,
    ToolExecutionError,
    status_for_code,
    status_for_response,
    to_gateway_error,
)
from mcp_gateway.protocol.models import (
    JsonRpcError,
    JsonRpcErrorCode,
    JsonRpcRequest,
    JsonRpcResponse,
    create_error_response,
    create_success_response,
)

__all__ = [
    "SESSION_SETUP_METHODS",
    "AuthenticationRequiredError",
    "AuthorizationFailedError",
    "CallContext",
    "GatewayError",
    "InternalError",
    "InvalidParamsError",
    "InvalidRequestError",
    "JsonRpcError",
    "JsonRpcErrorCode",
    "JsonRpcRequest",
    "JsonRpcResponse",
    "McpMethod",
    "MethodNotFoundError",
    "ParseError",
    "ProtocolDispatcher",
    "ProtocolVersionUnsupportedError",
    "RateLimitExceededError",
    "ResourceNotFoundError",
    "SessionNotFoundError",
    "StreamingExecution",
    "ToolExecutionError",
    "create_error_response",
    "create_success_response",
    "parse_envelope",
    "status_for_code",
    "status_for_response",
    "to_gateway_error",
]
