"""
Gateway Errors

Error taxonomy for the gateway and its mapping to wire codes and HTTP status.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from mcp_gateway.protocol.models import (
    DEFAULT_ERROR_MESSAGES,
    JsonRpcError,
    JsonRpcErrorCode,
    JsonRpcResponse,
    RequestId,
)

if TYPE_CHECKING:
    from mcp_gateway.ratelimit.limiter import RateLimitResult


class GatewayError(Exception):
    """Base class for errors that are reported to clients as error envelopes."""

    code: JsonRpcErrorCode = JsonRpcErrorCode.INTERNAL_ERROR
    http_status: int = 500

    def __init__(self, message: str | None = None, data: dict[str, Any] | None = None) -> None:
        self.message = message or DEFAULT_ERROR_MESSAGES.get(self.code, "Server error")
        self.data = data
        super().__init__(self.message)

    def to_error(self) -> JsonRpcError:
        return JsonRpcError(code=self.code.value, message=self.message, data=self.data)

    def to_response(self, request_id: RequestId) -> JsonRpcResponse:
        return JsonRpcResponse(id=request_id, error=self.to_error())


class ParseError(GatewayError):
    code = JsonRpcErrorCode.PARSE_ERROR
    http_status = 400


class InvalidRequestError(GatewayError):
    code = JsonRpcErrorCode.INVALID_REQUEST
    http_status = 400


class MethodNotFoundError(GatewayError):
    code = JsonRpcErrorCode.METHOD_NOT_FOUND
    http_status = 404


class InvalidParamsError(GatewayError):
    code = JsonRpcErrorCode.INVALID_PARAMS
    http_status = 400


class InternalError(GatewayError):
    code = JsonRpcErrorCode.INTERNAL_ERROR
    http_status = 500


class AuthenticationRequiredError(GatewayError):
    code = JsonRpcErrorCode.AUTHENTICATION_REQUIRED
    http_status = 401


class AuthorizationFailedError(GatewayError):
    code = JsonRpcErrorCode.AUTHORIZATION_FAILED
    http_status = 403


class ResourceNotFoundError(GatewayError):
    code = JsonRpcErrorCode.RESOURCE_NOT_FOUND
    http_status = 404


class ProtocolVersionUnsupportedError(GatewayError):
    code = JsonRpcErrorCode.PROTOCOL_VERSION_UNSUPPORTED
    http_status = 400


class ToolExecutionError(GatewayError):
    """Raised by tool handlers to report a failure with a client-facing message."""

    code = JsonRpcErrorCode.TOOL_EXECUTION_ERROR
    http_status = 500


class SessionNotFoundError(GatewayError):
    code = JsonRpcErrorCode.SESSION_NOT_FOUND
    http_status = 404


class RateLimitExceededError(GatewayError):
    """Quota rejection. Carries the limiter result so callers can emit headers."""

    code = JsonRpcErrorCode.RATE_LIMITED
    http_status = 429

    def __init__(self, result: RateLimitResult) -> None:
        self.result = result
        super().__init__(
            f"Rate limit exceeded. Retry after {result.retry_after} seconds.",
            data={
                "limit": result.limit,
                "remaining": result.remaining,
                "resetAt": result.reset_at,
                "retryAfter": result.retry_after,
                "tier": result.tier,
            },
        )


_STATUS_BY_CODE: dict[int, int] = {
    cls.code.value: cls.http_status
    for cls in (
        ParseError,
        InvalidRequestError,
        MethodNotFoundError,
        InvalidParamsError,
        InternalError,
        AuthenticationRequiredError,
        AuthorizationFailedError,
        ResourceNotFoundError,
        ProtocolVersionUnsupportedError,
        ToolExecutionError,
        SessionNotFoundError,
        RateLimitExceededError,
    )
}


def status_for_code(code: int) -> int:
    """Map a wire error code to an HTTP status. Unknown codes map to 500."""
    return _STATUS_BY_CODE.get(code, 500)


def status_for_response(response: JsonRpcResponse) -> int:
    """HTTP status to use when an envelope is written directly to the caller."""
    if response.error is None:
        return 200
    return status_for_code(response.error.code)


def to_gateway_error(exc: BaseException) -> GatewayError:
    """
    Normalize any exception into a GatewayError.

    Unknown exceptions become INTERNAL_ERROR carrying only the exception's
    message string.
    """
    if isinstance(exc, GatewayError):
        return exc
    return InternalError(str(exc) or type(exc).__name__)
