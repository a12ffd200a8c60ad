"""
JSON-RPC Envelope Models

Wire-level request and response envelopes for the gateway protocol.
The canonical version key is ``version``; ``jsonrpc`` is accepted on input.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

PROTOCOL_ENVELOPE_VERSION = "2.0"

RequestId = str | int | None


class JsonRpcErrorCode(int, Enum):
    """Wire error codes."""

    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603

    # Gateway specific errors (server error range)
    AUTHENTICATION_REQUIRED = -32001
    RESOURCE_NOT_FOUND = -32002
    AUTHORIZATION_FAILED = -32003
    PROTOCOL_VERSION_UNSUPPORTED = -32004
    TOOL_EXECUTION_ERROR = -32005
    RATE_LIMITED = -32006
    SESSION_NOT_FOUND = -32007


DEFAULT_ERROR_MESSAGES: dict[JsonRpcErrorCode, str] = {
    JsonRpcErrorCode.PARSE_ERROR: "Parse error",
    JsonRpcErrorCode.INVALID_REQUEST: "Invalid Request",
    JsonRpcErrorCode.METHOD_NOT_FOUND: "Method not found",
    JsonRpcErrorCode.INVALID_PARAMS: "Invalid params",
    JsonRpcErrorCode.INTERNAL_ERROR: "Internal error",
    JsonRpcErrorCode.AUTHENTICATION_REQUIRED: "Authentication required",
    JsonRpcErrorCode.RESOURCE_NOT_FOUND: "Resource not found",
    JsonRpcErrorCode.AUTHORIZATION_FAILED: "Authorization failed",
    JsonRpcErrorCode.PROTOCOL_VERSION_UNSUPPORTED: "Unsupported protocol version",
    JsonRpcErrorCode.TOOL_EXECUTION_ERROR: "Tool execution failed",
    JsonRpcErrorCode.RATE_LIMITED: "Rate limit exceeded",
    JsonRpcErrorCode.SESSION_NOT_FOUND: "Session not found",
}


class JsonRpcError(BaseModel):
    """Error object carried by an error response."""

    code: int = Field(..., description="Error code")
    message: str = Field(..., description="Error message")
    data: dict[str, Any] | None = Field(None, description="Additional error data")


class JsonRpcRequest(BaseModel):
    """Request envelope. An envelope without ``id`` is a notification."""

    model_config = ConfigDict(extra="ignore")

    version: Literal["2.0"] = Field(
        ...,
        validation_alias=AliasChoices("version", "jsonrpc"),
        description="Envelope version",
    )
    method: str = Field(..., description="Method name to invoke")
    params: dict[str, Any] = Field(default_factory=dict, description="Method parameters")
    id: RequestId = Field(None, description="Request identifier (absent for notifications)")

    @field_validator("method")
    @classmethod
    def validate_method(cls, v: str) -> str:
        """Method must be a non-empty string."""
        if not v:
            raise ValueError("Method name must be a non-empty string")
        return v

    @field_validator("params", mode="before")
    @classmethod
    def default_params(cls, v: Any) -> Any:
        return {} if v is None else v

    @property
    def is_notification(self) -> bool:
        """Check if this is a notification (no response expected)."""
        return "id" not in self.model_fields_set


class JsonRpcResponse(BaseModel):
    """Response envelope with exactly one of ``result`` or ``error``."""

    version: str = Field(default=PROTOCOL_ENVELOPE_VERSION, description="Envelope version")
    id: RequestId = Field(..., description="Request identifier")
    result: Any | None = Field(None, description="Method result (present on success)")
    error: JsonRpcError | None = Field(None, description="Error object (present on error)")

    def model_post_init(self, __context: Any) -> None:
        """Validate that either result or error is present, but not both."""
        if self.result is not None and self.error is not None:
            raise ValueError("Response cannot have both result and error")
        if self.result is None and self.error is None:
            raise ValueError("Response must have either result or error")

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def to_wire(self) -> dict[str, Any]:
        """Serialize to the wire shape. ``id`` is always present, even when null."""
        payload: dict[str, Any] = {"version": self.version, "id": self.id}
        if self.error is not None:
            payload["error"] = self.error.model_dump(exclude_none=True)
        else:
            payload["result"] = self.result
        return payload


def create_error_response(
    request_id: RequestId,
    error_code: JsonRpcErrorCode,
    message: str | None = None,
    data: dict[str, Any] | None = None,
) -> JsonRpcResponse:
    """Create an error response envelope."""
    return JsonRpcResponse(
        id=request_id,
        error=JsonRpcError(
            code=error_code.value,
            message=message or DEFAULT_ERROR_MESSAGES.get(error_code, "Server error"),
            data=data,
        ),
    )


def create_success_response(request_id: RequestId, result: Any) -> JsonRpcResponse:
    """Create a success response envelope."""
    return JsonRpcResponse(id=request_id, result=result)
