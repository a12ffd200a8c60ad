"""
Protocol Dispatcher

Parses request envelopes and routes them over a fixed method table to built-in
session methods or to the Capability Registry. Produces a response envelope, a
streaming execution for streaming tools, or nothing for notifications.
"""

from __future__ import annotations

import inspect
import json
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import replace
from enum import Enum
from typing import Any

import structlog
from pydantic import ValidationError

from mcp_gateway.monitoring.metrics import RPC_REQUESTS, TOOL_CALL_DURATION
from mcp_gateway.protocol.context import CallContext
from mcp_gateway.protocol.errors import (
    AuthorizationFailedError,
    GatewayError,
    InvalidParamsError,
    InvalidRequestError,
    MethodNotFoundError,
    ParseError,
    ProtocolVersionUnsupportedError,
    ResourceNotFoundError,
    to_gateway_error,
)
from mcp_gateway.protocol.models import (
    JsonRpcRequest,
    JsonRpcResponse,
    RequestId,
    create_success_response,
)
from mcp_gateway.protocol.streaming import (
    TERMINAL_CHUNK_TYPES,
    aggregate_streaming_result,
    complete_chunk,
    error_chunk,
    normalize_chunk,
    to_tool_result,
)
from mcp_gateway.registry.capabilities import (
    CapabilityDefinition,
    CapabilityKind,
    CapabilityNotFoundError,
    CapabilityRegistry,
    validate_arguments,
)

logger = structlog.get_logger()


class McpMethod(str, Enum):
    """The complete, case-sensitive method table."""

    INITIALIZE = "initialize"
    INITIALIZED = "initialized"
    NOTIFICATIONS_INITIALIZED = "notifications/initialized"
    PING = "ping"
    TOOLS_LIST = "tools/list"
    TOOLS_CALL = "tools/call"
    RESOURCES_LIST = "resources/list"
    RESOURCES_READ = "resources/read"
    PROMPTS_LIST = "prompts/list"
    PROMPTS_GET = "prompts/get"


# Methods a bridged session accepts before initialize has succeeded
SESSION_SETUP_METHODS: frozenset[str] = frozenset(
    {
        McpMethod.INITIALIZE.value,
        McpMethod.INITIALIZED.value,
        McpMethod.NOTIFICATIONS_INITIALIZED.value,
        McpMethod.PING.value,
    }
)

DEFAULT_SERVER_CAPABILITIES: dict[str, Any] = {
    "tools": {"listChanged": False},
    "resources": {"subscribe": False, "listChanged": False},
    "prompts": {"listChanged": False},
}


def parse_envelope(raw: bytes | str) -> JsonRpcRequest:
    """
    Parse and validate a raw request body.

    Raises:
        ParseError: Body is not valid JSON
        InvalidRequestError: Body is JSON but not a valid request envelope
    """
    try:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        data = json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.warning("JSON parse error", error=str(e))
        raise ParseError(data={"details": str(e)}) from e

    if isinstance(data, list):
        raise InvalidRequestError("Batch requests are not supported")
    if not isinstance(data, dict):
        raise InvalidRequestError("Request must be a JSON object")

    try:
        return JsonRpcRequest.model_validate(data)
    except ValidationError as e:
        details = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'envelope'}: {err['msg']}"
            for err in e.errors()
        )
        raise InvalidRequestError(data={"details": details}) from e


async def _invoke(handler: Callable[..., Any], arguments: dict[str, Any], context: CallContext) -> Any:
    """Call a handler that may be sync, async, or return an async iterator."""
    result = handler(arguments, context)
    if inspect.isawaitable(result):
        result = await result
    return result


class StreamingExecution:
    """
    Lazy chunk sequence of one streaming tool call.

    Iterating pulls the next item from the handler, so the first chunk is
    available before the handler has produced its last one. The sequence ends
    with exactly one terminal chunk: the first ``complete`` or ``error`` the
    handler yields, an ``error`` chunk for a handler failure, or a ``complete``
    chunk built from the partial content when the handler just returns.
    """

    def __init__(self, request_id: RequestId, tool_name: str, source: AsyncIterator[Any]) -> None:
        self.request_id = request_id
        self.tool_name = tool_name
        self._source = source
        self._consumed = False

    async def chunks(self) -> AsyncIterator[dict[str, Any]]:
        if self._consumed:
            raise RuntimeError("Streaming execution can only be consumed once")
        self._consumed = True

        start_time = time.time()
        index = 0
        terminated = False
        partial_contents: list[dict[str, Any]] = []
        try:
            async for item in self._source:
                chunk = normalize_chunk(item, index)
                if chunk["type"] == "partial":
                    partial_contents.extend(chunk.get("content", []))
                yield chunk
                index += 1
                if chunk["type"] in TERMINAL_CHUNK_TYPES:
                    terminated = True
                    break

            if not terminated:
                yield complete_chunk({"content": partial_contents, "isError": False})
        except Exception as e:
            error = to_gateway_error(e)
            logger.error(
                "Streaming tool failed",
                tool=self.tool_name,
                request_id=self.request_id,
                chunks_sent=index,
                error=str(e),
            )
            yield error_chunk(error.code.value, error.message, error.data)
        finally:
            aclose = getattr(self._source, "aclose", None)
            if aclose is not None:
                await aclose()
            TOOL_CALL_DURATION.labels(tool=self.tool_name, streaming="true").observe(
                time.time() - start_time
            )

    async def envelopes(self) -> AsyncIterator[JsonRpcResponse]:
        """One success envelope per chunk, all carrying the request id."""
        async for chunk in self.chunks():
            yield create_success_response(self.request_id, chunk)

    async def aggregate(self) -> dict[str, Any]:
        """Collect the whole sequence into one tool result."""
        return await aggregate_streaming_result(self.chunks())


DispatchResult = JsonRpcResponse | StreamingExecution | None


class ProtocolDispatcher:
    """
    Stateless dispatcher over a fixed method table.

    Session ordering (initialize first) is enforced by the transport, not here.
    """

    def __init__(
        self,
        registry: CapabilityRegistry,
        server_name: str = "mcp-gateway",
        server_version: str = "0.1.0",
        supported_protocol_versions: list[str] | None = None,
        instructions: str | None = None,
        capabilities: dict[str, Any] | None = None,
    ) -> None:
        """
        Initialize the dispatcher.

        Args:
            registry: Capability registry resolving tools, resources and prompts
            server_name: Name reported in ``serverInfo``
            server_version: Version reported in ``serverInfo``
            supported_protocol_versions: Negotiable versions, newest first
            instructions: Free-text instructions returned by ``initialize``
            capabilities: Server capability summary
        """
        self.registry = registry
        self.server_name = server_name
        self.server_version = server_version
        self.supported_protocol_versions = supported_protocol_versions or ["2025-03-26"]
        self.instructions = instructions
        self.capabilities = capabilities or DEFAULT_SERVER_CAPABILITIES

        self._methods: dict[
            McpMethod, Callable[[JsonRpcRequest, CallContext], Awaitable[Any]]
        ] = {
            McpMethod.INITIALIZE: self._initialize,
            McpMethod.INITIALIZED: self._initialized,
            McpMethod.NOTIFICATIONS_INITIALIZED: self._initialized,
            McpMethod.PING: self._ping,
            McpMethod.TOOLS_LIST: self._tools_list,
            McpMethod.TOOLS_CALL: self._tools_call,
            McpMethod.RESOURCES_LIST: self._resources_list,
            McpMethod.RESOURCES_READ: self._resources_read,
            McpMethod.PROMPTS_LIST: self._prompts_list,
            McpMethod.PROMPTS_GET: self._prompts_get,
        }

    @property
    def latest_protocol_version(self) -> str:
        return self.supported_protocol_versions[0]

    async def dispatch(self, request: JsonRpcRequest, context: CallContext) -> DispatchResult:
        """
        Dispatch one request.

        Never raises: every failure becomes an error envelope that echoes the
        request id (or None for notifications).
        """
        context = replace(context, request_id=request.id)

        logger.info(
            "Processing JSON-RPC request",
            method=request.method,
            request_id=request.id,
            is_notification=request.is_notification,
            tenant_id=context.tenant_id,
            session_id=context.session_id,
        )

        try:
            try:
                method = McpMethod(request.method)
            except ValueError:
                raise MethodNotFoundError(f"Method not found: {request.method}") from None

            result = await self._methods[method](request, context)

        except Exception as e:
            error = to_gateway_error(e)
            if isinstance(e, GatewayError):
                logger.info(
                    "JSON-RPC request rejected",
                    method=request.method,
                    request_id=request.id,
                    code=error.code.value,
                    error=error.message,
                )
            else:
                logger.error(
                    "Handler raised an unexpected error",
                    method=request.method,
                    request_id=request.id,
                    error=str(e),
                    exc_info=True,
                )
            RPC_REQUESTS.labels(method=self._metric_label(request.method), outcome="error").inc()
            if request.is_notification:
                return None
            return error.to_response(request.id)

        RPC_REQUESTS.labels(method=self._metric_label(request.method), outcome="success").inc()

        if isinstance(result, StreamingExecution):
            return result
        if request.is_notification:
            return None
        return create_success_response(request.id, result)

    @staticmethod
    def _metric_label(method: str) -> str:
        try:
            return McpMethod(method).value
        except ValueError:
            return "unknown"

    # Built-in session methods

    async def _initialize(self, request: JsonRpcRequest, context: CallContext) -> dict[str, Any]:
        requested = request.params.get("protocolVersion")
        if requested is None:
            version = self.latest_protocol_version
        elif requested in self.supported_protocol_versions:
            version = requested
        else:
            raise ProtocolVersionUnsupportedError(
                f"Unsupported protocol version: {requested}",
                data={"requested": requested, "supported": self.supported_protocol_versions},
            )

        client_info = request.params.get("clientInfo") or {}
        logger.info(
            "Session initialized",
            protocol_version=version,
            client_name=client_info.get("name"),
            client_version=client_info.get("version"),
            tenant_id=context.tenant_id,
        )

        result: dict[str, Any] = {
            "protocolVersion": version,
            "capabilities": self.capabilities,
            "serverInfo": {"name": self.server_name, "version": self.server_version},
        }
        if self.instructions:
            result["instructions"] = self.instructions
        return result

    async def _initialized(self, request: JsonRpcRequest, context: CallContext) -> dict[str, Any]:
        return {}

    async def _ping(self, request: JsonRpcRequest, context: CallContext) -> dict[str, Any]:
        return {"status": "ok"}

    # Registry-backed methods

    def _require_scopes(self, definition: CapabilityDefinition, context: CallContext) -> None:
        if definition.required_scopes and not context.has_scopes(definition.required_scopes):
            missing = sorted(definition.required_scopes - context.scopes)
            raise AuthorizationFailedError(
                f"Missing required scope for {definition.key}",
                data={"required": sorted(definition.required_scopes), "missing": missing},
            )

    @staticmethod
    def _arguments(params: dict[str, Any], field: str = "arguments") -> dict[str, Any]:
        arguments = params.get(field)
        if arguments is None:
            return {}
        if not isinstance(arguments, dict):
            raise InvalidParamsError(f"'{field}' must be an object")
        return arguments

    @staticmethod
    def _required_string(params: dict[str, Any], field: str) -> str:
        value = params.get(field)
        if not isinstance(value, str) or not value:
            raise InvalidParamsError(f"'{field}' is required")
        return value

    async def _tools_list(self, request: JsonRpcRequest, context: CallContext) -> dict[str, Any]:
        return {"tools": [tool.to_listing() for tool in self.registry.list(CapabilityKind.TOOL)]}

    async def _tools_call(self, request: JsonRpcRequest, context: CallContext) -> Any:
        name = self._required_string(request.params, "name")
        arguments = self._arguments(request.params)

        try:
            tool = self.registry.resolve(CapabilityKind.TOOL, name)
        except CapabilityNotFoundError:
            raise InvalidParamsError(f"Unknown tool: {name}", data={"tool": name}) from None

        self._require_scopes(tool, context)
        validate_arguments(tool, arguments)

        if tool.streaming:
            source = await _invoke(tool.handler, arguments, context)
            if not hasattr(source, "__aiter__"):
                raise TypeError(f"Streaming tool {name} did not return an async iterator")
            execution = StreamingExecution(request.id, name, source)
            if context.supports_streaming and not request.is_notification:
                return execution
            return await execution.aggregate()

        start_time = time.time()
        try:
            value = await _invoke(tool.handler, arguments, context)
        finally:
            TOOL_CALL_DURATION.labels(tool=name, streaming="false").observe(time.time() - start_time)
        return to_tool_result(value)

    async def _resources_list(self, request: JsonRpcRequest, context: CallContext) -> dict[str, Any]:
        return {
            "resources": [
                resource.to_listing()
                for resource in self.registry.list(CapabilityKind.RESOURCE)
            ]
        }

    async def _resources_read(self, request: JsonRpcRequest, context: CallContext) -> dict[str, Any]:
        uri = self._required_string(request.params, "uri")
        arguments = self._arguments(request.params)

        try:
            resource = self.registry.resolve(CapabilityKind.RESOURCE, uri)
        except CapabilityNotFoundError:
            raise ResourceNotFoundError(f"Resource not found: {uri}", data={"uri": uri}) from None

        self._require_scopes(resource, context)
        validate_arguments(resource, arguments)

        value = await _invoke(resource.handler, arguments, context)
        if isinstance(value, dict) and isinstance(value.get("contents"), list):
            return value

        text = value if isinstance(value, str) else json.dumps(value, default=str, indent=2)
        return {"contents": [{"uri": uri, "mimeType": resource.mime_type, "text": text}]}

    async def _prompts_list(self, request: JsonRpcRequest, context: CallContext) -> dict[str, Any]:
        return {"prompts": [prompt.to_listing() for prompt in self.registry.list(CapabilityKind.PROMPT)]}

    async def _prompts_get(self, request: JsonRpcRequest, context: CallContext) -> dict[str, Any]:
        name = self._required_string(request.params, "name")
        arguments = self._arguments(request.params)

        try:
            prompt = self.registry.resolve(CapabilityKind.PROMPT, name)
        except CapabilityNotFoundError:
            raise ResourceNotFoundError(f"Prompt not found: {name}", data={"prompt": name}) from None

        self._require_scopes(prompt, context)
        validate_arguments(prompt, arguments)

        value = await _invoke(prompt.handler, arguments, context)
        if isinstance(value, dict) and isinstance(value.get("messages"), list):
            value.setdefault("description", prompt.description)
            return value
        if isinstance(value, list):
            return {"description": prompt.description, "messages": value}
        return {
            "description": prompt.description,
            "messages": [{"role": "user", "content": {"type": "text", "text": str(value)}}],
        }
