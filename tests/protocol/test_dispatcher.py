"""
Tests for the protocol dispatcher.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any

import pytest

from mcp_gateway.protocol.dispatcher import StreamingExecution
from mcp_gateway.protocol.models import JsonRpcRequest
from mcp_gateway.protocol.streaming import complete_chunk


def make_request(method: str, params: dict[str, Any] | None = None, request_id: Any = 1) -> JsonRpcRequest:
    envelope: dict[str, Any] = {"version": "2.0", "method": method, "params": params or {}}
    if request_id is not None:
        envelope["id"] = request_id
    return JsonRpcRequest.model_validate(envelope)


@pytest.mark.asyncio
class TestSessionMethods:
    """Tests for initialize, initialized and ping."""

    async def test_ping(self, dispatcher, context):
        response = await dispatcher.dispatch(make_request("ping", request_id=7), context)

        assert response.to_wire() == {"version": "2.0", "id": 7, "result": {"status": "ok"}}

    async def test_initialize_negotiates_requested_version(self, dispatcher, context):
        response = await dispatcher.dispatch(
            make_request("initialize", {"protocolVersion": "2024-11-05", "clientInfo": {"name": "t"}}),
            context,
        )

        assert response.result["protocolVersion"] == "2024-11-05"
        assert response.result["serverInfo"] == {"name": "test-gateway", "version": "9.9.9"}
        assert "tools" in response.result["capabilities"]

    async def test_initialize_defaults_to_latest_version(self, dispatcher, context):
        response = await dispatcher.dispatch(make_request("initialize"), context)

        assert response.result["protocolVersion"] == "2025-03-26"

    async def test_initialize_unsupported_version(self, dispatcher, context):
        response = await dispatcher.dispatch(
            make_request("initialize", {"protocolVersion": "1999-01-01"}), context
        )

        assert response.error.code == -32004
        assert response.error.data["supported"] == ["2025-03-26", "2024-11-05"]

    async def test_initialized_notification_gets_no_reply(self, dispatcher, context):
        result = await dispatcher.dispatch(make_request("notifications/initialized", request_id=None), context)

        assert result is None


@pytest.mark.asyncio
class TestMethodRouting:
    """Tests for the method table."""

    async def test_unknown_method_echoes_id(self, dispatcher, context):
        response = await dispatcher.dispatch(make_request("tools/destroy", request_id="abc"), context)

        assert response.id == "abc"
        assert response.error.code == -32601
        assert "tools/destroy" in response.error.message

    async def test_method_names_are_case_sensitive(self, dispatcher, context):
        response = await dispatcher.dispatch(make_request("Ping"), context)

        assert response.error.code == -32601

    async def test_unknown_method_notification_gets_no_reply(self, dispatcher, context):
        result = await dispatcher.dispatch(make_request("nope", request_id=None), context)

        assert result is None

    async def test_tools_list(self, dispatcher, context):
        response = await dispatcher.dispatch(make_request("tools/list"), context)

        names = [tool["name"] for tool in response.result["tools"]]
        assert names == sorted(names)
        assert "add" in names
        add = next(tool for tool in response.result["tools"] if tool["name"] == "add")
        assert add["inputSchema"]["required"] == ["a", "b"]
        assert add["annotations"]["readOnlyHint"] is True


@pytest.mark.asyncio
class TestToolsCall:
    """Tests for tools/call."""

    async def test_call_returns_tool_result(self, dispatcher, context):
        response = await dispatcher.dispatch(
            make_request("tools/call", {"name": "add", "arguments": {"a": 2, "b": 3}}), context
        )

        assert response.result["isError"] is False
        assert '"sum": 5' in response.result["content"][0]["text"]

    async def test_unknown_tool(self, dispatcher, context):
        response = await dispatcher.dispatch(
            make_request("tools/call", {"name": "missing", "arguments": {}}), context
        )

        assert response.error.code == -32602

    async def test_missing_required_argument(self, dispatcher, context, call_counter):
        response = await dispatcher.dispatch(
            make_request("tools/call", {"name": "add", "arguments": {"a": 2}}), context
        )

        assert response.error.code == -32602
        assert response.error.data == {"missing": ["b"]}
        assert call_counter.calls == 0

    async def test_arguments_must_be_object(self, dispatcher, context):
        response = await dispatcher.dispatch(
            make_request("tools/call", {"name": "add", "arguments": [1, 2]}), context
        )

        assert response.error.code == -32602

    async def test_handler_fault_is_internal_error(self, dispatcher, context):
        response = await dispatcher.dispatch(
            make_request("tools/call", {"name": "explode"}, request_id=9), context
        )

        assert response.id == 9
        assert response.error.code == -32603
        assert response.error.message == "boom"

    async def test_tool_execution_error(self, dispatcher, context):
        response = await dispatcher.dispatch(make_request("tools/call", {"name": "refuse"}), context)

        assert response.error.code == -32005
        assert response.error.message == "Upstream unavailable"

    async def test_missing_scope(self, dispatcher, context):
        response = await dispatcher.dispatch(make_request("tools/call", {"name": "cancel_order"}), context)

        assert response.error.code == -32003
        assert response.error.data["missing"] == ["orders:write"]

    async def test_wildcard_scope(self, dispatcher, context):
        context = replace(context, scopes=frozenset({"*"}))

        response = await dispatcher.dispatch(make_request("tools/call", {"name": "cancel_order"}), context)

        assert response.result["content"][0]["text"] == "cancelled"

    async def test_streaming_tool_returns_execution(self, dispatcher, context):
        context = replace(context, supports_streaming=True)

        result = await dispatcher.dispatch(
            make_request("tools/call", {"name": "count_up", "arguments": {"total": 2}}, request_id=4),
            context,
        )

        assert isinstance(result, StreamingExecution)
        envelopes = [envelope async for envelope in result.envelopes()]
        assert [envelope.id for envelope in envelopes] == [4, 4, 4]
        assert [envelope.result["type"] for envelope in envelopes] == ["progress", "progress", "complete"]

    async def test_streaming_tool_aggregated_without_streaming_support(self, dispatcher, context):
        response = await dispatcher.dispatch(
            make_request("tools/call", {"name": "count_up", "arguments": {"total": 2}}), context
        )

        assert '"counted": 2' in response.result["content"][0]["text"]

    async def test_streaming_failure_becomes_error_chunk(self, dispatcher, context):
        context = replace(context, supports_streaming=True)

        execution = await dispatcher.dispatch(make_request("tools/call", {"name": "fail_midway"}), context)

        chunks = [chunk async for chunk in execution.chunks()]
        assert chunks[0]["type"] == "partial"
        assert chunks[-1]["type"] == "error"
        assert chunks[-1]["code"] == -32603
        assert chunks[-1]["message"] == "stream broke"

    async def test_bare_values_end_with_complete_chunk(self):
        async def words():
            yield "a"
            yield "b"

        execution = StreamingExecution(request_id=3, tool_name="words", source=words())

        chunks = [chunk async for chunk in execution.chunks()]

        assert [chunk["type"] for chunk in chunks] == ["partial", "partial", "complete"]
        assert chunks[-1]["result"] == {
            "content": [{"type": "text", "text": "a"}, {"type": "text", "text": "b"}],
            "isError": False,
        }

    async def test_explicit_complete_is_not_duplicated(self, dispatcher, context):
        context = replace(context, supports_streaming=True)
        execution = await dispatcher.dispatch(make_request("tools/call", {"name": "count_up"}), context)

        chunks = [chunk async for chunk in execution.chunks()]

        assert [chunk["type"] for chunk in chunks].count("complete") == 1

    async def test_nothing_after_first_terminal_chunk(self):
        produced: list[str] = []

        async def chatty():
            yield complete_chunk("done")
            produced.append("late")
            yield "late"

        execution = StreamingExecution(request_id=3, tool_name="chatty", source=chatty())

        chunks = [chunk async for chunk in execution.chunks()]

        assert [chunk["type"] for chunk in chunks] == ["complete"]
        assert produced == []

    async def test_streaming_execution_consumed_once(self, dispatcher, context):
        context = replace(context, supports_streaming=True)
        execution = await dispatcher.dispatch(make_request("tools/call", {"name": "count_up"}), context)

        [chunk async for chunk in execution.chunks()]

        with pytest.raises(RuntimeError):
            [chunk async for chunk in execution.chunks()]


@pytest.mark.asyncio
class TestResourcesAndPrompts:
    """Tests for resources and prompts."""

    async def test_resources_list(self, dispatcher, context):
        response = await dispatcher.dispatch(make_request("resources/list"), context)

        assert response.result["resources"][0]["uri"] == "config://settings"

    async def test_resources_read(self, dispatcher, context):
        response = await dispatcher.dispatch(
            make_request("resources/read", {"uri": "config://settings"}), context
        )

        content = response.result["contents"][0]
        assert content["uri"] == "config://settings"
        assert content["mimeType"] == "application/json"
        assert '"tenant": "tenant-a"' in content["text"]

    async def test_resources_read_unknown(self, dispatcher, context):
        response = await dispatcher.dispatch(make_request("resources/read", {"uri": "nope://x"}), context)

        assert response.error.code == -32002

    async def test_prompts_get(self, dispatcher, context):
        response = await dispatcher.dispatch(
            make_request("prompts/get", {"name": "summarize", "arguments": {"topic": "sales"}}), context
        )

        assert response.result["messages"] == [
            {"role": "user", "content": {"type": "text", "text": "Summarize sales"}}
        ]

    async def test_prompts_get_missing_argument(self, dispatcher, context):
        response = await dispatcher.dispatch(make_request("prompts/get", {"name": "summarize"}), context)

        assert response.error.code == -32602

    async def test_prompts_get_unknown(self, dispatcher, context):
        response = await dispatcher.dispatch(make_request("prompts/get", {"name": "nope"}), context)

        assert response.error.code == -32002
