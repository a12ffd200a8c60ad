"""
Tests for streaming chunk helpers and result aggregation.
"""

from __future__ import annotations

import pytest

from mcp_gateway.protocol.streaming import (
    aggregate_streaming_result,
    batch_process,
    complete_chunk,
    error_chunk,
    normalize_chunk,
    partial_chunk,
    progress_chunk,
    text_content,
    to_tool_result,
)


async def from_list(chunks):
    for chunk in chunks:
        yield chunk


def test_progress_is_clamped():
    assert progress_chunk(150)["progress"] == 100
    assert progress_chunk(-5)["progress"] == 0


def test_progress_optional_fields():
    chunk = progress_chunk(50, "halfway", items_processed=5, total_items=10)

    assert chunk == {
        "type": "progress",
        "progress": 50,
        "message": "halfway",
        "itemsProcessed": 5,
        "totalItems": 10,
    }


def test_to_tool_result_passes_content_through():
    value = {"content": [text_content("x")]}

    assert to_tool_result(value) == {"content": [text_content("x")], "isError": False}


def test_to_tool_result_wraps_strings_and_values():
    assert to_tool_result("hello")["content"] == [text_content("hello")]
    assert to_tool_result({"a": 1})["content"][0]["text"] == '{\n  "a": 1\n}'


def test_normalize_chunk():
    assert normalize_chunk(progress_chunk(10), 0)["type"] == "progress"
    assert normalize_chunk("text", 2) == partial_chunk([text_content("text")], 2)
    assert normalize_chunk({"rows": 3}, 1)["content"][0]["text"] == '{"rows": 3}'


@pytest.mark.asyncio
class TestAggregateStreamingResult:
    """Tests for collapsing a chunk sequence into one result."""

    async def test_error_wins(self):
        result = await aggregate_streaming_result(
            from_list([complete_chunk("done"), error_chunk(-32603, "broken")])
        )

        assert result["isError"] is True
        assert result["content"][0]["text"] == "Error (-32603): broken"

    async def test_complete_wins_over_partials(self):
        result = await aggregate_streaming_result(
            from_list([partial_chunk([text_content("a")], 0), complete_chunk("final")])
        )

        assert result == {"content": [text_content("final")], "isError": False}

    async def test_partials_concatenated(self):
        result = await aggregate_streaming_result(
            from_list(
                [
                    progress_chunk(10),
                    partial_chunk([text_content("a")], 0),
                    partial_chunk([text_content("b")], 1),
                ]
            )
        )

        assert result == {"content": [text_content("a"), text_content("b")], "isError": False}

    async def test_no_results(self):
        result = await aggregate_streaming_result(from_list([progress_chunk(100)]))

        assert result["content"][0]["text"] == "No results"


@pytest.mark.asyncio
class TestBatchProcess:
    """Tests for batch processing with progress."""

    async def test_batches_and_progress(self):
        async def double(item, index):
            return item * 2

        chunks = [chunk async for chunk in batch_process([1, 2, 3], double, batch_size=2)]

        assert [chunk["type"] for chunk in chunks] == [
            "progress",
            "partial",
            "progress",
            "partial",
            "progress",
            "complete",
        ]
        assert chunks[-2]["progress"] == 100
        assert [block["text"] for block in chunks[-1]["result"]["content"]] == ["2", "4", "6"]

    async def test_item_failures_reported_inline(self):
        async def picky(item, index):
            if item == "bad":
                raise ValueError("nope")
            return item

        chunks = [
            chunk async for chunk in batch_process(["ok", "bad"], picky, yield_progress=False)
        ]

        texts = [block["text"] for block in chunks[-1]["result"]["content"]]
        assert texts == ["ok", "Error processing item 1: nope"]

    async def test_empty_input(self):
        async def identity(item, index):
            return item

        chunks = [chunk async for chunk in batch_process([], identity)]

        assert chunks[0]["type"] == "progress"
        assert chunks[-1]["type"] == "complete"
