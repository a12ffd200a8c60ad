"""
Streaming Tool Results

Chunk helpers for streaming tools and aggregation of a chunk sequence into a
single tool result. Streaming handlers are async generators; each produced
item becomes exactly one chunk on the wire.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from typing import Any, TypeVar

T = TypeVar("T")

CHUNK_TYPES = frozenset({"progress", "partial", "complete", "error"})
TERMINAL_CHUNK_TYPES = frozenset({"complete", "error"})


def text_content(text: str) -> dict[str, Any]:
    return {"type": "text", "text": text}


def text_result(text: str, is_error: bool = False) -> dict[str, Any]:
    """Build a tool result with a single text block."""
    return {"content": [text_content(text)], "isError": is_error}


def to_tool_result(value: Any) -> dict[str, Any]:
    """
    Wrap a handler return value as a tool result.

    Values that already carry a ``content`` list pass through unchanged,
    strings become one text block and anything else is serialized as JSON.
    """
    if isinstance(value, dict) and isinstance(value.get("content"), list):
        value.setdefault("isError", False)
        return value
    if isinstance(value, str):
        return text_result(value)
    return text_result(json.dumps(value, default=str, indent=2))


def progress_chunk(
    progress: float,
    message: str | None = None,
    items_processed: int | None = None,
    total_items: int | None = None,
) -> dict[str, Any]:
    """Progress update. ``progress`` is clamped to 0-100."""
    chunk: dict[str, Any] = {"type": "progress", "progress": min(100, max(0, progress))}
    if message is not None:
        chunk["message"] = message
    if items_processed is not None:
        chunk["itemsProcessed"] = items_processed
    if total_items is not None:
        chunk["totalItems"] = total_items
    return chunk


def partial_chunk(content: list[dict[str, Any]], index: int) -> dict[str, Any]:
    return {"type": "partial", "content": content, "index": index}


def text_partial_chunk(text: str, index: int) -> dict[str, Any]:
    return partial_chunk([text_content(text)], index)


def complete_chunk(result: Any) -> dict[str, Any]:
    return {"type": "complete", "result": to_tool_result(result)}


def error_chunk(code: int, message: str, data: Any = None) -> dict[str, Any]:
    chunk: dict[str, Any] = {"type": "error", "code": code, "message": message}
    if data is not None:
        chunk["data"] = data
    return chunk


def normalize_chunk(item: Any, index: int) -> dict[str, Any]:
    """Coerce one produced item into a chunk. Bare values become partial chunks."""
    if isinstance(item, dict) and item.get("type") in CHUNK_TYPES:
        return item
    if isinstance(item, str):
        return text_partial_chunk(item, index)
    return text_partial_chunk(json.dumps(item, default=str), index)


async def aggregate_streaming_result(chunks: AsyncIterator[dict[str, Any]]) -> dict[str, Any]:
    """
    Collapse a chunk sequence into one tool result.

    An error chunk wins, then a complete chunk, then the concatenated partial
    contents. Progress chunks are informational and dropped.
    """
    partial_contents: list[dict[str, Any]] = []
    final_result: dict[str, Any] | None = None
    error: dict[str, Any] | None = None

    async for chunk in chunks:
        chunk_type = chunk.get("type")
        if chunk_type == "partial":
            partial_contents.extend(chunk.get("content", []))
        elif chunk_type == "complete":
            final_result = chunk.get("result")
        elif chunk_type == "error":
            error = chunk

    if error is not None:
        return text_result(f"Error ({error['code']}): {error['message']}", is_error=True)
    if final_result is not None:
        return final_result
    if partial_contents:
        return {"content": partial_contents, "isError": False}
    return text_result("No results")


async def batch_process(
    items: Sequence[T],
    processor: Callable[[T, int], Awaitable[Any]],
    batch_size: int = 10,
    batch_delay: float = 0.0,
    yield_progress: bool = True,
) -> AsyncIterator[dict[str, Any]]:
    """
    Process items in batches, yielding progress and one partial chunk per batch.

    Item failures are reported inline and do not stop the batch.
    """
    total = len(items)
    processed = 0
    results: list[dict[str, Any]] = []

    if yield_progress:
        yield progress_chunk(0, "Starting batch processing", 0, total)

    for batch_index, start in enumerate(range(0, total, batch_size)):
        batch = items[start : start + batch_size]
        batch_content: list[dict[str, Any]] = []

        for offset, item in enumerate(batch):
            try:
                value = await processor(item, start + offset)
                block = text_content(value if isinstance(value, str) else json.dumps(value, default=str))
            except Exception as e:
                block = text_content(f"Error processing item {start + offset}: {e}")
            batch_content.append(block)
            processed += 1

        results.extend(batch_content)
        yield partial_chunk(batch_content, batch_index)

        if yield_progress:
            yield progress_chunk(
                round(processed / total * 100) if total else 100,
                f"Processed {processed} of {total} items",
                processed,
                total,
            )

        if batch_delay > 0 and start + batch_size < total:
            await asyncio.sleep(batch_delay)

    yield complete_chunk({"content": results, "isError": False})

