"""Tests for streaming model invocation with fallback."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from langchain_core.messages import AIMessage, AIMessageChunk, HumanMessage

from board_engine.core.errors import ModelInvocationError
from board_engine.core.model_invoker import extract_chunk_text, invoke_model

MESSAGES = [HumanMessage(content="hi")]


class _AsyncIterator:
    """Async iterator wrapper for mocking ``async for`` loops."""

    def __init__(self, items):
        self._items = list(items)
        self._idx = 0

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self._idx >= len(self._items):
            raise StopAsyncIteration
        item = self._items[self._idx]
        self._idx += 1
        return item


def _collector():
    deltas: list[str] = []

    async def on_delta(text: str) -> None:
        deltas.append(text)

    return deltas, on_delta


@pytest.mark.asyncio
async def test_streams_deltas():
    model = MagicMock()
    model.astream.return_value = _AsyncIterator(
        [AIMessageChunk(content="Hel"), AIMessageChunk(content=""), AIMessageChunk(content="lo")]
    )
    model.ainvoke = AsyncMock()
    deltas, on_delta = _collector()

    raw = await invoke_model(model, MESSAGES, on_delta)

    assert raw == "Hello"
    assert deltas == ["Hel", "lo"]
    model.ainvoke.assert_not_called()


@pytest.mark.asyncio
async def test_empty_stream_returns_empty_reply():
    model = MagicMock()
    model.astream.return_value = _AsyncIterator([AIMessageChunk(content="")])
    model.ainvoke = AsyncMock()
    deltas, on_delta = _collector()

    raw = await invoke_model(model, MESSAGES, on_delta)

    assert raw == ""
    assert deltas == []
    model.ainvoke.assert_not_called()


@pytest.mark.asyncio
async def test_falls_back_when_stream_fails_before_text():
    model = MagicMock()
    model.astream.side_effect = RuntimeError("streaming unsupported")
    model.ainvoke = AsyncMock(return_value=AIMessage(content="Full reply"))
    deltas, on_delta = _collector()

    raw = await invoke_model(model, MESSAGES, on_delta)

    assert raw == "Full reply"
    assert deltas == ["Full reply"]


@pytest.mark.asyncio
async def test_interrupted_stream_is_fatal():
    async def _broken_stream(*_args, **_kwargs):
        yield AIMessageChunk(content="partial")
        raise RuntimeError("connection reset")

    model = MagicMock()
    model.astream = _broken_stream
    model.ainvoke = AsyncMock()
    deltas, on_delta = _collector()

    with pytest.raises(ModelInvocationError, match="interrupted"):
        await invoke_model(model, MESSAGES, on_delta)

    assert deltas == ["partial"]
    model.ainvoke.assert_not_called()


@pytest.mark.asyncio
async def test_non_streaming_call():
    model = MagicMock()
    model.ainvoke = AsyncMock(return_value=AIMessage(content="Once"))
    deltas, on_delta = _collector()

    assert await invoke_model(model, MESSAGES, on_delta, stream=False) == "Once"
    model.astream.assert_not_called()
    assert deltas == ["Once"]


@pytest.mark.asyncio
async def test_both_paths_fail():
    model = MagicMock()
    model.astream.side_effect = RuntimeError("no stream")
    model.ainvoke = AsyncMock(side_effect=RuntimeError("rate limited"))
    _, on_delta = _collector()

    with pytest.raises(ModelInvocationError, match="Model call failed"):
        await invoke_model(model, MESSAGES, on_delta)


def test_extract_chunk_text_handles_content_parts():
    chunk = AIMessageChunk(content=[{"type": "text", "text": "a"}, "b", {"type": "image_url"}])
    assert extract_chunk_text(chunk) == "ab"
    assert extract_chunk_text("plain") == "plain"
    assert extract_chunk_text(object()) == ""
