"""End-to-end tests for the chat2edit pipeline against in-memory fakes."""

import asyncio
import json
from unittest.mock import MagicMock, patch

import pytest
from langchain_core.messages import AIMessageChunk

from board_engine.core.chat2edit_pipeline import (
    Chat2EditPipeline,
    Chat2EditTask,
    resolve_task_id,
    run_chat2edit,
    timed_out_notice,
)
from board_engine.core.delivery import CancellationToken, DeliveryChannel
from board_engine.core.schemas_chat2edit import Chat2EditRequest
from tests.fakes.fake_supabase import FakeSupabase

TASK_ID = "4f1c2a7e-9b1d-4c53-8f43-2d3c1e0a9b77"

DOC_ROW = {
    "id": "p1-doc1",
    "persona_id": "p1",
    "title": "Bio",
    "content": "<p>Old bio</p>",
    "type": "persona",
    "updated_at": "2026-01-01T00:00:00+00:00",
}

MODEL_OUTPUT = "Updated your bio.\n---JSON---\n" + json.dumps(
    {
        "reply": "Updated your bio.",
        "documents": [{"id": "p1-doc1", "title": "Bio", "type": "persona", "content": "<p>New bio</p>"}],
    }
)


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


def _streaming_llm(text: str) -> MagicMock:
    """Fake chat model streaming ``text`` in three chunks (fresh iterator per call)."""
    third = max(1, len(text) // 3)
    parts = [text[:third], text[third : 2 * third], text[2 * third :]]
    llm = MagicMock()
    llm.astream.side_effect = lambda _messages: _AsyncIterator([AIMessageChunk(content=p) for p in parts])
    return llm


def _stalled_llm() -> MagicMock:
    async def _slow_stream(*_args, **_kwargs):
        await asyncio.sleep(5)
        yield AIMessageChunk(content="too late")

    llm = MagicMock()
    llm.astream = _slow_stream
    return llm


@pytest.fixture
def stores():
    user = FakeSupabase({"persona_docs": [DOC_ROW]})
    service = FakeSupabase({"users": [{"id": "u1", "credits": 10}]})
    return user, service


def _task(**overrides) -> Chat2EditTask:
    body = {
        "message": "Rewrite my bio",
        "attachedResourceIds": ["p1-doc1"],
        "modelId": "persona-ai",
        "stream": True,
        "taskId": TASK_ID,
    }
    body.update(overrides)
    return Chat2EditTask(request=Chat2EditRequest.model_validate(body), user_id="u1", task_id=TASK_ID)


async def _run(pipeline, task, llm, deadline_seconds=None) -> list[dict]:
    channel = DeliveryChannel(task.task_id)
    with patch("board_engine.core.chat2edit_pipeline.get_llm", return_value=llm):
        await run_chat2edit(pipeline, task, channel, CancellationToken(), deadline_seconds=deadline_seconds)
    return [event async for event in channel.events()]


@pytest.mark.asyncio
async def test_single_edit_end_to_end(stores, settings):
    user, service = stores
    pipeline = Chat2EditPipeline(user, service, settings=settings)

    events = await _run(pipeline, _task(), _streaming_llm(MODEL_OUTPUT))

    terminal = [e for e in events if e["type"] in ("final", "error")]
    assert len(terminal) == 1
    assert events[-1]["type"] == "final"
    final = events[-1]

    assert final["task_id"] == TASK_ID
    assert final["reply"] == "Updated your bio."
    assert final["credits_used"] == 3
    assert len(final["updated_docs"]) == 1
    assert final["updated_docs"][0]["content"] == "<p>New bio</p>"
    assert final["changes"][0]["content_before"] == "<p>Old bio</p>"
    assert final["changes"][0]["stats"] == {"inserted": 1, "deleted": 1, "unchanged": 0}
    assert final["web_search_enabled"] is False
    assert final["web_search"] is None

    # Streamed deltas reassemble the raw model output
    assert "".join(e["text"] for e in events if e["type"] == "delta") == MODEL_OUTPUT
    assert [e["stage"] for e in events if e["type"] == "docs"] == ["draft", "final"]
    assert events[0] == {"type": "status", "label": "Loading documents"}

    assert user.rows("persona_docs")[0]["content"] == "<p>New bio</p>"
    assert len(service.rows("credit_history")) == 1
    assert service.rows("credit_history")[0]["id"] == TASK_ID
    assert service.rows("users")[0]["credits"] == 7


@pytest.mark.asyncio
async def test_retry_with_same_task_id_bills_once(stores, settings):
    user, service = stores
    pipeline = Chat2EditPipeline(user, service, settings=settings)

    await _run(pipeline, _task(), _streaming_llm(MODEL_OUTPUT))
    events = await _run(pipeline, _task(), _streaming_llm(MODEL_OUTPUT))

    assert events[-1]["type"] == "final"
    assert events[-1]["credits_used"] == 0
    assert len(service.rows("credit_history")) == 1
    assert service.rows("users")[0]["credits"] == 7


@pytest.mark.asyncio
async def test_reply_without_edits(stores, settings):
    user, service = stores
    pipeline = Chat2EditPipeline(user, service, settings=settings)

    events = await _run(pipeline, _task(mode="ask"), _streaming_llm("Your bio reads well already."))

    final = events[-1]
    assert final["type"] == "final"
    assert final["reply"] == "Your bio reads well already."
    assert final["updated_docs"] == []
    assert not [e for e in events if e["type"] == "docs"]
    assert user.calls.count(("persona_docs", "upsert")) == 0


@pytest.mark.asyncio
async def test_persistence_failure_is_terminal_error(stores, settings):
    user, service = stores
    user.failures[("persona_docs", "upsert")] = RuntimeError("db down")
    pipeline = Chat2EditPipeline(user, service, settings=settings)

    events = await _run(pipeline, _task(), _streaming_llm(MODEL_OUTPUT))

    assert events[-1] == {"type": "error", "message": f"db down (Request ID: {TASK_ID})"}
    assert [e["stage"] for e in events if e["type"] == "docs"] == ["draft"]
    assert service.rows("credit_history") == []


@pytest.mark.asyncio
async def test_deadline_records_timed_out_turn(stores, settings):
    user, service = stores
    pipeline = Chat2EditPipeline(user, service, settings=settings)

    events = await _run(pipeline, _task(chatId="chat-1"), _stalled_llm(), deadline_seconds=0.05)

    assert events[-1] == {"type": "error", "message": f"Request timed out (Request ID: {TASK_ID})"}
    messages = user.rows("messages")
    assert len(messages) == 1
    assert messages[0]["chat_id"] == "chat-1"
    assert messages[0]["role"] == "assistant"
    assert messages[0]["content"] == timed_out_notice("Rewrite my bio")
    assert service.rows("credit_history") == []


@pytest.mark.asyncio
async def test_user_cancel_writes_nothing(stores, settings):
    user, service = stores
    pipeline = Chat2EditPipeline(user, service, settings=settings)
    task = _task(chatId="chat-1")
    channel = DeliveryChannel(task.task_id)
    token = CancellationToken()

    with patch("board_engine.core.chat2edit_pipeline.get_llm", return_value=_stalled_llm()):
        job = asyncio.create_task(run_chat2edit(pipeline, task, channel, token))
        await asyncio.sleep(0.05)
        job.cancel()
        with pytest.raises(asyncio.CancelledError):
            await job

    assert token.reason == "user"
    assert channel.terminal is None
    assert channel.closed is True
    assert user.rows("messages") == []
    assert service.rows("credit_history") == []


class TestResolveTaskId:
    def test_body_task_id_wins(self):
        request = Chat2EditRequest(message="x", task_id="body-id")
        assert resolve_task_id(request, TASK_ID) == "body-id"

    def test_uuid_header(self):
        assert resolve_task_id(Chat2EditRequest(message="x"), TASK_ID.upper()) == TASK_ID

    def test_invalid_header_generates_uuid(self):
        task_id = resolve_task_id(Chat2EditRequest(message="x"), "not-a-uuid")
        assert task_id != "not-a-uuid"
        assert len(task_id) == 36


def test_timed_out_notice_is_localized():
    assert timed_out_notice("改一下简介").startswith("请求超时")
    assert timed_out_notice("Rewrite").startswith("The request timed out")


@pytest.mark.asyncio
async def test_saved_docs_are_indexed_once(settings):
    settings = settings.model_copy(update={"RAG_ENABLED": True, "RAG_EMBEDDINGS_API_KEY": "embed-key"})
    user = FakeSupabase({"persona_docs": [dict(DOC_ROW)], "personas": [{"id": "p1", "user_id": "u1"}]})
    service = FakeSupabase({"users": [{"id": "u1", "credits": 10}]})
    pipeline = Chat2EditPipeline(user, service, settings=settings)
    embedded: list[str] = []

    def _fake_embed(texts, _config):
        embedded.extend(texts)
        return [[0.1, 0.2, 0.3] for _ in texts]

    with patch("board_engine.core.retrieval.embed_texts", side_effect=_fake_embed):
        events = await _run(pipeline, _task(), _streaming_llm(MODEL_OUTPUT))
        saved = events[-1]["updated_docs"][0]

        state = user.rows("rag_user_index_state")[0]
        assert state["last_indexed_at"] == saved["updated_at"]
        assert state["last_indexed_doc_id"] == "p1-doc1"
        assert user.rows("persona_doc_chunks")[0]["content"].endswith("<p>New bio</p>")

        # The next request's freshness check has nothing left to embed
        embedded.clear()
        await _run(pipeline, _task(), _streaming_llm("Nothing to change."))

    assert embedded == ["Rewrite my bio"]
