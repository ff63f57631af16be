"""Tests for the board chat2edit endpoint.

Runs the real pipeline through FastAPI TestClient with in-memory Supabase
fakes and a fake streaming chat model.
"""

import json
from typing import List
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient
from langchain_core.messages import AIMessage, AIMessageChunk

from board_engine.core.auth_middleware import AuthContext, require_auth
from board_engine.core.errors import StoreConfigError
from board_engine.main import app
from tests.fakes.fake_supabase import FakeSupabase

URL = "/v1/board/chat2edit"
REQUEST_ID = "0b7e3c52-5d0f-4d8e-9a55-6f1e2c3b4a5d"

DOC_ROW = {
    "id": "p1-doc1",
    "persona_id": "p1",
    "title": "Bio",
    "content": "<p>Old bio</p>",
    "type": "persona",
    "updated_at": "2026-01-01T00:00:00+00:00",
}

MODEL_OUTPUT = "Done.\n---JSON---\n" + json.dumps(
    {"reply": "Done.", "documents": [{"id": "p1-doc1", "title": "Bio", "content": "<p>New bio</p>"}]}
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


def parse_sse_events(text: str) -> List[dict]:
    """Parse SSE response body into a list of event dicts."""
    events = []
    for line in text.strip().split("\n"):
        line = line.strip()
        if line.startswith("data: "):
            try:
                events.append(json.loads(line[6:]))
            except json.JSONDecodeError:
                pass
    return events


@pytest.fixture
def stores():
    return FakeSupabase({"persona_docs": [DOC_ROW]}), FakeSupabase({"users": [{"id": "u1", "credits": 10}]})


@pytest.fixture
def client(stores):
    user, service = stores
    llm = MagicMock()
    llm.astream.side_effect = lambda _messages: _AsyncIterator(
        [AIMessageChunk(content=MODEL_OUTPUT[:10]), AIMessageChunk(content=MODEL_OUTPUT[10:])]
    )
    # Non-streaming requests go straight to a single call
    llm.ainvoke = AsyncMock(return_value=AIMessage(content=MODEL_OUTPUT))

    app.dependency_overrides[require_auth] = lambda: AuthContext(user_id="u1", token="user-token")
    with (
        patch("board_engine.api.chat2edit.get_user_supabase", return_value=user),
        patch("board_engine.api.chat2edit.get_supabase", return_value=service),
        patch("board_engine.core.chat2edit_pipeline.get_llm", return_value=llm),
    ):
        yield TestClient(app)
    app.dependency_overrides.clear()


def test_health():
    response = TestClient(app).get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_requires_auth():
    response = TestClient(app).post(URL, json={"message": "hi"})
    assert response.status_code == 401


def test_rejects_empty_message(client):
    response = client.post(URL, json={"message": "   "})
    assert response.status_code == 400


def test_rejects_non_json_body(client):
    response = client.post(URL, content=b"not json", headers={"Content-Type": "application/json"})
    assert response.status_code == 400


def test_non_streaming_returns_final_payload(client, stores):
    user, service = stores

    response = client.post(
        URL,
        json={"message": "Rewrite my bio", "attachedResourceIds": ["p1-doc1"], "modelId": "persona-ai"},
        headers={"X-Request-ID": REQUEST_ID},
    )

    assert response.status_code == 200
    data = response.json()
    assert "type" not in data
    assert data["task_id"] == REQUEST_ID
    assert response.headers["X-Task-ID"] == REQUEST_ID
    assert data["reply"] == "Done."
    assert len(data["updated_docs"]) == 1
    assert data["credits_used"] == 3
    assert user.rows("persona_docs")[0]["content"] == "<p>New bio</p>"
    assert service.rows("credit_history")[0]["id"] == REQUEST_ID


def test_streaming_emits_events_then_one_final(client):
    response = client.post(
        URL,
        json={"message": "Rewrite my bio", "attachedResourceIds": ["p1-doc1"], "modelId": "persona-ai", "stream": "true"},
    )

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert response.headers["cache-control"] == "no-cache"
    assert response.headers["x-accel-buffering"] == "no"

    events = parse_sse_events(response.text)
    types = [e["type"] for e in events]
    assert types[0] == "status"
    assert "delta" in types
    assert types.count("docs") == 2
    assert types[-1] == "final"
    assert types.count("final") + types.count("error") == 1
    assert events[-1]["task_id"] == response.headers["X-Task-ID"]


def test_non_streaming_failure_returns_500(client, stores):
    user, _ = stores
    user.failures[("persona_docs", "upsert")] = RuntimeError("db down")

    response = client.post(URL, json={"message": "Rewrite my bio", "attachedResourceIds": ["p1-doc1"]})

    assert response.status_code == 500
    assert "Request ID:" in response.json()["detail"]


def test_unconfigured_user_store_returns_500(client, stores):
    _, service = stores

    with patch(
        "board_engine.api.chat2edit.get_user_supabase",
        side_effect=StoreConfigError("Supabase not configured"),
    ):
        response = client.post(
            URL,
            json={"message": "Rewrite my bio", "attachedResourceIds": ["p1-doc1"]},
            headers={"X-Request-ID": REQUEST_ID},
        )

    assert response.status_code == 500
    assert response.json()["detail"] == f"Supabase not configured (Request ID: {REQUEST_ID})"
    assert response.headers["X-Task-ID"] == REQUEST_ID
    assert service.rows("credit_history") == []
