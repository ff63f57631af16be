"""Tests for the event delivery channel and cancellation token."""

import json

import pytest

from board_engine.core.delivery import (
    HEARTBEAT_FRAME,
    CancellationToken,
    DeliveryChannel,
    PipelineCancelled,
    format_sse,
)


@pytest.mark.asyncio
async def test_exactly_one_terminal_event():
    channel = DeliveryChannel("task-1")

    assert channel.status("Loading documents") is True
    assert channel.final({"reply": "ok", "task_id": "task-1"}) is True
    assert channel.error("late failure") is False
    assert channel.delta("late text") is False
    channel.close()

    events = [e async for e in channel.events()]
    assert [e["type"] for e in events] == ["status", "final"]
    assert channel.terminal == {"type": "final", "reply": "ok", "task_id": "task-1"}


@pytest.mark.asyncio
async def test_nothing_after_close():
    channel = DeliveryChannel()
    channel.close()
    channel.close()

    assert channel.status("ignored") is False
    assert [e async for e in channel.events()] == []


@pytest.mark.asyncio
async def test_sse_frames_and_heartbeat():
    channel = DeliveryChannel("task-1")
    frames = channel.sse(heartbeat_seconds=0.01)

    # Quiet writer produces a keep-alive comment
    assert await frames.__anext__() == HEARTBEAT_FRAME

    channel.docs("draft", updated_docs=[{"id": "d1"}], changes=[], task_id="task-1")
    channel.error("boom (Request ID: task-1)")
    channel.close()

    rest = [frame async for frame in frames if frame != HEARTBEAT_FRAME]
    events = [json.loads(frame[len("data: ") :]) for frame in rest]
    assert events[0] == {"type": "docs", "stage": "draft", "updated_docs": [{"id": "d1"}], "changes": [], "task_id": "task-1"}
    assert events[1] == {"type": "error", "message": "boom (Request ID: task-1)"}


def test_format_sse_keeps_unicode():
    frame = format_sse({"type": "delta", "text": "你好"})
    assert frame == 'data: {"type": "delta", "text": "你好"}\n\n'


class TestCancellationToken:
    def test_first_reason_wins(self):
        token = CancellationToken()
        assert token.cancelled is False

        token.cancel("deadline")
        token.cancel("user")

        assert token.reason == "deadline"

    def test_raise_if_cancelled(self):
        token = CancellationToken()
        token.raise_if_cancelled()

        token.cancel("user")
        with pytest.raises(PipelineCancelled) as exc:
            token.raise_if_cancelled()
        assert exc.value.reason == "user"
