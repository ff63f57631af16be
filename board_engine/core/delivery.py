"""Delivery channel between the chat2edit pipeline and the HTTP stream.

One writer (the pipeline) puts typed events on a queue; one reader (the
transport) drains them as Server-Sent Events, interleaving heartbeats while
the writer is quiet. Exactly one terminal event (``error`` or ``final``) is
delivered per channel.
"""

import asyncio
import json
from collections.abc import AsyncIterator
from typing import Any, Literal

from board_engine.core.logging import get_logger

logger = get_logger(__name__)

TERMINAL_EVENTS = frozenset({"error", "final"})
HEARTBEAT_FRAME = ":\n\n"
SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",  # Disable nginx buffering
}

CancelReason = Literal["user", "deadline"]

_CLOSED = object()


class PipelineCancelled(Exception):
    """Raised inside a stage when the request was cancelled."""

    def __init__(self, reason: CancelReason):
        super().__init__(f"Pipeline cancelled ({reason})")
        self.reason = reason


class CancellationToken:
    """Records why (and whether) a request was aborted."""

    def __init__(self) -> None:
        self._reason: CancelReason | None = None

    @property
    def cancelled(self) -> bool:
        return self._reason is not None

    @property
    def reason(self) -> CancelReason | None:
        return self._reason

    def cancel(self, reason: CancelReason) -> None:
        # First reason wins
        if self._reason is None:
            self._reason = reason

    def raise_if_cancelled(self) -> None:
        if self._reason is not None:
            raise PipelineCancelled(self._reason)


def format_sse(event: dict[str, Any]) -> str:
    """Encode one event as an SSE ``data:`` frame."""
    return f"data: {json.dumps(event, ensure_ascii=False)}\n\n"


class DeliveryChannel:
    """Single-producer, single-consumer event channel."""

    def __init__(self, task_id: str | None = None) -> None:
        self.task_id = task_id
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False
        self._terminal: dict[str, Any] | None = None

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def terminal(self) -> dict[str, Any] | None:
        """The terminal event, once one was emitted."""
        return self._terminal

    def emit(self, event_type: str, **payload: Any) -> bool:
        """
        Queue an event.

        Returns:
            False when the channel is closed or already terminated
        """
        if self._closed or self._terminal is not None:
            logger.debug(f"Dropping '{event_type}' event on finished channel {self.task_id}")
            return False
        event = {"type": event_type, **payload}
        if event_type in TERMINAL_EVENTS:
            self._terminal = event
        self._queue.put_nowait(event)
        return True

    def status(self, label: str) -> bool:
        return self.emit("status", label=label)

    def delta(self, text: str) -> bool:
        return self.emit("delta", text=text)

    def docs(self, stage: Literal["draft", "final"], updated_docs: list, changes: list, task_id: str) -> bool:
        return self.emit("docs", stage=stage, updated_docs=updated_docs, changes=changes, task_id=task_id)

    def error(self, message: str) -> bool:
        return self.emit("error", message=message)

    def final(self, payload: dict[str, Any]) -> bool:
        return self.emit("final", **payload)

    def close(self) -> None:
        """Stop accepting events and release the reader. Idempotent."""
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)

    async def events(self) -> AsyncIterator[dict[str, Any]]:
        """Yield queued events until the channel is closed."""
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item

    async def sse(self, heartbeat_seconds: float = 15.0) -> AsyncIterator[str]:
        """
        Yield SSE frames until the channel is closed.

        A comment frame is yielded whenever no event arrives within
        ``heartbeat_seconds``.
        """
        while True:
            try:
                item = await asyncio.wait_for(self._queue.get(), timeout=heartbeat_seconds)
            except asyncio.TimeoutError:
                yield HEARTBEAT_FRAME
                continue
            if item is _CLOSED:
                return
            yield format_sse(item)
