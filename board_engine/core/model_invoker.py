"""Streaming model invocation with a single-shot fallback."""

from collections.abc import Awaitable, Callable
from typing import Any

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import BaseMessage

from board_engine.core.errors import ModelInvocationError
from board_engine.core.logging import get_logger

logger = get_logger(__name__)

DeltaCallback = Callable[[str], Awaitable[None]]


def extract_chunk_text(chunk: Any) -> str:
    """Text of a message (or chunk) whose content is a string or a list of parts."""
    if isinstance(chunk, str):
        return chunk
    content = getattr(chunk, "content", None)
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and "text" in part:
                parts.append(str(part.get("text") or ""))
        return "".join(parts)
    return ""


async def invoke_model(
    model: BaseChatModel,
    messages: list[BaseMessage],
    on_delta: DeltaCallback,
    stream: bool = True,
) -> str:
    """
    Call the model, forwarding reply text through ``on_delta`` as it arrives.

    Streaming is tried first. If it fails before any text was delivered the
    call is retried once without streaming and the whole reply is delivered
    as a single delta; a failure after text was delivered is fatal.

    Args:
        model: Chat model
        messages: Rendered prompt messages
        on_delta: Coroutine called with each non-empty text increment
        stream: Try token streaming first

    Returns:
        The accumulated raw model output

    Raises:
        ModelInvocationError: If the model call fails
    """
    raw = ""

    if stream:
        try:
            async for chunk in model.astream(messages):
                delta = extract_chunk_text(chunk)
                if not delta:
                    continue
                raw += delta
                await on_delta(delta)
            return raw
        except Exception as e:
            if raw:
                raise ModelInvocationError(f"Model stream interrupted: {e}") from e
            logger.warning(f"Streaming unavailable, falling back to a single call: {e}")

    try:
        response = await model.ainvoke(messages)
    except Exception as e:
        raise ModelInvocationError(f"Model call failed: {e}") from e

    raw = extract_chunk_text(response)
    if raw:
        await on_delta(raw)
    return raw
