"""Board chat-to-edit API endpoint."""

import asyncio
from typing import Any, AsyncGenerator

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import ValidationError

from board_engine.core.auth_middleware import AuthContext, require_auth
from board_engine.core.chat2edit_pipeline import Chat2EditPipeline, Chat2EditTask, resolve_task_id, run_chat2edit
from board_engine.core.config import get_settings
from board_engine.core.delivery import SSE_HEADERS, CancellationToken, DeliveryChannel
from board_engine.core.errors import StoreConfigError
from board_engine.core.logging import get_logger
from board_engine.core.schemas_chat2edit import Chat2EditRequest
from board_engine.db.supabase_client import get_supabase, get_user_supabase

logger = get_logger(__name__)

router = APIRouter()


async def _read_body(request: Request) -> dict[str, Any]:
    try:
        body = await request.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


@router.post("/chat2edit")
async def chat2edit(
    request: Request,
    auth: AuthContext = Depends(require_auth),
    x_request_id: str | None = Header(None, alias="X-Request-ID"),
):
    """
    Edit board documents from a chat instruction.

    With ``stream`` set, responds with Server-Sent Events:
    - type: 'status' - progress label
    - type: 'delta' - incremental reply text
    - type: 'docs' - document changes (stage 'draft' before saving, 'final' after)
    - type: 'error' - terminal failure, message tagged with the request id
    - type: 'final' - terminal success payload

    Otherwise returns the final payload as JSON.

    Args:
        request: Incoming request (JSON body, headers used for timezone hints)
        auth: Authenticated caller
        x_request_id: Optional UUID used as the task id

    Returns:
        StreamingResponse or JSON payload
    """
    try:
        body = Chat2EditRequest.model_validate(await _read_body(request))
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    if not body.message:
        raise HTTPException(status_code=400, detail="message is required")

    settings = get_settings()
    task = Chat2EditTask(
        request=body,
        user_id=auth.user_id,
        task_id=resolve_task_id(body, x_request_id),
        headers=dict(request.headers),
        origin=f"{request.url.scheme}://{request.url.netloc}",
    )
    response_headers = {"X-Task-ID": task.task_id}
    try:
        user_supabase = get_user_supabase(auth.token)
    except StoreConfigError as e:
        logger.error(f"User store unavailable for task {task.task_id}: {e.message}")
        raise HTTPException(status_code=500, detail=e.tagged(task.task_id), headers=response_headers) from e
    pipeline = Chat2EditPipeline(
        user_supabase=user_supabase,
        service_supabase=get_supabase(),
        cache=getattr(request.app.state, "cache", None),
    )
    channel = DeliveryChannel(task.task_id)
    token = CancellationToken()

    if not body.stream:
        await run_chat2edit(pipeline, task, channel, token)
        terminal = channel.terminal or {"type": "error", "message": "Unknown error"}
        if terminal["type"] != "final":
            raise HTTPException(status_code=500, detail=terminal.get("message"), headers=response_headers)
        payload = {k: v for k, v in terminal.items() if k != "type"}
        return JSONResponse(content=payload, headers=response_headers)

    job = asyncio.create_task(run_chat2edit(pipeline, task, channel, token))

    async def generate() -> AsyncGenerator[str, None]:
        """Drain the channel; a disconnecting client stops the pipeline."""
        try:
            async for frame in channel.sse(settings.HEARTBEAT_SECONDS):
                yield frame
        finally:
            if not job.done():
                token.cancel("user")
                job.cancel()

    return StreamingResponse(
        generate(),
        media_type="text/event-stream",
        headers={**SSE_HEADERS, **response_headers},
    )
