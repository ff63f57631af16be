"""Chat2edit pipeline: one sequential run per task id.

Stages: assemble context -> stream the model -> parse edits -> reconcile and
persist -> attach media -> bill once -> infer automation -> final payload.
Every event goes through a DeliveryChannel; ``run_chat2edit`` owns the single
terminal event and the deadline/user cancellation semantics.
"""

import asyncio
import logging
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from board_engine.chains.chat2edit import build_chat2edit_messages
from board_engine.core.automation_extractor import maybe_register_automation
from board_engine.core.billing import charge_credits
from board_engine.core.cache import TTLCache
from board_engine.core.config import Settings, get_settings
from board_engine.core.context_assembler import AssembledContext, assemble_context
from board_engine.core.delivery import CancellationToken, DeliveryChannel, PipelineCancelled
from board_engine.core.edit_parser import parse_model_output
from board_engine.core.errors import Chat2EditError, ModelConfigError, PersistenceError, tag_message
from board_engine.core.llm import ModelConfig, get_llm, load_model_catalogue, resolve_model_config
from board_engine.core.logging import get_logger, log_with_context
from board_engine.core.media import attach_image, failure_note, sanitize_image_disclaimers
from board_engine.core.model_invoker import invoke_model
from board_engine.core.reconciler import (
    build_changes,
    create_new_documents,
    persist_documents,
    reconcile_proposals,
)
from board_engine.core.retrieval import ensure_index_fresh, get_user_persona_ids
from board_engine.core.schemas_chat2edit import BoardDocument, Chat2EditRequest, Chat2EditResponse
from board_engine.core.text import append_note, is_chinese_text
from board_engine.db.messages import insert_assistant_message

logger = get_logger(__name__)

REINDEX_TIMEOUT_SECONDS = 30.0


@dataclass
class Chat2EditTask:
    """One normalized chat2edit request plus its caller context."""

    request: Chat2EditRequest
    user_id: str
    task_id: str
    headers: Mapping[str, str] = field(default_factory=dict)
    origin: str | None = None


def resolve_task_id(request: Chat2EditRequest, request_id_header: str | None) -> str:
    """Body task id, else a UUID ``X-Request-ID`` header, else a fresh UUID."""
    if request.task_id:
        return request.task_id
    candidate = (request_id_header or "").strip()
    if candidate:
        try:
            return str(uuid.UUID(candidate))
        except ValueError:
            pass
    return str(uuid.uuid4())


def timed_out_notice(message: str) -> str:
    if is_chinese_text(message):
        return "请求超时，已停止处理。请稍后重试。"
    return "The request timed out and was stopped. Please try again."


def _merge_rows(base: list[BoardDocument], updates: list[BoardDocument]) -> list[BoardDocument]:
    by_id = {d.id: d for d in updates}
    merged = [by_id.pop(d.id, d) for d in base]
    return merged + list(by_id.values())


class Chat2EditPipeline:
    """
    Runs the chat2edit stages for one request.

    Args:
        user_supabase: Client acting as the caller (documents, storage, transcript)
        service_supabase: Service-role client (ledger, model catalogue, automations)
        cache: Shared TTL cache from the app lifespan
        settings: Optional settings override
    """

    def __init__(
        self,
        user_supabase: Any,
        service_supabase: Any,
        cache: TTLCache | None = None,
        settings: Settings | None = None,
    ):
        self.user_supabase = user_supabase
        self.service_supabase = service_supabase
        self.cache = cache
        self.settings = settings or get_settings()

    def _resolve_model(self, model_key: str | None) -> ModelConfig:
        catalogue = load_model_catalogue(self.service_supabase, self.cache, self.settings)
        return resolve_model_config(model_key, catalogue)

    def _resolve_image_model(self) -> ModelConfig | None:
        try:
            return self._resolve_model(self.settings.IMAGE_MODEL_KEY)
        except ModelConfigError:
            return None

    async def run(self, task: Chat2EditTask, channel: DeliveryChannel, token: CancellationToken) -> Chat2EditResponse:
        """
        Execute every stage and return the final payload.

        Raises:
            Chat2EditError: On fatal errors (config, model, load, persistence)
            PipelineCancelled: When cancelled between stages
        """
        req = task.request
        settings = self.settings

        log_with_context(
            logger,
            logging.INFO,
            "task_started",
            task_id=task.task_id,
            user_id=task.user_id,
            model_key=req.model_key,
            mode=req.mode,
            stream=req.stream,
            attached_count=len(req.attached_document_ids),
        )

        ctx = await assemble_context(
            self.user_supabase,
            task.user_id,
            req.message,
            req.history,
            req.attached_document_ids,
            channel,
            task.task_id,
            token=token,
            cache=self.cache,
            settings=settings,
        )

        # Model
        channel.status("Calling model")
        model_config = await asyncio.to_thread(self._resolve_model, req.model_key)
        llm = get_llm(model_config, streaming=req.stream)
        messages = build_chat2edit_messages(
            req.mode, task.user_id, req.history, req.message, ctx.web_text, ctx.docs
        )

        async def _on_delta(text: str) -> None:
            channel.delta(text)

        raw = await invoke_model(llm, messages, _on_delta, stream=req.stream)
        token.raise_if_cancelled()

        # Edits
        channel.status("Drafting changes")
        parsed = parse_model_output(raw)
        rows = reconcile_proposals(parsed.proposals, ctx.docs, task.user_id, req.default_owner_scope)

        persisted: list[BoardDocument] = []
        if rows:
            draft = build_changes(rows, ctx.docs)
            channel.docs(
                "draft",
                updated_docs=[d.model_dump() for d in rows],
                changes=[c.model_dump() for c in draft],
                task_id=task.task_id,
            )
            channel.status("Saving documents")
            persisted = await persist_documents(
                self.user_supabase, rows, task.task_id, settings.UPSERT_TIMEOUT_SECONDS
            )
        token.raise_if_cancelled()

        reply = parsed.reply
        persisted, media_note = await self._attach_media(task, ctx, persisted)
        reply = sanitize_image_disclaimers(req.message, append_note(reply, media_note))
        token.raise_if_cancelled()

        await self._reindex(task, ctx, persisted)

        changes = build_changes(persisted, ctx.docs)
        if persisted:
            channel.docs(
                "final",
                updated_docs=[d.model_dump() for d in persisted],
                changes=[c.model_dump() for c in changes],
                task_id=task.task_id,
            )

        billing = await asyncio.to_thread(
            charge_credits, self.service_supabase, task.user_id, model_config.key, task.task_id
        )

        if req.mode == "create":
            reply, _ = await maybe_register_automation(
                self.service_supabase,
                task.user_id,
                req.message,
                reply,
                task.headers,
                task.origin,
                req.model_key,
                task.task_id,
                settings,
            )

        log_with_context(
            logger,
            logging.INFO,
            "task_completed",
            task_id=task.task_id,
            user_id=task.user_id,
            credits_used=billing.credits_used,
            docs_written=len(persisted),
        )
        return Chat2EditResponse(
            reply=reply,
            updated_docs=persisted,
            changes=changes,
            web_search_enabled=ctx.web_search_enabled,
            web_search=ctx.web_search,
            web_search_error=ctx.web_search_error,
            retrieval_error=ctx.retrieval_error,
            task_id=task.task_id,
            credits_used=billing.credits_used,
        )

    async def _attach_media(
        self,
        task: Chat2EditTask,
        ctx: AssembledContext,
        persisted: list[BoardDocument],
    ) -> tuple[list[BoardDocument], str | None]:
        """Attach an image as a separate write; text edits are already stored."""
        req = task.request
        image_model = await asyncio.to_thread(self._resolve_image_model)
        media = await attach_image(self.user_supabase, task.user_id, req.message, persisted, image_model, self.settings)
        if not media.attached:
            return persisted, media.note

        before = {d.id: d.content for d in persisted}
        writes = [d for d in media.docs if before.get(d.id) != d.content]
        writes += create_new_documents(media.new_documents, ctx.docs, task.user_id, req.default_owner_scope)
        try:
            saved = await persist_documents(
                self.user_supabase, writes, task.task_id, self.settings.UPSERT_TIMEOUT_SECONDS
            )
        except PersistenceError:
            return persisted, failure_note(req.message, any(d.id in before for d in writes))
        return _merge_rows(persisted, saved), media.note

    async def _reindex(self, task: Chat2EditTask, ctx: AssembledContext, persisted: list[BoardDocument]) -> None:
        """Bring the retrieval index up to date with the saved documents and advance the watermark."""
        if ctx.embeddings is None or not persisted:
            return

        def _refresh() -> None:
            persona_ids = get_user_persona_ids(self.user_supabase, task.user_id, self.cache)
            ensure_index_fresh(self.user_supabase, task.user_id, persona_ids, ctx.embeddings, self.settings)

        try:
            await asyncio.wait_for(asyncio.to_thread(_refresh), timeout=REINDEX_TIMEOUT_SECONDS)
        except Exception as e:
            log_with_context(logger, logging.WARNING, "reindex_failed", task_id=task.task_id, error=str(e))


async def run_chat2edit(
    pipeline: Chat2EditPipeline,
    task: Chat2EditTask,
    channel: DeliveryChannel,
    token: CancellationToken,
    deadline_seconds: float | None = None,
) -> None:
    """
    Drive one pipeline run and emit exactly one terminal event.

    A deadline aborts the run, records a timed-out assistant turn (when the
    request names a chat) and ends with ``error``. A user stop (task
    cancellation) writes nothing further. The channel is always closed.
    """
    deadline = deadline_seconds if deadline_seconds is not None else pipeline.settings.CHAT2EDIT_DEADLINE_SECONDS
    try:
        response = await asyncio.wait_for(pipeline.run(task, channel, token), timeout=deadline)
        channel.final(response.model_dump(mode="json"))
    except asyncio.TimeoutError:
        token.cancel("deadline")
        log_with_context(logger, logging.WARNING, "task_timed_out", task_id=task.task_id, deadline=deadline)
        await _record_timed_out(pipeline, task)
        channel.error(tag_message("Request timed out", task.task_id))
    except asyncio.CancelledError:
        token.cancel("user")
        log_with_context(logger, logging.INFO, "task_cancelled", task_id=task.task_id)
        raise
    except PipelineCancelled as e:
        log_with_context(logger, logging.INFO, "task_cancelled", task_id=task.task_id, reason=e.reason)
        if e.reason == "deadline":
            await _record_timed_out(pipeline, task)
            channel.error(tag_message("Request timed out", task.task_id))
    except Chat2EditError as e:
        log_with_context(logger, logging.ERROR, "task_failed", task_id=task.task_id, error=e.message)
        channel.error(e.tagged(task.task_id))
    except Exception as e:
        logger.error(f"Unexpected chat2edit failure for task {task.task_id}: {e}", exc_info=True)
        channel.error(tag_message(str(e) or "Streaming failed", task.task_id))
    finally:
        channel.close()


async def _record_timed_out(pipeline: Chat2EditPipeline, task: Chat2EditTask) -> None:
    chat_id = task.request.chat_id
    if not chat_id:
        return
    try:
        await asyncio.to_thread(
            insert_assistant_message, pipeline.user_supabase, chat_id, timed_out_notice(task.request.message)
        )
    except Exception as e:
        log_with_context(logger, logging.ERROR, "timed_out_notice_failed", task_id=task.task_id, error=str(e))
