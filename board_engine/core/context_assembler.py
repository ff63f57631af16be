"""Context assembly for chat2edit: documents, retrieval and web research.

Attached documents are required; retrieval and web search are optional and
each degrade to empty context (with a logged correlation tag) when they fail
or exceed their own sub-timeout.
"""

import asyncio
import logging
import re
import uuid
from dataclasses import dataclass, field
from typing import Any

from board_engine.core.cache import TTLCache
from board_engine.core.config import Settings, get_settings
from board_engine.core.delivery import CancellationToken, DeliveryChannel
from board_engine.core.embeddings import EmbeddingsConfig, resolve_embeddings_config
from board_engine.core.errors import DocumentLoadError
from board_engine.core.logging import get_logger, log_with_context
from board_engine.core.retrieval import ensure_index_fresh, get_user_persona_ids, retrieve_relevant_docs
from board_engine.core.schemas_chat2edit import BoardDocument, ChatTurn, WebSearchInfo, WebSearchResult
from board_engine.core.web_search import format_results_for_prompt, run_web_search
from board_engine.db.persona_docs import get_docs_by_ids

logger = get_logger(__name__)

URL_RE = re.compile(r"https?://[^\s<>\"'()]+")
QUOTED_RE = re.compile(r"[《“\"']([^》”\"']{4,80})[》”\"']")
LABELLED_RE = re.compile(r"(?:标题|文章|来源)[:：]\s*([^\n]{4,80})")


@dataclass
class AssembledContext:
    """Everything the model prompt and the reconciler need."""

    docs: list[BoardDocument] = field(default_factory=list)
    embeddings: EmbeddingsConfig | None = None
    web_search_enabled: bool = False
    web_query: str = ""
    web_results: list[WebSearchResult] = field(default_factory=list)
    web_text: str = ""
    web_search_error: str | None = None
    retrieval_error: str | None = None

    @property
    def web_search(self) -> WebSearchInfo | None:
        if not self.web_search_enabled:
            return None
        return WebSearchInfo(query=self.web_query, results=self.web_results)


def extract_urls(text: str) -> list[str]:
    """URLs in order of first appearance, de-duplicated."""
    seen: dict[str, None] = {}
    for match in URL_RE.findall(text or ""):
        url = match.strip()
        if url:
            seen.setdefault(url, None)
    return list(seen)


def pick_web_search_query(message: str, history: list[ChatTurn], docs: list[BoardDocument]) -> str:
    """
    Choose the web search query for a request.

    Order: a URL in the instruction, a quoted or labelled title in the
    instruction, the most recent URL in history, the first titled document,
    then the instruction itself.
    """
    message = (message or "").strip()
    urls = extract_urls(message)
    if urls:
        return urls[0]

    for pattern in (QUOTED_RE, LABELLED_RE):
        match = pattern.search(message)
        if match and match.group(1).strip():
            return match.group(1).strip()

    for turn in reversed(history):
        urls = extract_urls(turn.content)
        if urls:
            return urls[0]

    for doc in docs:
        if doc.title and doc.title.strip():
            return doc.title.strip()

    return message


def load_documents(supabase: Any, doc_ids: list[str], task_id: str) -> list[BoardDocument]:
    """
    Load attached documents.

    Raises:
        DocumentLoadError: If the store query fails
    """
    if not doc_ids:
        return []
    try:
        return get_docs_by_ids(supabase, doc_ids)
    except Exception as e:
        log_with_context(logger, logging.ERROR, "load_docs_error", task_id=task_id, error=str(e))
        raise DocumentLoadError(f"Failed to load documents: {e}", task_id) from e


def _retrieve_sync(
    supabase: Any,
    user_id: str,
    query: str,
    embeddings: EmbeddingsConfig,
    max_docs: int,
    cache: TTLCache | None,
    settings: Settings,
) -> list[BoardDocument]:
    persona_ids = get_user_persona_ids(supabase, user_id, cache)
    ensure_index_fresh(supabase, user_id, persona_ids, embeddings, settings)
    return retrieve_relevant_docs(supabase, user_id, persona_ids, query, embeddings, max_docs=max_docs)


def _merge_docs(docs: list[BoardDocument], extra: list[BoardDocument]) -> list[BoardDocument]:
    seen = {d.id for d in docs}
    merged = list(docs)
    for doc in extra:
        if doc.id in seen:
            continue
        merged.append(doc)
        seen.add(doc.id)
    return merged


async def assemble_context(
    supabase: Any,
    user_id: str,
    message: str,
    history: list[ChatTurn],
    attached_ids: list[str],
    channel: DeliveryChannel,
    task_id: str,
    token: CancellationToken | None = None,
    cache: TTLCache | None = None,
    settings: Settings | None = None,
) -> AssembledContext:
    """
    Gather documents, retrieved context and web research for one request.

    Status events narrate each step on ``channel``.

    Raises:
        DocumentLoadError: If attached documents cannot be loaded
        PipelineCancelled: If the request is cancelled between steps
    """
    settings = settings or get_settings()
    token = token or CancellationToken()
    ctx = AssembledContext()

    channel.status("Loading documents")
    ctx.docs = await asyncio.to_thread(load_documents, supabase, attached_ids, task_id)
    token.raise_if_cancelled()

    # Retrieval
    ctx.embeddings = resolve_embeddings_config(settings) if settings.RAG_ENABLED else None
    if ctx.embeddings is not None:
        channel.status("Retrieving context")
        try:
            retrieved = await asyncio.wait_for(
                asyncio.to_thread(
                    _retrieve_sync,
                    supabase,
                    user_id,
                    message,
                    ctx.embeddings,
                    4 if attached_ids else 6,
                    cache,
                    settings,
                ),
                timeout=settings.RAG_TIMEOUT_SECONDS,
            )
            ctx.docs = _merge_docs(ctx.docs, retrieved)
        except Exception as e:
            ctx.retrieval_error = str(uuid.uuid4())
            log_with_context(
                logger,
                logging.WARNING,
                "retrieval_failed",
                task_id=task_id,
                tag=ctx.retrieval_error,
                error_type=type(e).__name__,
                error=str(e),
            )
        token.raise_if_cancelled()

    # Web research
    ctx.web_search_enabled = settings.ENABLE_WEB_SEARCH
    ctx.web_query = pick_web_search_query(message, history, ctx.docs)
    if not ctx.web_search_enabled:
        channel.status("Web search disabled")
        return ctx

    channel.status("Web search started")
    try:
        ctx.web_results = await asyncio.wait_for(
            run_web_search(ctx.web_query, settings.WEB_SEARCH_RESULT_LIMIT, settings),
            timeout=settings.WEB_SEARCH_TIMEOUT_SECONDS,
        )
        ctx.web_text = format_results_for_prompt(ctx.web_results)
    except Exception as e:
        ctx.web_search_error = str(uuid.uuid4())
        ctx.web_results = []
        ctx.web_text = ""
        log_with_context(
            logger,
            logging.WARNING,
            "web_search_failed",
            task_id=task_id,
            tag=ctx.web_search_error,
            query=ctx.web_query,
            provider=settings.WEB_SEARCH_PROVIDER or "auto",
            error_type=type(e).__name__,
            error=str(e),
        )
    token.raise_if_cancelled()

    if ctx.web_search_error:
        channel.status(f"Web search error: {ctx.web_search_error}")
        return ctx

    channel.status(f"Web search: {len(ctx.web_results)} results")
    for i, result in enumerate(ctx.web_results[:3]):
        prefix = "Top source" if i == 0 else f"Source {i + 1}"
        channel.status(f"{prefix}: {result.title or 'Untitled'}")
    return ctx
