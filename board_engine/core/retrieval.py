"""Retrieval augmentation over the user's own documents.

The index lives in ``persona_doc_chunks``; a per-user watermark makes
refreshing incremental so each request only embeds documents changed since the
last run.
"""

from dataclasses import dataclass
from typing import Any

from board_engine.core.cache import TTLCache
from board_engine.core.chunking import split_text_into_chunks
from board_engine.core.config import Settings, get_settings
from board_engine.core.embeddings import EmbeddingsConfig, embed_texts
from board_engine.core.logging import get_logger
from board_engine.core.schemas_chat2edit import BoardDocument
from board_engine.db.persona_docs import get_docs_by_ids, list_docs_for_index, list_user_persona_ids
from board_engine.db.rag_index import (
    get_index_watermark,
    match_doc_chunks,
    replace_doc_chunks,
    set_index_watermark,
    to_pg_vector,
)

logger = get_logger(__name__)

MATCH_COUNT = 24
MAX_RETRIEVED_DOCS = 12


@dataclass
class IndexStats:
    docs_fetched: int = 0
    docs_indexed: int = 0
    chunks_indexed: int = 0
    indexed_at: str | None = None
    indexed_doc_id: str | None = None


def get_user_persona_ids(supabase: Any, user_id: str, cache: TTLCache | None = None) -> list[str]:
    """List the user's persona ids, served from ``cache`` when present."""
    if cache is None:
        return list_user_persona_ids(supabase, user_id)
    return cache.get_or_set(f"persona_ids:{user_id}", lambda: list_user_persona_ids(supabase, user_id))


def _is_indexable(doc: BoardDocument) -> bool:
    if not (doc.content or "").strip():
        return False
    return "folder=1" not in (doc.type or "")


def index_documents(
    supabase: Any,
    user_id: str,
    docs: list[BoardDocument],
    config: EmbeddingsConfig,
    settings: Settings | None = None,
) -> IndexStats:
    """
    Chunk, embed and store documents, replacing their previous chunks.

    Empty documents and folders are skipped.

    Returns:
        IndexStats; ``indexed_at``/``indexed_doc_id`` describe the last doc indexed
    """
    settings = settings or get_settings()
    stats = IndexStats(docs_fetched=len(docs))

    for doc in docs:
        if not _is_indexable(doc):
            continue
        body = f"{doc.title}\n\n{doc.content}" if doc.title else (doc.content or "")
        chunks = split_text_into_chunks(body, settings.RAG_CHUNK_SIZE, settings.RAG_CHUNK_OVERLAP)
        if not chunks:
            continue

        vectors = embed_texts(chunks, config)
        rows = [
            {
                "user_id": user_id,
                "doc_id": doc.id,
                "persona_id": doc.persona_id,
                "chunk_index": i,
                "content": chunk,
                "embedding": to_pg_vector(vec),
                "doc_updated_at": doc.updated_at,
            }
            for i, (chunk, vec) in enumerate(zip(chunks, vectors))
        ]
        replace_doc_chunks(supabase, user_id, doc.id, rows)

        stats.docs_indexed += 1
        stats.chunks_indexed += len(rows)
        stats.indexed_at = doc.updated_at or stats.indexed_at
        stats.indexed_doc_id = doc.id

    return stats


def ensure_index_fresh(
    supabase: Any,
    user_id: str,
    persona_ids: list[str],
    config: EmbeddingsConfig,
    settings: Settings | None = None,
) -> IndexStats:
    """
    Index documents changed since the user's watermark and advance it.

    Documents updated exactly at the watermark are only re-indexed when their
    id sorts after the watermark doc id.
    """
    last_at, last_doc_id = get_index_watermark(supabase, user_id)
    docs = list_docs_for_index(supabase, user_id, persona_ids, updated_after=last_at)

    if last_at and last_doc_id:
        pending = []
        for doc in docs:
            if not doc.updated_at:
                continue
            if doc.updated_at > last_at or (doc.updated_at == last_at and doc.id > last_doc_id):
                pending.append(doc)
    else:
        pending = docs

    if not pending:
        return IndexStats(docs_fetched=len(docs))

    stats = index_documents(supabase, user_id, pending, config, settings)
    if stats.indexed_at and stats.indexed_doc_id:
        set_index_watermark(supabase, user_id, stats.indexed_at, stats.indexed_doc_id)

    logger.info(
        f"Refreshed retrieval index for user {user_id}: "
        f"{stats.docs_indexed} docs, {stats.chunks_indexed} chunks"
    )
    return stats


def retrieve_relevant_docs(
    supabase: Any,
    user_id: str,
    persona_ids: list[str],
    query: str,
    config: EmbeddingsConfig,
    max_docs: int = 6,
) -> list[BoardDocument]:
    """
    Find the user's documents most similar to ``query``.

    Returns:
        Up to ``max_docs`` documents (clamped to 1..12), best match first
    """
    max_docs = min(max(max_docs, 1), MAX_RETRIEVED_DOCS)
    vectors = embed_texts([query], config)
    if not vectors:
        return []

    matches = match_doc_chunks(supabase, vectors[0], persona_ids, user_id, match_count=MATCH_COUNT)

    scored = []
    for match in matches:
        doc_id = match.get("doc_id")
        try:
            score = float(match.get("similarity"))
        except (TypeError, ValueError):
            continue
        if isinstance(doc_id, str) and doc_id:
            scored.append((score, doc_id))
    scored.sort(key=lambda item: item[0], reverse=True)

    doc_ids: list[str] = []
    for _, doc_id in scored:
        if doc_id in doc_ids:
            continue
        doc_ids.append(doc_id)
        if len(doc_ids) >= max_docs:
            break

    return get_docs_by_ids(supabase, doc_ids)
