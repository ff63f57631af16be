"""Database operations for persona_docs table."""

from typing import Any

from board_engine.core.logging import get_logger
from board_engine.core.schemas_chat2edit import BoardDocument

logger = get_logger(__name__)

DOC_COLUMNS = "id,persona_id,title,content,type,updated_at"
PAGE_SIZE = 200


def private_doc_prefix(user_id: str) -> str:
    return f"private-{user_id}-"


def make_private_doc_id(user_id: str, clean_id: str) -> str:
    """Row id for a document in the caller's private scope."""
    return f"{private_doc_prefix(user_id)}{clean_id}"


def make_persona_doc_id(persona_id: str, clean_id: str) -> str:
    """Row id for a document owned by a persona."""
    return f"{persona_id}-{clean_id}"


def get_docs_by_ids(supabase: Any, doc_ids: list[str]) -> list[BoardDocument]:
    """
    Load documents by id.

    Args:
        supabase: Supabase client (user-scoped so RLS applies)
        doc_ids: Document ids

    Returns:
        Documents in the order of ``doc_ids``; unknown ids are skipped
    """
    if not doc_ids:
        return []

    response = supabase.table("persona_docs").select(DOC_COLUMNS).in_("id", doc_ids).execute()
    rows = [BoardDocument(**row) for row in (response.data or [])]
    by_id = {doc.id: doc for doc in rows}
    return [by_id[doc_id] for doc_id in doc_ids if doc_id in by_id]


def upsert_docs(supabase: Any, docs: list[BoardDocument]) -> list[BoardDocument]:
    """
    Insert or update documents in one batch.

    Args:
        supabase: Supabase client
        docs: Full rows to write

    Returns:
        Persisted rows as returned by the store
    """
    if not docs:
        return []

    response = supabase.table("persona_docs").upsert([doc.to_row() for doc in docs]).execute()
    persisted = [BoardDocument(**row) for row in (response.data or [])]

    logger.info(f"Upserted {len(persisted)} persona docs")
    return persisted


def list_docs_for_index(
    supabase: Any,
    user_id: str,
    persona_ids: list[str],
    updated_after: str | None = None,
) -> list[BoardDocument]:
    """
    List every document the user owns, oldest change first.

    Covers persona-owned docs plus the user's private docs, paged through in
    ``PAGE_SIZE`` batches and de-duplicated by id.

    Args:
        supabase: Supabase client
        user_id: Owner user id
        persona_ids: Persona ids owned by the user
        updated_after: Optional ISO watermark (inclusive)

    Returns:
        Documents ordered by (updated_at, id)
    """
    collected: list[dict] = []

    def _page(build) -> None:
        offset = 0
        while True:
            query = build().order("updated_at", desc=False).order("id", desc=False)
            if updated_after:
                query = query.gte("updated_at", updated_after)
            rows = query.range(offset, offset + PAGE_SIZE - 1).execute().data or []
            collected.extend(rows)
            if len(rows) < PAGE_SIZE:
                break
            offset += PAGE_SIZE

    if persona_ids:
        _page(lambda: supabase.table("persona_docs").select(DOC_COLUMNS).in_("persona_id", persona_ids))

    prefix = private_doc_prefix(user_id)
    _page(
        lambda: supabase.table("persona_docs")
        .select(DOC_COLUMNS)
        .is_("persona_id", "null")
        .like("id", f"{prefix}%")
    )

    seen: set[str] = set()
    docs = []
    for row in collected:
        doc_id = row.get("id")
        if not doc_id or doc_id in seen:
            continue
        seen.add(doc_id)
        docs.append(BoardDocument(**row))
    return docs


def list_user_persona_ids(supabase: Any, user_id: str) -> list[str]:
    """List ids of personas owned by a user."""
    response = supabase.table("personas").select("id").eq("user_id", user_id).execute()
    return [row["id"] for row in (response.data or []) if row.get("id")]
