"""Database operations for the retrieval index (persona_doc_chunks + watermark)."""

from datetime import datetime, timezone
from typing import Any

INSERT_BATCH_SIZE = 200


def get_index_watermark(supabase: Any, user_id: str) -> tuple[str | None, str | None]:
    """
    Read the user's incremental index watermark.

    Returns:
        (last_indexed_at, last_indexed_doc_id); (None, None) when never indexed
    """
    response = (
        supabase.table("rag_user_index_state")
        .select("last_indexed_at,last_indexed_doc_id")
        .eq("user_id", user_id)
        .maybe_single()
        .execute()
    )
    row = response.data if response is not None else None
    if not row:
        return None, None
    return row.get("last_indexed_at"), row.get("last_indexed_doc_id")


def set_index_watermark(supabase: Any, user_id: str, indexed_at: str, doc_id: str) -> None:
    supabase.table("rag_user_index_state").upsert(
        {
            "user_id": user_id,
            "last_indexed_at": indexed_at,
            "last_indexed_doc_id": doc_id,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }
    ).execute()


def replace_doc_chunks(supabase: Any, user_id: str, doc_id: str, rows: list[dict]) -> None:
    """Delete a document's chunks and insert the new ones in batches."""
    supabase.table("persona_doc_chunks").delete().eq("user_id", user_id).eq("doc_id", doc_id).execute()
    for start in range(0, len(rows), INSERT_BATCH_SIZE):
        supabase.table("persona_doc_chunks").insert(rows[start : start + INSERT_BATCH_SIZE]).execute()


def match_doc_chunks(
    supabase: Any,
    query_embedding: list[float],
    persona_ids: list[str],
    user_id: str,
    match_count: int = 24,
) -> list[dict]:
    """
    Vector search over indexed chunks.

    Returns:
        Rows with doc_id and similarity
    """
    response = supabase.rpc(
        "match_persona_doc_chunks",
        {
            "query_embedding": to_pg_vector(query_embedding),
            "match_count": match_count,
            "persona_ids": persona_ids,
            "owner_user_id": user_id,
        },
    ).execute()
    return response.data or []


def to_pg_vector(vec: list[float]) -> str:
    return "[" + ",".join(str(v) for v in vec) + "]"
