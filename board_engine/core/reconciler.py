"""Reconcile model-proposed edits against the loaded documents and persist them."""

import asyncio
import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from board_engine.core.diff_engine import summarize_change
from board_engine.core.errors import PersistenceError
from board_engine.core.logging import get_logger, log_with_context
from board_engine.core.schemas_chat2edit import BoardDocument, DocumentChange, EditProposal
from board_engine.db.persona_docs import make_persona_doc_id, make_private_doc_id, upsert_docs

logger = get_logger(__name__)

DEFAULT_TITLE = "Untitled"
DEFAULT_TYPE = "persona"


def normalize_title(title: str | None) -> str:
    return (title or "").strip().lower()


def resolve_existing(proposal: EditProposal, docs: list[BoardDocument]) -> BoardDocument | None:
    """
    Find the loaded document a proposal targets.

    Order: exact id; the only loaded document when the proposal has no id;
    case-insensitive trimmed title. None means a new document.
    """
    if proposal.target_id:
        match = next((d for d in docs if d.id == proposal.target_id), None)
        if match is not None:
            return match
    elif len(docs) == 1:
        return docs[0]

    key = normalize_title(proposal.target_title)
    if not key:
        return None
    return next((d for d in docs if normalize_title(d.title) == key), None)


def reconcile_proposals(
    proposals: list[EditProposal],
    docs: list[BoardDocument],
    user_id: str,
    default_owner_scope: str | None = None,
    now: str | None = None,
    id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
) -> list[BoardDocument]:
    """
    Turn proposals into full rows ready for a single batch upsert.

    Existing documents keep their id and owner; new documents are scoped to
    the first loaded document's owner, or (with nothing loaded) to
    ``default_owner_scope`` or the caller's private scope. Several proposals
    resolving to the same document collapse to the last one.

    Args:
        proposals: Parsed model proposals
        docs: Documents the model saw
        user_id: Caller, for private-scope ids
        default_owner_scope: Persona id for new docs when nothing was loaded
        now: ISO timestamp stamped on every row
        id_factory: Source of fresh ids

    Returns:
        Rows in first-seen order
    """
    now = now or datetime.now(timezone.utc).isoformat()
    rows: dict[str, BoardDocument] = {}

    for proposal in proposals:
        existing = resolve_existing(proposal, docs)
        if existing is not None:
            row = BoardDocument(
                id=existing.id,
                persona_id=existing.persona_id,
                title=proposal.target_title if proposal.target_title is not None else existing.title,
                content=proposal.content,
                type=proposal.kind if proposal.kind is not None else existing.type,
                updated_at=now,
            )
        else:
            row = _new_document(proposal, docs, user_id, default_owner_scope, now, id_factory())
        rows[row.id] = row

    return list(rows.values())


def create_new_documents(
    proposals: list[EditProposal],
    docs: list[BoardDocument],
    user_id: str,
    default_owner_scope: str | None = None,
    now: str | None = None,
    id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
) -> list[BoardDocument]:
    """Rows for proposals that always become new documents, scoped like reconciled inserts."""
    now = now or datetime.now(timezone.utc).isoformat()
    return [_new_document(p, docs, user_id, default_owner_scope, now, id_factory()) for p in proposals]


def _new_document(
    proposal: EditProposal,
    docs: list[BoardDocument],
    user_id: str,
    default_owner_scope: str | None,
    now: str,
    clean_id: str,
) -> BoardDocument:
    if docs:
        base = docs[0]
        owner = base.persona_id
        kind = proposal.kind or base.type or DEFAULT_TYPE
    else:
        owner = default_owner_scope
        kind = proposal.kind or DEFAULT_TYPE

    doc_id = make_persona_doc_id(owner, clean_id) if owner else make_private_doc_id(user_id, clean_id)
    return BoardDocument(
        id=doc_id,
        persona_id=owner,
        title=proposal.target_title if proposal.target_title is not None else DEFAULT_TITLE,
        content=proposal.content,
        type=kind,
        updated_at=now,
    )


def build_changes(after_docs: list[BoardDocument], before_docs: list[BoardDocument]) -> list[DocumentChange]:
    """Pair each written row with its pre-edit state and block statistics."""
    before_by_id = {d.id: d for d in before_docs}
    changes = []
    for after in after_docs:
        before = before_by_id.get(after.id)
        change = DocumentChange(
            id=after.id,
            persona_id=after.persona_id,
            title_before=before.title if before else None,
            title_after=after.title,
            content_before=before.content if before else None,
            content_after=after.content,
            type_before=before.type if before else None,
            type_after=after.type,
        )
        change.stats = summarize_change(change)
        changes.append(change)
    return changes


async def persist_documents(
    supabase: Any,
    rows: list[BoardDocument],
    task_id: str,
    timeout: float,
) -> list[BoardDocument]:
    """
    Write all rows in one batch upsert.

    Raises:
        PersistenceError: If the upsert fails or times out
    """
    if not rows:
        return []
    try:
        return await asyncio.wait_for(asyncio.to_thread(upsert_docs, supabase, rows), timeout=timeout)
    except asyncio.TimeoutError as e:
        log_with_context(logger, logging.ERROR, "save_docs_error", task_id=task_id, error="timeout")
        raise PersistenceError("Upsert documents timed out", task_id) from e
    except Exception as e:
        log_with_context(logger, logging.ERROR, "save_docs_error", task_id=task_id, error=str(e))
        raise PersistenceError(str(e) or "Failed to save documents", task_id) from e
