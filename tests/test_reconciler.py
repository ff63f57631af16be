"""Tests for reconciling model edits with loaded documents."""

import pytest

from board_engine.core.errors import PersistenceError
from board_engine.core.reconciler import (
    build_changes,
    create_new_documents,
    persist_documents,
    reconcile_proposals,
    resolve_existing,
)
from board_engine.core.schemas_chat2edit import BoardDocument, EditProposal
from tests.fakes.fake_supabase import FakeSupabase

NOW = "2026-01-01T00:00:00+00:00"


def _doc(doc_id: str, title: str, persona_id: str | None = "p1", kind: str = "persona", content: str = "<p>old</p>"):
    return BoardDocument(id=doc_id, persona_id=persona_id, title=title, content=content, type=kind, updated_at=NOW)


def _fixed_id():
    return "new-1"


class TestResolveExisting:
    def test_id_match(self):
        docs = [_doc("p1-a", "Bio"), _doc("p1-b", "Goals")]
        assert resolve_existing(EditProposal(target_id="p1-b"), docs).id == "p1-b"

    def test_single_loaded_doc_when_id_missing(self):
        docs = [_doc("p1-a", "Bio")]
        assert resolve_existing(EditProposal(target_title="Something else"), docs).id == "p1-a"

    def test_title_match_is_case_insensitive(self):
        docs = [_doc("p1-a", "Bio"), _doc("p1-b", "  Weekly Goals ")]
        assert resolve_existing(EditProposal(target_title="weekly goals"), docs).id == "p1-b"

    def test_unknown_id_falls_back_to_title(self):
        docs = [_doc("p1-a", "Bio")]
        assert resolve_existing(EditProposal(target_id="missing", target_title="bio"), docs).id == "p1-a"

    def test_no_match(self):
        docs = [_doc("p1-a", "Bio"), _doc("p1-b", "Goals")]
        assert resolve_existing(EditProposal(target_title="Recipes"), docs) is None


class TestReconcileProposals:
    def test_existing_doc_keeps_id_owner_and_type(self):
        docs = [_doc("p1-a", "Bio", kind="persona")]
        rows = reconcile_proposals(
            [EditProposal(target_id="p1-a", content="<p>new</p>")], docs, "u1", now=NOW
        )

        assert len(rows) == 1
        assert rows[0].id == "p1-a"
        assert rows[0].persona_id == "p1"
        assert rows[0].title == "Bio"
        assert rows[0].type == "persona"
        assert rows[0].content == "<p>new</p>"

    def test_new_doc_inherits_first_loaded_owner(self):
        docs = [_doc("p1-a", "Bio", kind="post;folder=0"), _doc("p1-b", "Goals")]
        rows = reconcile_proposals(
            [EditProposal(target_title="Fresh post", content="hello")], docs, "u1", now=NOW, id_factory=_fixed_id
        )

        assert rows[0].id == "p1-new-1"
        assert rows[0].persona_id == "p1"
        assert rows[0].type == "post;folder=0"

    def test_new_doc_uses_default_owner_scope(self):
        rows = reconcile_proposals(
            [EditProposal(target_title="Fresh", content="x")], [], "u1", "p9", now=NOW, id_factory=_fixed_id
        )

        assert rows[0].id == "p9-new-1"
        assert rows[0].persona_id == "p9"
        assert rows[0].type == "persona"

    def test_new_doc_without_scope_is_private(self):
        rows = reconcile_proposals([EditProposal(content="x")], [], "u1", now=NOW, id_factory=_fixed_id)

        assert rows[0].id == "private-u1-new-1"
        assert rows[0].persona_id is None
        assert rows[0].title == "Untitled"

    def test_duplicate_targets_collapse_to_last(self):
        docs = [_doc("p1-a", "Bio"), _doc("p1-b", "Goals")]
        rows = reconcile_proposals(
            [
                EditProposal(target_id="p1-a", content="first"),
                EditProposal(target_id="p1-b", content="goals"),
                EditProposal(target_title="bio", content="second"),
            ],
            docs,
            "u1",
            now=NOW,
        )

        assert [r.id for r in rows] == ["p1-a", "p1-b"]
        assert rows[0].content == "second"


def test_create_new_documents_never_binds_to_loaded_doc():
    docs = [_doc("p1-a", "Bio")]
    rows = create_new_documents(
        [EditProposal(target_title="Generated Image", content="<p><img /></p>", kind="photos;folder=0;parent=")],
        docs,
        "u1",
        now=NOW,
        id_factory=_fixed_id,
    )

    assert rows[0].id == "p1-new-1"
    assert rows[0].type == "photos;folder=0;parent="


def test_build_changes_pairs_before_and_after():
    before = [_doc("p1-a", "Bio", content="<p>a</p>")]
    after = [
        BoardDocument(id="p1-a", persona_id="p1", title="Bio v2", content="<p>a</p><p>b</p>", type="persona"),
        BoardDocument(id="p1-new", persona_id="p1", title="New", content="<p>c</p>", type="persona"),
    ]
    changes = build_changes(after, before)

    assert changes[0].title_before == "Bio"
    assert changes[0].title_after == "Bio v2"
    assert changes[0].stats.inserted == 1
    assert changes[0].stats.unchanged == 1
    assert changes[1].content_before is None
    assert changes[1].stats.inserted == 1


@pytest.mark.asyncio
async def test_persist_documents_writes_batch():
    supabase = FakeSupabase()
    rows = [_doc("p1-a", "Bio"), _doc("p1-b", "Goals")]

    persisted = await persist_documents(supabase, rows, "task-1", timeout=5)

    assert [d.id for d in persisted] == ["p1-a", "p1-b"]
    assert len(supabase.rows("persona_docs")) == 2
    assert supabase.calls.count(("persona_docs", "upsert")) == 1


@pytest.mark.asyncio
async def test_persist_documents_failure_raises():
    supabase = FakeSupabase()
    supabase.failures[("persona_docs", "upsert")] = RuntimeError("db down")

    with pytest.raises(PersistenceError) as exc:
        await persist_documents(supabase, [_doc("p1-a", "Bio")], "task-1", timeout=5)

    assert exc.value.tagged() == "db down (Request ID: task-1)"


@pytest.mark.asyncio
async def test_persist_nothing():
    supabase = FakeSupabase()
    assert await persist_documents(supabase, [], "task-1", timeout=5) == []
    assert supabase.calls == []
