"""Tests for the remote tree reconciler."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from timsync.core.async_utils import RemoteLimiter
from timsync.core.client import ItemType
from timsync.errors import ReconciliationConflict
from timsync.processing.models import DocumentKind, TIMDocument
from timsync.sync.models import ReconcileState
from timsync.sync.reconciler import Reconciler, validate_structure

from conftest import FakeTimClient

ROOT = "kurssit/demo"


def _doc(path, key=None, title=None):
    return TIMDocument(
        path=path,
        title=title or path.rsplit("/", 1)[-1],
        stable_key=key or f"{path}.md",
        kind=DocumentKind.DOCUMENT,
        processor=MagicMock(),
    )


async def _reconcile(client, documents, **kwargs):
    reconciler = Reconciler(client, RemoteLimiter(4))
    return await reconciler.reconcile(documents, root=ROOT, **kwargs)


def _states(report):
    return {r.stable_key: r.state for r in report.results}


# ---------------------------------------------------------------------------
# validate_structure
# ---------------------------------------------------------------------------


class TestValidateStructure:
    def test_valid_tree(self):
        validate_structure([_doc("a"), _doc("b/c"), _doc("b/d/e")])

    @pytest.mark.parametrize("path", ["", "/a", "a/", "a//b"])
    def test_invalid_paths(self, path):
        with pytest.raises(ReconciliationConflict):
            validate_structure([_doc(path, key="k")])

    def test_duplicate_keys(self):
        with pytest.raises(ReconciliationConflict):
            validate_structure([_doc("a", key="k"), _doc("b", key="k")])

    def test_duplicate_paths(self):
        with pytest.raises(ReconciliationConflict) as exc_info:
            validate_structure([_doc("a", key="x.md"), _doc("a", key="y.md")])
        assert "x.md" in str(exc_info.value)
        assert "y.md" in str(exc_info.value)

    def test_document_shadowing_folder(self):
        with pytest.raises(ReconciliationConflict):
            validate_structure([_doc("lectures"), _doc("lectures/one")])


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------


class TestCreate:
    async def test_creates_documents_and_folders(self, fake_client):
        documents = [_doc("index"), _doc("lectures/week1/intro")]
        report = await _reconcile(fake_client, documents)

        assert _states(report) == {
            "index.md": ReconcileState.CREATED,
            "lectures/week1/intro.md": ReconcileState.CREATED,
        }
        assert report.created_folders == [f"{ROOT}/lectures", f"{ROOT}/lectures/week1"]
        assert fake_client.document(f"{ROOT}/lectures/week1/intro")["kind"] == ItemType.DOCUMENT
        assert all(d.doc_id is not None for d in documents)

    async def test_key_persisted_in_settings(self, fake_client):
        await _reconcile(fake_client, [_doc("index", key="index.md")])
        settings = fake_client.document(f"{ROOT}/index")["settings"]
        assert settings == {"timsync": {"key": "index.md"}}

    async def test_parent_folder_created_once(self, fake_client):
        documents = [_doc(f"shared/doc{i}") for i in range(5)]
        await _reconcile(fake_client, documents)
        creates = [
            c for c in fake_client.operations("create_item") if c[1] == ItemType.FOLDER
        ]
        assert [c[2] for c in creates] == [f"{ROOT}/shared"]

    async def test_missing_root_is_created(self):
        client = FakeTimClient(folders=["kurssit"])
        report = await _reconcile(client, [_doc("index")])
        assert report.created_folders == [ROOT]
        assert _states(report) == {"index.md": ReconcileState.CREATED}

    async def test_failure_is_isolated(self, fake_client):
        fake_client.fail_paths.add(f"{ROOT}/broken")
        report = await _reconcile(fake_client, [_doc("broken"), _doc("fine")])
        states = _states(report)
        assert states["broken.md"] == ReconcileState.FAILED
        assert states["fine.md"] == ReconcileState.CREATED
        assert report.failed[0].error


# ---------------------------------------------------------------------------
# Existing documents
# ---------------------------------------------------------------------------


class TestExisting:
    async def test_second_run_is_a_no_op(self, fake_client):
        documents = [_doc("index"), _doc("lectures/one")]
        await _reconcile(fake_client, documents)
        fake_client.calls.clear()

        report = await _reconcile(fake_client, [_doc("index"), _doc("lectures/one")])
        assert set(_states(report).values()) == {ReconcileState.MATCHED}
        assert fake_client.mutations == []

    async def test_moved_document_keeps_id(self, fake_client):
        doc_id = fake_client.add_document(f"{ROOT}/old/place", title="place", key="a.md")
        report = await _reconcile(fake_client, [_doc("new/place", key="a.md")])

        (result,) = report.results
        assert result.state == ReconcileState.MOVED
        assert result.doc_id == doc_id
        assert result.previous_path == f"{ROOT}/old/place"
        assert fake_client.document(f"{ROOT}/new/place")["id"] == doc_id
        assert f"{ROOT}/old/place" not in fake_client.items

    async def test_retitle(self, fake_client):
        fake_client.add_document(f"{ROOT}/a", title="Old", key="a.md")
        report = await _reconcile(fake_client, [_doc("a", title="New")])
        assert _states(report) == {"a.md": ReconcileState.UPDATED}
        assert fake_client.document(f"{ROOT}/a")["title"] == "New"

    async def test_unkeyed_document_is_adopted(self, fake_client):
        doc_id = fake_client.add_document(f"{ROOT}/a", title="a")
        report = await _reconcile(fake_client, [_doc("a")])
        assert report.results[0].state == ReconcileState.UPDATED
        assert report.results[0].doc_id == doc_id
        assert fake_client.document(f"{ROOT}/a")["settings"] == {"timsync": {"key": "a.md"}}
        assert fake_client.operations("create_item") == []

    async def test_keyed_document_at_path_is_not_adopted(self, fake_client):
        fake_client.add_document(f"{ROOT}/a", title="a", key="other.md")
        report = await _reconcile(fake_client, [_doc("a")])
        assert report.results[0].state == ReconcileState.FAILED

    async def test_move_frees_path_for_new_document(self, fake_client):
        fake_client.add_document(f"{ROOT}/a", title="a", key="a.md")
        report = await _reconcile(
            fake_client, [_doc("b", key="a.md", title="a"), _doc("a", key="new.md")]
        )
        assert _states(report) == {
            "a.md": ReconcileState.MOVED,
            "new.md": ReconcileState.CREATED,
        }

    async def test_duplicate_remote_keys(self, fake_client):
        fake_client.add_document(f"{ROOT}/a", key="k")
        fake_client.add_document(f"{ROOT}/b", key="k")
        with pytest.raises(ReconciliationConflict):
            await _reconcile(fake_client, [_doc("a")])
        assert fake_client.mutations == []


# ---------------------------------------------------------------------------
# Pruning and dry runs
# ---------------------------------------------------------------------------


class TestPrune:
    async def test_default_keeps_stale_documents(self, fake_client):
        fake_client.add_document(f"{ROOT}/stale", key="stale.md")
        await _reconcile(fake_client, [_doc("a")])
        assert f"{ROOT}/stale" in fake_client.items

    async def test_prunes_only_managed_documents(self, fake_client):
        stale_id = fake_client.add_document(f"{ROOT}/stale", key="stale.md")
        fake_client.add_document(f"{ROOT}/handmade")
        report = await _reconcile(fake_client, [_doc("a")], prune=True)

        assert [(r.stable_key, r.path, r.doc_id) for r in report.pruned] == [
            ("stale.md", "stale", stale_id)
        ]
        assert f"{ROOT}/stale" not in fake_client.items
        assert f"{ROOT}/handmade" in fake_client.items

    async def test_renamed_source_reuses_path_of_its_stale_document(self, fake_client):
        stale_id = fake_client.add_document(f"{ROOT}/a", key="old/a.md")
        report = await _reconcile(fake_client, [_doc("a", key="new/a.md")], prune=True)

        assert _states(report) == {
            "new/a.md": ReconcileState.CREATED,
            "old/a.md": ReconcileState.PRUNED,
        }
        assert fake_client.items[f"{ROOT}/a"]["id"] != stale_id
        assert fake_client.items[f"{ROOT}/a"]["settings"] == {"timsync": {"key": "new/a.md"}}


class TestDryRun:
    async def test_plans_without_mutation(self, fake_client):
        fake_client.add_document(f"{ROOT}/old", title="old", key="moved.md")
        fake_client.add_document(f"{ROOT}/same", title="same", key="same.md")
        fake_client.add_document(f"{ROOT}/gone", key="gone.md")
        documents = [
            _doc("same"),
            _doc("new/place", key="moved.md", title="old"),
            _doc("fresh/doc"),
        ]
        report = await _reconcile(fake_client, documents, dry_run=True, prune=True)

        assert report.dry_run
        assert _states(report) == {
            "same.md": ReconcileState.MATCHED,
            "moved.md": ReconcileState.MOVED,
            "fresh/doc.md": ReconcileState.CREATED,
            "gone.md": ReconcileState.PRUNED,
        }
        assert sorted(report.created_folders) == [f"{ROOT}/fresh", f"{ROOT}/new"]
        assert fake_client.mutations == []
