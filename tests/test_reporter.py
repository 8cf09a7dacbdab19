"""Tests for sync report formatting."""

from __future__ import annotations

import json

from timsync.sync.models import DocumentResult, ReconcileState, SyncReport, UploadState
from timsync.sync.reporter import (
    format_dry_run_preview,
    format_sync_report,
    report_to_json,
)


def _report(results, **kwargs):
    return SyncReport(
        target_name="default",
        root="kurssit/demo",
        results=results,
        started_at="2026-10-19T10:00:00+00:00",
        completed_at="2026-10-19T10:00:05+00:00",
        **kwargs,
    )


RESULTS = [
    DocumentResult(
        stable_key="index.md", path="index", doc_id=1,
        state=ReconcileState.CREATED, upload=UploadState.UPLOADED,
    ),
    DocumentResult(
        stable_key="a.md", path="archive/a", doc_id=2, previous_path="kurssit/demo/a",
        state=ReconcileState.MOVED, upload=UploadState.UNCHANGED,
    ),
    DocumentResult(
        stable_key="b.md", path="b", doc_id=3,
        state=ReconcileState.MATCHED, upload=UploadState.FAILED, error="Could not render b.md: boom",
    ),
    DocumentResult(stable_key="old.md", path="old", doc_id=4, state=ReconcileState.PRUNED),
]


class TestSyncReport:
    def test_counts(self):
        report = _report(RESULTS)
        assert len(report.created) == 1
        assert len(report.moved) == 1
        assert len(report.pruned) == 1
        assert len(report.uploaded) == 1
        assert len(report.unchanged) == 1
        assert [r.stable_key for r in report.errors] == ["b.md"]
        assert not report.ok

    def test_ok(self):
        assert _report(RESULTS[:2]).ok
        assert not _report(RESULTS[:2], error="sync aborted").ok

    def test_summary(self):
        summary = _report(RESULTS, error="sync aborted").summary()
        assert "Created:   1" in summary
        assert "Errors:    1" in summary
        assert "Aborted:   sync aborted" in summary


class TestFormatSyncReport:
    def test_sections(self):
        text = format_sync_report(_report(RESULTS, created_folders=["kurssit/demo/archive"]))

        assert text.startswith("Sync report for 'default' -> kurssit/demo")
        assert "Synced 4 documents: 1 uploaded, 1 created, 1 moved, 1 pruned, 1 errors" in text
        assert "Created folders:\n  kurssit/demo/archive" in text
        assert "  kurssit/demo/a -> archive/a (id 2)" in text
        assert "Errors:\n  b: Could not render b.md: boom" in text
        assert "Unchanged: 1 documents" in text
        assert "Updated:" not in text

    def test_run_level_error(self):
        text = format_sync_report(_report([], error="Malformed front matter in a.md: bad"))
        assert "Sync stopped: Malformed front matter in a.md: bad" in text


class TestDryRunPreview:
    def test_groups(self):
        plan = [
            DocumentResult(stable_key="n.md", path="new", state=ReconcileState.CREATED),
            DocumentResult(stable_key="s.md", path="same", doc_id=5, state=ReconcileState.MATCHED),
            DocumentResult(stable_key="g.md", path="gone", doc_id=6, state=ReconcileState.PRUNED),
        ]
        text = format_dry_run_preview(
            _report(plan, dry_run=True, created_folders=["kurssit/demo/x"])
        )

        assert text.startswith("DRY RUN -- No changes will be made")
        assert "[CREATE FOLDER]\n  kurssit/demo/x" in text
        assert "[CREATE]\n  new" in text
        assert "[DELETE]\n  gone (id 6)" in text
        assert "In place: 1 documents" in text
        assert "No structural changes needed." not in text

    def test_nothing_to_do(self):
        plan = [DocumentResult(stable_key="s.md", path="same", doc_id=5, state=ReconcileState.MATCHED)]
        text = format_dry_run_preview(_report(plan, dry_run=True))
        assert "No structural changes needed." in text


class TestReportToJson:
    def test_structure(self):
        data = report_to_json(_report(RESULTS))

        assert data["target_name"] == "default"
        assert data["counts"]["total"] == 4
        assert data["counts"]["errors"] == 1
        moved = data["results"][1]
        assert moved["state"] == "moved"
        assert moved["upload"] == "unchanged"
        assert moved["previous_path"] == "kurssit/demo/a"
        assert data["results"][3]["upload"] is None
        json.dumps(data)
