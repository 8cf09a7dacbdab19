"""Pydantic models for reconciliation and sync results.

- ``ReconcileState``: what the reconciler did (or would do) to a document.
- ``UploadState``: what happened to a document's content.
- ``DocumentResult``: outcome for one document.
- ``ReconcileReport``: outcome of one reconciliation.
- ``SyncReport``: aggregate results for a full sync run.

All models are frozen (immutable).
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel


class ReconcileState(str, Enum):
    """Reconciliation outcome for one document."""

    UNMATCHED = "unmatched"
    MATCHED = "matched"
    CREATED = "created"
    UPDATED = "updated"
    MOVED = "moved"
    FAILED = "failed"
    PRUNED = "pruned"


class UploadState(str, Enum):
    """Content outcome for one document."""

    UPLOADED = "uploaded"
    UNCHANGED = "unchanged"
    SKIPPED = "skipped"
    FAILED = "failed"


class DocumentResult(BaseModel):
    """Result for one document.

    Attributes:
        stable_key: Key matching the document across runs.
        path: Target path below the target root.
        doc_id: Remote id, if the document exists remotely.
        state: Reconciliation outcome.
        upload: Content outcome; ``None`` before the upload stage.
        previous_path: Remote path before a move.
        error: Error message if something failed.
    """

    stable_key: str
    path: str
    doc_id: int | None = None
    state: ReconcileState = ReconcileState.UNMATCHED
    upload: UploadState | None = None
    previous_path: str | None = None
    error: str | None = None

    model_config = {"frozen": True}

    @property
    def success(self) -> bool:
        return (
            self.state != ReconcileState.FAILED
            and self.upload != UploadState.FAILED
        )


class ReconcileReport(BaseModel):
    """Outcome of reconciling the desired tree against the remote tree.

    Attributes:
        root: Remote root folder.
        dry_run: Whether mutations were only planned.
        results: One result per desired document, plus pruned documents.
        created_folders: Remote folders created (or to be created).
    """

    root: str
    dry_run: bool = False
    results: list[DocumentResult] = []
    created_folders: list[str] = []

    model_config = {"frozen": True}

    def by_key(self) -> dict[str, DocumentResult]:
        return {r.stable_key: r for r in self.results}

    @property
    def failed(self) -> list[DocumentResult]:
        return [r for r in self.results if r.state == ReconcileState.FAILED]

    @property
    def pruned(self) -> list[DocumentResult]:
        return [r for r in self.results if r.state == ReconcileState.PRUNED]


class SyncReport(BaseModel):
    """Aggregate report for a full sync run.

    Attributes:
        target_name: Name of the sync target used.
        root: Remote root folder of the target.
        dry_run: Whether this was a dry run (no changes applied).
        results: Per-document results.
        created_folders: Remote folders created during reconciliation.
        error: Run-level failure that stopped the sync, if any.
        started_at: ISO 8601 timestamp when sync started.
        completed_at: ISO 8601 timestamp when sync completed.
    """

    target_name: str
    root: str = ""
    dry_run: bool = False
    results: list[DocumentResult] = []
    created_folders: list[str] = []
    error: str | None = None
    started_at: str
    completed_at: str | None = None

    model_config = {"frozen": True}

    def _with_state(self, state: ReconcileState) -> list[DocumentResult]:
        return [r for r in self.results if r.state == state]

    @property
    def created(self) -> list[DocumentResult]:
        return self._with_state(ReconcileState.CREATED)

    @property
    def moved(self) -> list[DocumentResult]:
        return self._with_state(ReconcileState.MOVED)

    @property
    def updated(self) -> list[DocumentResult]:
        return self._with_state(ReconcileState.UPDATED)

    @property
    def matched(self) -> list[DocumentResult]:
        return self._with_state(ReconcileState.MATCHED)

    @property
    def pruned(self) -> list[DocumentResult]:
        return self._with_state(ReconcileState.PRUNED)

    @property
    def uploaded(self) -> list[DocumentResult]:
        return [r for r in self.results if r.upload == UploadState.UPLOADED]

    @property
    def unchanged(self) -> list[DocumentResult]:
        return [r for r in self.results if r.upload == UploadState.UNCHANGED]

    @property
    def errors(self) -> list[DocumentResult]:
        """Results where something failed."""
        return [r for r in self.results if not r.success]

    @property
    def ok(self) -> bool:
        return self.error is None and not self.errors

    def summary(self) -> str:
        """Format a human-readable summary of the sync run.

        Returns:
            Multi-line summary string with counts by outcome.
        """
        lines = [
            f"Sync report for target '{self.target_name}'"
            + (" (dry run)" if self.dry_run else ""),
            f"  Created:   {len(self.created)}",
            f"  Moved:     {len(self.moved)}",
            f"  Updated:   {len(self.updated)}",
            f"  Matched:   {len(self.matched)}",
            f"  Pruned:    {len(self.pruned)}",
            f"  Uploaded:  {len(self.uploaded)}",
            f"  Unchanged: {len(self.unchanged)}",
            f"  Folders:   {len(self.created_folders)}",
            f"  Errors:    {len(self.errors)}",
            f"  Total:     {len(self.results)}",
        ]
        if self.error:
            lines.append(f"  Aborted:   {self.error}")
        return "\n".join(lines)
