"""Sync report formatting functions.

Provides human-readable and machine-readable output for sync runs:

- ``format_sync_report`` -- full post-sync summary.
- ``format_dry_run_preview`` -- dry-run preview grouped by planned change.
- ``report_to_json`` -- structured dict for ``--json`` output.
"""

from __future__ import annotations

from collections import defaultdict
from typing import TYPE_CHECKING

from .models import ReconcileState

if TYPE_CHECKING:
    from .models import DocumentResult, SyncReport


def _describe(result: DocumentResult) -> str:
    line = f"  {result.path}"
    if result.previous_path:
        line = f"  {result.previous_path} -> {result.path}"
    if result.doc_id is not None:
        line += f" (id {result.doc_id})"
    return line


# ------------------------------------------------------------------
# Human-readable report
# ------------------------------------------------------------------


def format_sync_report(report: SyncReport) -> str:
    """Format a complete sync report as human-readable text.

    Sections are only included when they contain at least one result.
    Unchanged documents are summarised by count only.

    Args:
        report: The completed sync report.

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []

    # Header
    header = f"Sync report for '{report.target_name}'"
    if report.root:
        header += f" -> {report.root}"
    if report.dry_run:
        header += " (DRY RUN)"
    lines.append(header)
    lines.append(f"Started: {report.started_at}")
    if report.completed_at:
        lines.append(f"Completed: {report.completed_at}")
    lines.append("")

    if report.error:
        lines.append(f"Sync stopped: {report.error}")
        lines.append("")

    lines.append(
        f"Synced {len(report.results)} documents: "
        f"{len(report.uploaded)} uploaded, "
        f"{len(report.created)} created, "
        f"{len(report.moved)} moved, "
        f"{len(report.pruned)} pruned, "
        f"{len(report.errors)} errors"
    )
    lines.append("")

    if report.created_folders:
        lines.append("Created folders:")
        for folder in report.created_folders:
            lines.append(f"  {folder}")
        lines.append("")

    sections = [
        ("Created:", report.created),
        ("Moved:", report.moved),
        ("Updated:", report.updated),
        ("Pruned:", report.pruned),
        ("Uploaded:", report.uploaded),
    ]
    for title, results in sections:
        if not results:
            continue
        lines.append(title)
        for r in results:
            lines.append(_describe(r))
        lines.append("")

    if report.errors:
        lines.append("Errors:")
        for r in report.errors:
            lines.append(f"  {r.path}: {r.error}")
        lines.append("")

    unchanged = len(report.unchanged)
    if unchanged > 0:
        lines.append(f"Unchanged: {unchanged} documents")
        lines.append("")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# Dry-run preview
# ------------------------------------------------------------------


def format_dry_run_preview(report: SyncReport) -> str:
    """Format a dry-run preview grouped by planned change.

    Args:
        report: A dry-run sync report (``dry_run=True``).

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []
    lines.append("DRY RUN -- No changes will be made")
    lines.append(f"Target: {report.target_name} ({report.root})")
    lines.append("")

    if report.error:
        lines.append(f"Sync would stop: {report.error}")
        lines.append("")

    if report.created_folders:
        lines.append("[CREATE FOLDER]")
        for folder in report.created_folders:
            lines.append(f"  {folder}")
        lines.append("")

    groups: dict[ReconcileState, list[DocumentResult]] = defaultdict(list)
    for r in report.results:
        groups[r.state].append(r)

    display_order = [
        (ReconcileState.CREATED, "CREATE"),
        (ReconcileState.MOVED, "MOVE"),
        (ReconcileState.UPDATED, "UPDATE"),
        (ReconcileState.PRUNED, "DELETE"),
    ]
    for state, label in display_order:
        if state not in groups:
            continue
        lines.append(f"[{label}]")
        for r in groups[state]:
            lines.append(_describe(r))
        lines.append("")

    matched = len(groups.get(ReconcileState.MATCHED, []))
    if matched > 0:
        lines.append(f"In place: {matched} documents (content may still change)")
        lines.append("")

    if not any(state != ReconcileState.MATCHED for state in groups) and not report.created_folders:
        lines.append("No structural changes needed.")
        lines.append("")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# JSON output
# ------------------------------------------------------------------


def report_to_json(report: SyncReport) -> dict:
    """Convert a sync report to a structured dict for JSON serialisation.

    Args:
        report: The sync report.

    Returns:
        Dict with target info, counts, and per-result details.
    """
    results_list = []
    for r in report.results:
        entry: dict = {
            "stable_key": r.stable_key,
            "path": r.path,
            "doc_id": r.doc_id,
            "state": r.state.value,
            "upload": r.upload.value if r.upload else None,
            "success": r.success,
        }
        if r.previous_path:
            entry["previous_path"] = r.previous_path
        if r.error:
            entry["error"] = r.error
        results_list.append(entry)

    return {
        "target_name": report.target_name,
        "root": report.root,
        "dry_run": report.dry_run,
        "started_at": report.started_at,
        "completed_at": report.completed_at,
        "error": report.error,
        "counts": {
            "total": len(report.results),
            "created": len(report.created),
            "moved": len(report.moved),
            "updated": len(report.updated),
            "matched": len(report.matched),
            "pruned": len(report.pruned),
            "uploaded": len(report.uploaded),
            "unchanged": len(report.unchanged),
            "folders": len(report.created_folders),
            "errors": len(report.errors),
        },
        "created_folders": list(report.created_folders),
        "results": results_list,
    }
