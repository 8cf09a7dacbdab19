"""Sync pipeline that compiles a project and pushes it to one TIM target.

The ``SyncPipeline`` ties together discovery, processors, the site context,
the reconciler and the client into a complete sync run. It:

1. Discovers project files and registers them with their processors.
2. Builds the desired ``TIMDocument`` set and records it in the context.
3. Logs in and reconciles the remote tree (creating, moving, pruning).
4. Assigns the harvested remote ids and freezes the context.
5. Renders every document and uploads the ones whose content changed.
6. Builds and returns a ``SyncReport``.

Steps 1-2 raise no remote traffic. A file with malformed front matter is
left out and reported as failed; structural conflicts stop the run before
the remote is touched. From step 5 on, errors are per-document: a single
failing document does not abort the run.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from ..core.async_utils import RemoteLimiter, run_sync
from ..core.client import TimClient
from ..errors import MalformedFrontMatter, SyncAborted, TimSyncError
from ..processing.base import FileProcessor, ProcessorType, create_processors
from ..processing.models import TIMDocument
from ..processing.tasks import group_key
from ..project.files import ProjectFile, TaskFile
from .context import SiteContext, SiteSnapshot
from .models import DocumentResult, ReconcileState, SyncReport, UploadState
from .reconciler import Reconciler, validate_structure

if TYPE_CHECKING:
    from ..config import Target
    from ..project.project import Project
    from ..templating.engine import TemplateEngine

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SyncPipeline:
    """Compile ``project`` and synchronise it with ``target``.

    Args:
        project: Project to compile.
        target: Resolved sync target.
        client: TIM client; one is created from ``target`` if omitted.
        limiter: Remote call limiter; sized from ``target`` if omitted.
        engine: Template engine shared by the processors.
    """

    def __init__(
        self,
        project: Project,
        target: Target,
        client: TimClient | None = None,
        *,
        limiter: RemoteLimiter | None = None,
        engine: TemplateEngine | None = None,
    ) -> None:
        self.project = project
        self.target = target
        self.client = client if client is not None else TimClient(target)
        self.limiter = limiter or RemoteLimiter(target.max_parallel_requests)
        self.processors: dict[ProcessorType, FileProcessor] = create_processors(
            project, engine, base_path=target.folder_root
        )
        self.context = SiteContext(
            project.site_data(),
            host=target.host,
            base_path=target.folder_root,
        )
        self.rejected: list[tuple[ProjectFile, MalformedFrontMatter]] = []

    def abort(self) -> None:
        """Stop issuing remote calls; in-flight calls still finish."""
        self.limiter.abort()

    # ------------------------------------------------------------------
    # Structure (no remote traffic)
    # ------------------------------------------------------------------

    def collect(self) -> list[TIMDocument]:
        """Discover, register and build the desired documents.

        Also records every document in the site context (pass 1) and
        publishes the processors' site values. Files with malformed front
        matter are left out and listed in ``rejected``.
        """
        files = self.project.discover()
        self.rejected = []
        for file in files:
            try:
                self.processors[file.processor_type].register(file)
            except MalformedFrontMatter as exc:
                logger.error("Skipping %s: %s", file.rel_path, exc)
                self.rejected.append((file, exc))

        documents: list[TIMDocument] = []
        for processor_type in ProcessorType:
            documents.extend(self.processors[processor_type].build_documents())
        validate_structure(documents)

        for document in documents:
            self.context.record(document)
        for processor in self.processors.values():
            self.context.publish(processor.publish_context())

        logger.info(
            "Collected %d documents from %d project files",
            len(documents),
            len(files) - len(self.rejected),
        )
        return documents

    def _rejected_results(self) -> list[DocumentResult]:
        return [
            DocumentResult(
                stable_key=file.rel_path,
                path=file.rel_path,
                state=ReconcileState.FAILED,
                upload=UploadState.SKIPPED,
                error=str(exc),
            )
            for file, exc in self.rejected
        ]

    def _kept_keys(self) -> set[str]:
        """Remote keys a prune must not touch while a source is rejected."""
        keys = set()
        for file, _ in self.rejected:
            # The group of a rejected task is unknown
            keys.add(group_key(None) if isinstance(file, TaskFile) else file.rel_path)
        return keys

    # ------------------------------------------------------------------
    # Main entry point
    # ------------------------------------------------------------------

    async def run(self, dry_run: bool = False, prune: bool = False) -> SyncReport:
        """Execute a full sync.

        Args:
            dry_run: If ``True``, plan the reconciliation but change nothing.
            prune: Delete managed remote documents that are no longer
                produced by the project.

        Returns:
            A ``SyncReport`` summarising what was (or would be) done.
        """
        started_at = _now()

        def _report(
            results: list[DocumentResult] | None = None,
            error: str | None = None,
            folders: list[str] | None = None,
        ) -> SyncReport:
            return SyncReport(
                target_name=self.target.name,
                root=self.target.folder_root,
                dry_run=dry_run,
                results=results or [],
                created_folders=folders or [],
                error=error,
                started_at=started_at,
                completed_at=_now(),
            )

        try:
            documents = await run_sync(self.collect)
        except TimSyncError as exc:
            logger.error("Project could not be compiled: %s", exc)
            return _report(error=str(exc))

        try:
            await self.limiter.run(self.client.login)
            reconciled = await Reconciler(self.client, self.limiter).reconcile(
                documents,
                root=self.target.folder_root,
                prune=prune,
                dry_run=dry_run,
                keep=self._kept_keys(),
            )
        except TimSyncError as exc:
            logger.error("Reconciliation stopped: %s", exc)
            return _report(error=str(exc))

        rejected = self._rejected_results()
        if dry_run:
            return _report(
                reconciled.results + rejected, folders=reconciled.created_folders
            )

        for document in documents:
            if document.doc_id is not None:
                self.context.assign_id(document.stable_key, document.doc_id)
        snapshot = self.context.freeze()

        by_key = reconciled.by_key()
        results = list(
            await asyncio.gather(
                *(
                    self._publish(document, snapshot, by_key[document.stable_key])
                    for document in documents
                )
            )
        )
        # Pruned documents, successful or not
        wanted = {d.stable_key for d in documents}
        results.extend(r for r in reconciled.results if r.stable_key not in wanted)
        results.extend(rejected)

        error = "sync aborted" if self.limiter.aborted else None
        return _report(results, error=error, folders=reconciled.created_folders)

    # ------------------------------------------------------------------
    # Per-document render and upload
    # ------------------------------------------------------------------

    async def _publish(
        self,
        document: TIMDocument,
        snapshot: SiteSnapshot,
        result: DocumentResult,
    ) -> DocumentResult:
        """Render ``document`` and upload it if its content changed."""
        if result.state == ReconcileState.FAILED or document.doc_id is None:
            return result.model_copy(update={"upload": UploadState.SKIPPED})

        try:
            prepared = await run_sync(document.render, snapshot)
            remote = await self.limiter.run(
                self.client.download_markdown, document.doc_id
            )
            if prepared.header_matches(remote):
                logger.debug("Unchanged: %s", document.path)
                return result.model_copy(update={"upload": UploadState.UNCHANGED})

            await self.limiter.run(
                self.client.upload_markdown,
                document.doc_id,
                prepared.with_header(),
                remote,
            )
        except SyncAborted as exc:
            return result.model_copy(
                update={"upload": UploadState.SKIPPED, "error": str(exc)}
            )
        except Exception as exc:
            logger.error("Error publishing %s: %s", document.path, exc)
            return result.model_copy(
                update={"upload": UploadState.FAILED, "error": str(exc)}
            )

        logger.info("Uploaded %s", document.path)
        return result.model_copy(update={"upload": UploadState.UPLOADED})
