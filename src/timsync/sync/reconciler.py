"""Reconcile the desired document tree against the remote TIM tree.

The reconciler matches every desired ``TIMDocument`` to a remote document
by the stable key stored in the remote settings (``timsync.key``), falling
back to adopting an unkeyed remote document at the same path. It then
creates, moves and retitles documents so the remote tree matches, and
optionally prunes managed documents that are no longer wanted.

Ordering:

- The desired tree is validated before any remote mutation.
- Documents are scheduled level by level, shallowest first; documents of
  the same level run concurrently behind the ``RemoteLimiter``.
- Moves and retitles of matched documents run before any creation, so a
  path freed by a move can be taken by a new document.
- Missing folders are created ``mkdir -p`` style; concurrent creation of
  the same folder is serialised with one ``asyncio.Lock`` per path.
- Pruning runs first, so a stale document never blocks the path of a
  renamed source. It only ever deletes keyed (managed) documents.

Failures of single documents are recorded as ``FAILED`` results; the rest
of the tree is still reconciled.
"""

from __future__ import annotations

import asyncio
import logging
import posixpath
from collections import defaultdict
from typing import Any, Collection, Iterable

from ..core.async_utils import RemoteLimiter
from ..core.client import ItemType, RemoteNode, TimClient
from ..errors import ItemNotFound, ReconciliationConflict, RemoteOperationError
from ..processing.models import SETTINGS_KEY, TIMDocument
from .models import DocumentResult, ReconcileReport, ReconcileState

logger = logging.getLogger(__name__)


def remote_key(node: RemoteNode) -> str | None:
    """Stable key persisted in a remote document's settings."""
    section = node.settings.get(SETTINGS_KEY)
    if isinstance(section, dict):
        key = section.get("key")
        if key:
            return str(key)
    return None


def _ancestors(path: str) -> list[str]:
    """Folder paths above ``path``, shallowest first."""
    parts = path.split("/")[:-1]
    return ["/".join(parts[: i + 1]) for i in range(len(parts))]


def validate_structure(documents: Iterable[TIMDocument]) -> None:
    """Reject desired trees that cannot exist remotely.

    Raises:
        ReconciliationConflict: Duplicate stable keys, duplicate target
            paths, or a document path that is also a folder of another
            document.
    """
    by_key: dict[str, TIMDocument] = {}
    by_path: dict[str, TIMDocument] = {}
    folders: dict[str, TIMDocument] = {}

    for doc in documents:
        if not doc.path or doc.path.startswith("/") or doc.path.endswith("/"):
            raise ReconciliationConflict(
                f"invalid document path '{doc.path}' ({doc.stable_key})"
            )
        if "" in doc.path.split("/"):
            raise ReconciliationConflict(
                f"invalid document path '{doc.path}' ({doc.stable_key})"
            )
        if doc.stable_key in by_key:
            raise ReconciliationConflict(
                f"duplicate stable key '{doc.stable_key}'"
            )
        by_key[doc.stable_key] = doc

        other = by_path.get(doc.path)
        if other is not None:
            raise ReconciliationConflict(
                f"'{other.stable_key}' and '{doc.stable_key}' both compile "
                f"to '{doc.path}'"
            )
        by_path[doc.path] = doc
        for folder in _ancestors(doc.path):
            folders.setdefault(folder, doc)

    for path, doc in by_path.items():
        if path in folders:
            raise ReconciliationConflict(
                f"'{path}' is a document ({doc.stable_key}) and a folder of "
                f"'{folders[path].stable_key}'"
            )


class RemoteTree:
    """Index of the remote items below the target root."""

    def __init__(self, root: str, nodes: list[RemoteNode]) -> None:
        self.root = root
        self.by_key: dict[str, RemoteNode] = {}
        self.by_path: dict[str, RemoteNode] = {}
        self.folders: set[str] = set()

        for node in nodes:
            if node.kind == ItemType.FOLDER:
                self.folders.add(node.path)
                continue
            self.by_path[node.path] = node
            key = remote_key(node)
            if key is None:
                continue
            other = self.by_key.get(key)
            if other is not None:
                raise ReconciliationConflict(
                    f"stable key '{key}' is used by remote documents "
                    f"'{other.path}' and '{node.path}'"
                )
            self.by_key[key] = node

    def match(self, key: str, full_path: str) -> tuple[RemoteNode | None, bool]:
        """Remote document for ``key``, and whether it is an adoption."""
        node = self.by_key.get(key)
        if node is not None:
            return node, False
        node = self.by_path.get(full_path)
        if node is not None and remote_key(node) is None:
            return node, True
        return None, False


def _stale(
    tree: RemoteTree, documents: Iterable[TIMDocument], keep: Collection[str]
) -> list[tuple[str, RemoteNode]]:
    """Keyed remote documents that prune may delete, sorted by key."""
    wanted = {doc.stable_key for doc in documents}

    def _kept(key: str) -> bool:
        return key in wanted or any(
            key == k or key.startswith(f"{k}/") for k in keep
        )

    return sorted((k, n) for k, n in tree.by_key.items() if not _kept(k))


class Reconciler:
    """Converge the remote tree to the desired documents.

    Args:
        client: TIM API client.
        limiter: Bounds and gates every remote call.
    """

    def __init__(self, client: TimClient, limiter: RemoteLimiter) -> None:
        self.client = client
        self.limiter = limiter
        self._folders: set[str] = set()
        self._folder_locks: dict[str, asyncio.Lock] = {}
        self._created_folders: list[str] = []
        self._root_exists = False

    # ------------------------------------------------------------------
    # Main entry point
    # ------------------------------------------------------------------

    async def reconcile(
        self,
        documents: list[TIMDocument],
        *,
        root: str,
        prune: bool = False,
        dry_run: bool = False,
        keep: Collection[str] = (),
    ) -> ReconcileReport:
        """Reconcile ``documents`` below the remote folder ``root``.

        Sets ``doc_id`` on every document that exists remotely afterwards.
        Remote documents keyed by an entry of ``keep``, or by a key below
        one (``<entry>/...``), are never pruned.

        Raises:
            ReconciliationConflict: Structural problems in the desired or
                remote tree; nothing has been mutated.
            RemoteOperationError: The remote tree could not be listed.
        """
        validate_structure(documents)
        root = root.strip("/")
        tree = RemoteTree(root, await self._list_tree(root))
        self._folders = set(tree.folders)
        self._created_folders = []
        if self._root_exists:
            self._folders.update(_ancestors(f"{root}/x"))

        logger.info(
            "Reconciling %d documents against %d remote documents in %s",
            len(documents),
            len(tree.by_path),
            root,
        )

        if dry_run:
            planned = self._plan(documents, tree, prune, keep)
            return ReconcileReport(
                root=root,
                dry_run=True,
                results=planned,
                created_folders=self._created_folders,
            )

        # Stale documents may occupy paths the project now wants.
        pruned: list[DocumentResult] = []
        if prune:
            pruned = await self._prune(tree, _stale(tree, documents, keep))

        results: dict[str, DocumentResult] = {}
        pending: list[tuple[TIMDocument, RemoteNode | None, bool]] = []
        for doc in documents:
            node, adopted = tree.match(doc.stable_key, self._full(root, doc.path))
            pending.append((doc, node, adopted))

        # Existing documents first, then creations; each level by depth.
        for want_existing in (True, False):
            levels: dict[int, list[Any]] = defaultdict(list)
            for doc, node, adopted in pending:
                if (node is not None) == want_existing:
                    levels[doc.depth].append((doc, node, adopted))
            for depth in sorted(levels):
                outcomes = await asyncio.gather(
                    *(
                        self._apply(root, doc, node, adopted)
                        for doc, node, adopted in levels[depth]
                    )
                )
                for result in outcomes:
                    results[result.stable_key] = result

        ordered = [results[doc.stable_key] for doc in documents]
        ordered.extend(pruned)

        return ReconcileReport(
            root=root,
            results=ordered,
            created_folders=self._created_folders,
        )

    # ------------------------------------------------------------------
    # Remote tree
    # ------------------------------------------------------------------

    @staticmethod
    def _full(root: str, path: str) -> str:
        return f"{root}/{path}" if root else path

    async def _list_tree(self, root: str) -> list[RemoteNode]:
        self._root_exists = True
        try:
            return await self.limiter.run(self.client.list_tree, root)
        except ItemNotFound:
            logger.info("Remote root %s does not exist yet", root)
            self._root_exists = False
            return []

    # ------------------------------------------------------------------
    # Folders
    # ------------------------------------------------------------------

    async def _ensure_folder(self, path: str) -> None:
        """Create ``path`` and its missing ancestors (``mkdir -p``)."""
        if not path or path in self._folders:
            return
        lock = self._folder_locks.setdefault(path, asyncio.Lock())
        async with lock:
            if path in self._folders:
                return
            await self._ensure_folder(posixpath.dirname(path))
            try:
                node = await self.limiter.run(self.client.get_item_info, path)
            except ItemNotFound:
                node = None
            if node is None:
                await self.limiter.run(
                    self.client.create_item,
                    ItemType.FOLDER,
                    path,
                    posixpath.basename(path),
                )
                self._created_folders.append(path)
                logger.info("Created folder %s", path)
            elif node.kind != ItemType.FOLDER:
                raise RemoteOperationError(
                    "create_item", path, "a document exists at this path"
                )
            self._folders.add(path)

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    async def _apply(
        self,
        root: str,
        doc: TIMDocument,
        node: RemoteNode | None,
        adopted: bool,
    ) -> DocumentResult:
        full_path = self._full(root, doc.path)
        try:
            if node is None:
                return await self._create(doc, full_path)
            return await self._update(doc, node, full_path, adopted)
        except Exception as exc:
            logger.error("Error reconciling %s: %s", doc.path, exc)
            return DocumentResult(
                stable_key=doc.stable_key,
                path=doc.path,
                doc_id=node.id if node is not None else None,
                state=ReconcileState.FAILED,
                error=str(exc),
            )

    async def _create(self, doc: TIMDocument, full_path: str) -> DocumentResult:
        await self._ensure_folder(posixpath.dirname(full_path))
        node = await self.limiter.run(
            self.client.create_item, ItemType.DOCUMENT, full_path, doc.title
        )
        doc.doc_id = node.id
        await self.limiter.run(
            self.client.update_settings,
            node.id,
            {SETTINGS_KEY: {"key": doc.stable_key}},
        )
        logger.info("Created document %s (id %d)", full_path, node.id)
        return DocumentResult(
            stable_key=doc.stable_key,
            path=doc.path,
            doc_id=node.id,
            state=ReconcileState.CREATED,
        )

    async def _update(
        self,
        doc: TIMDocument,
        node: RemoteNode,
        full_path: str,
        adopted: bool,
    ) -> DocumentResult:
        doc.doc_id = node.id
        state = ReconcileState.MATCHED
        previous_path = None

        if adopted:
            await self.limiter.run(
                self.client.update_settings,
                node.id,
                {SETTINGS_KEY: {"key": doc.stable_key}},
            )
            logger.info("Adopted unmanaged document %s", full_path)
            state = ReconcileState.UPDATED

        if node.path != full_path:
            await self._ensure_folder(posixpath.dirname(full_path))
            await self.limiter.run(
                self.client.move_item, node.id, full_path, doc.title
            )
            logger.info("Moved %s -> %s", node.path, full_path)
            state = ReconcileState.MOVED
            previous_path = node.path
        elif node.title != doc.title:
            await self.limiter.run(self.client.set_title, node.id, doc.title)
            logger.info("Retitled %s to '%s'", full_path, doc.title)
            state = ReconcileState.UPDATED

        return DocumentResult(
            stable_key=doc.stable_key,
            path=doc.path,
            doc_id=node.id,
            state=state,
            previous_path=previous_path,
        )

    async def _prune(
        self, tree: RemoteTree, stale: list[tuple[str, RemoteNode]]
    ) -> list[DocumentResult]:
        async def _delete(key: str, node: RemoteNode) -> DocumentResult:
            path = self._relative(tree.root, node.path)
            try:
                await self.limiter.run(self.client.delete_item, node.id)
            except Exception as exc:
                logger.error("Error pruning %s: %s", node.path, exc)
                return DocumentResult(
                    stable_key=key,
                    path=path,
                    doc_id=node.id,
                    state=ReconcileState.FAILED,
                    error=str(exc),
                )
            logger.info("Pruned %s", node.path)
            return DocumentResult(
                stable_key=key, path=path, doc_id=node.id, state=ReconcileState.PRUNED
            )

        return list(await asyncio.gather(*(_delete(k, n) for k, n in stale)))

    @staticmethod
    def _relative(root: str, full_path: str) -> str:
        prefix = f"{root}/" if root else ""
        if prefix and full_path.startswith(prefix):
            return full_path[len(prefix):]
        return full_path

    # ------------------------------------------------------------------
    # Dry run
    # ------------------------------------------------------------------

    def _plan(
        self,
        documents: list[TIMDocument],
        tree: RemoteTree,
        prune: bool,
        keep: Collection[str] = (),
    ) -> list[DocumentResult]:
        """What ``reconcile`` would do, without touching the remote."""
        results = []
        for doc in sorted(documents, key=lambda d: (d.depth, d.path)):
            full_path = self._full(tree.root, doc.path)
            node, adopted = tree.match(doc.stable_key, full_path)
            for folder in _ancestors(full_path):
                if folder not in self._folders:
                    self._folders.add(folder)
                    self._created_folders.append(folder)

            if node is None:
                results.append(
                    DocumentResult(
                        stable_key=doc.stable_key,
                        path=doc.path,
                        state=ReconcileState.CREATED,
                    )
                )
                continue

            doc.doc_id = node.id
            if node.path != full_path:
                state = ReconcileState.MOVED
            elif adopted or node.title != doc.title:
                state = ReconcileState.UPDATED
            else:
                state = ReconcileState.MATCHED
            results.append(
                DocumentResult(
                    stable_key=doc.stable_key,
                    path=doc.path,
                    doc_id=node.id,
                    state=state,
                    previous_path=node.path if state == ReconcileState.MOVED else None,
                )
            )

        if prune:
            for key, node in _stale(tree, documents, keep):
                results.append(
                    DocumentResult(
                        stable_key=key,
                        path=self._relative(tree.root, node.path),
                        doc_id=node.id,
                        state=ReconcileState.PRUNED,
                    )
                )
        return results
