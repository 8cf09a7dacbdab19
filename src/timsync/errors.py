"""Exception taxonomy for timsync.

Per-document errors (``MalformedFrontMatter``, ``TemplateError``,
``UnknownDocumentReference``, ``RemoteOperationError``) are caught by the
pipeline and recorded in the sync report. ``ReconciliationConflict`` signals
a structural problem in the desired tree and aborts the run before any
remote mutation.
"""

from __future__ import annotations


class TimSyncError(Exception):
    """Base class for all timsync errors."""


class ConfigError(TimSyncError):
    """Invalid or missing configuration."""


class ProjectNotFound(TimSyncError):
    """No timsync project found in a directory or its ancestors."""


class MalformedFrontMatter(TimSyncError):
    """The front matter block of a project file cannot be decoded.

    Args:
        path: Project-relative path of the offending file.
        reason: What was wrong with the block.
    """

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Malformed front matter in {path}: {reason}")


class TemplateError(TimSyncError):
    """Template evaluation failed.

    Args:
        location: Project-relative path (or name) of the template source.
        cause: Human-readable cause of the failure.
    """

    def __init__(self, location: str, cause: str) -> None:
        self.location = location
        self.cause = cause
        super().__init__(f"Could not render {location}: {cause}")


class UnknownDocumentReference(TimSyncError):
    """A cross-document reference names a document missing from the context."""

    def __init__(self, reference: str, detail: str | None = None) -> None:
        self.reference = reference
        message = f"Unknown document reference '{reference}'"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class ContextNotFrozenError(UnknownDocumentReference):
    """The site context was read before reconciliation finished.

    This is a sequencing bug in the caller, never a data problem.
    """

    def __init__(self, reference: str = "site") -> None:
        super().__init__(
            reference,
            "site context is not frozen yet; documents cannot be resolved "
            "before reconciliation has completed",
        )


class ContextFrozenError(TimSyncError):
    """The site context was written after it was frozen."""


class RemoteOperationError(TimSyncError):
    """A call against the TIM server failed.

    Args:
        operation: Name of the remote operation (e.g. ``"create_item"``).
        target: Remote path or item id the operation acted on.
        reason: Server response or transport error text.
    """

    def __init__(self, operation: str, target: str, reason: str) -> None:
        self.operation = operation
        self.target = target
        self.reason = reason
        super().__init__(f"{operation} failed for {target}: {reason}")


class ItemNotFound(RemoteOperationError):
    """The remote item does not exist."""

    def __init__(
        self,
        target: str,
        reason: str = "not found",
        operation: str = "get_item_info",
    ) -> None:
        super().__init__(operation, target, reason)


class ReconciliationConflict(TimSyncError):
    """The desired tree cannot be reconciled unambiguously."""


class SyncAborted(TimSyncError):
    """An abort was requested; no new remote operations are issued."""
