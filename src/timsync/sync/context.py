"""Cross-document site context with a freeze barrier.

The context is filled in two passes. Pass 1 records every document's path,
title, uid and published front matter values; pass 2 adds the remote ids
harvested by the reconciler. ``freeze()`` then produces an immutable
``SiteSnapshot`` that renderers read. Writes after the freeze and reads
before it are rejected.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Mapping

from ..errors import (
    ContextFrozenError,
    ContextNotFrozenError,
    ReconciliationConflict,
    UnknownDocumentReference,
)

if TYPE_CHECKING:
    from ..processing.models import TIMDocument

logger = logging.getLogger(__name__)

# Keys owned by the context; site data and processors cannot override them.
RESERVED_KEYS = frozenset({"doc", "docs", "host", "base_path"})


class ContextState(str, Enum):
    BUILDING = "building"
    FROZEN = "frozen"


@dataclass
class DocumentRecord:
    """What the site knows about one document."""

    stable_key: str
    path: str
    title: str
    uid: str | None = None
    published: dict[str, Any] = field(default_factory=dict)
    doc_id: int | None = None

    def as_dict(self) -> dict[str, Any]:
        data = dict(self.published)
        data.update(
            {
                "uid": self.uid,
                "path": self.path,
                "title": self.title,
                "doc_id": self.doc_id,
            }
        )
        return data


def _read_only(value: Any) -> Any:
    """Deep-convert dicts and lists into read-only mappings and tuples."""
    if isinstance(value, Mapping):
        return MappingProxyType({k: _read_only(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(_read_only(v) for v in value)
    return value


def to_plain(value: Any) -> Any:
    """Inverse of the read-only conversion: plain dicts and lists."""
    if isinstance(value, Mapping):
        return {k: to_plain(v) for k, v in value.items()}
    if isinstance(value, tuple):
        return [to_plain(v) for v in value]
    return value


class SiteSnapshot:
    """Frozen, read-only view of the site context.

    ``data`` is the value exposed to templates under ``site``.
    """

    def __init__(self, data: Mapping[str, Any]) -> None:
        self.data = data

    @property
    def host(self) -> str:
        return self.data["host"]

    @property
    def base_path(self) -> str:
        return self.data["base_path"]

    def lookup(self, uid: str) -> Mapping[str, Any]:
        """Record of the document with front matter ``uid``.

        Raises:
            UnknownDocumentReference: No document has that uid.
        """
        try:
            return self.data["doc"][uid]
        except KeyError:
            raise UnknownDocumentReference(uid) from None

    def doc_id(self, uid: str) -> int:
        """Remote id of the document with ``uid``.

        Raises:
            UnknownDocumentReference: The document is unknown or was never
                created remotely.
        """
        doc_id = self.lookup(uid)["doc_id"]
        if doc_id is None:
            raise UnknownDocumentReference(uid, "document has no remote id")
        return doc_id

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)


class SiteContext:
    """Single-writer-until-frozen store of cross-document metadata.

    Args:
        site_data: Global site data (``_config.yml``).
        host: TIM host URL of the sync target.
        base_path: Remote root folder of the compiled tree.
    """

    def __init__(
        self,
        site_data: Mapping[str, Any] | None = None,
        *,
        host: str = "",
        base_path: str = "",
    ) -> None:
        self._site_data = copy.deepcopy(dict(site_data or {}))
        self._published: dict[str, Any] = {}
        self._records: dict[str, DocumentRecord] = {}
        self._by_uid: dict[str, str] = {}
        self._host = host
        self._base_path = base_path
        self._snapshot: SiteSnapshot | None = None

        shadowed = RESERVED_KEYS & self._site_data.keys()
        if shadowed:
            logger.warning(
                "Site data keys %s are reserved and will be overridden",
                ", ".join(sorted(shadowed)),
            )

    @property
    def state(self) -> ContextState:
        if self._snapshot is not None:
            return ContextState.FROZEN
        return ContextState.BUILDING

    def _check_building(self) -> None:
        if self._snapshot is not None:
            raise ContextFrozenError("site context is frozen")

    # ------------------------------------------------------------------
    # Writes (before freeze)
    # ------------------------------------------------------------------

    def record(self, document: TIMDocument) -> DocumentRecord:
        """Pass 1: register a document's structure and published values.

        Raises:
            ContextFrozenError: The context is already frozen.
            ReconciliationConflict: The stable key or uid is already taken.
        """
        self._check_building()
        if document.stable_key in self._records:
            raise ReconciliationConflict(
                f"duplicate stable key '{document.stable_key}'"
            )
        if document.uid is not None and document.uid in self._by_uid:
            other = self._by_uid[document.uid]
            raise ReconciliationConflict(
                f"uid '{document.uid}' is used by both '{other}' "
                f"and '{document.stable_key}'"
            )

        record = DocumentRecord(
            stable_key=document.stable_key,
            path=document.path,
            title=document.title,
            uid=document.uid,
            published=copy.deepcopy(dict(document.published)),
        )
        self._records[document.stable_key] = record
        if document.uid is not None:
            self._by_uid[document.uid] = document.stable_key
        return record

    def assign_id(self, stable_key: str, doc_id: int) -> None:
        """Pass 2: attach the remote id harvested by the reconciler."""
        self._check_building()
        try:
            self._records[stable_key].doc_id = doc_id
        except KeyError:
            raise UnknownDocumentReference(
                stable_key, "no document recorded with this stable key"
            ) from None

    def publish(self, values: Mapping[str, Any]) -> None:
        """Add processor-level values (e.g. ``style_themes``) to ``site``."""
        self._check_building()
        for key, value in values.items():
            if key in RESERVED_KEYS:
                raise ValueError(f"'{key}' is a reserved site key")
            self._published[key] = copy.deepcopy(value)

    # ------------------------------------------------------------------
    # Freeze and reads
    # ------------------------------------------------------------------

    def freeze(self) -> SiteSnapshot:
        """Close the context for writes and build the read-only snapshot."""
        if self._snapshot is not None:
            return self._snapshot

        records = sorted(self._records.values(), key=lambda r: r.path)
        data: dict[str, Any] = dict(self._site_data)
        data.update(self._published)
        data["host"] = self._host
        data["base_path"] = self._base_path
        data["doc"] = {
            r.uid: r.as_dict() for r in records if r.uid is not None
        }
        data["docs"] = [r.as_dict() for r in records]

        self._snapshot = SiteSnapshot(_read_only(data))
        logger.debug(
            "Site context frozen: %d documents, %d with uid",
            len(records),
            len(data["doc"]),
        )
        return self._snapshot

    def snapshot(self) -> SiteSnapshot:
        """The frozen snapshot.

        Raises:
            ContextNotFrozenError: ``freeze()`` has not been called yet.
        """
        if self._snapshot is None:
            raise ContextNotFrozenError()
        return self._snapshot

    def lookup(self, uid: str) -> Mapping[str, Any]:
        """Record of the document with ``uid`` (frozen context only)."""
        if self._snapshot is None:
            raise ContextNotFrozenError(uid)
        return self._snapshot.lookup(uid)
