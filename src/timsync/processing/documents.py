"""Markdown documents: one TIM document per ``.md`` file."""

from __future__ import annotations

import logging
import posixpath
import re
from typing import TYPE_CHECKING, Any
from urllib.parse import urlsplit

from ..errors import MalformedFrontMatter, ReconciliationConflict
from ..project.files import DocumentFile, ProcessorType, ProjectFile
from ..templating.identifiers import RegionIdAssigner
from .base import TemplatedProcessor
from .models import DocumentKind, PreparedDocument, TIMDocument

if TYPE_CHECKING:
    from ..sync.context import SiteSnapshot

logger = logging.getLogger(__name__)

# Inline markdown link target: ](url) or ](url "title")
_LINK = re.compile(r'(\]\()(<[^>\n]+>|[^)\s]+)((?:\s+"[^"\n]*")?\))')
_FENCE = re.compile(r"^\s*(```|~~~)")

# Front matter keys that are never published to site.doc.<uid>.
_PRIVATE_KEYS = frozenset({"publish"})


def document_path(file: ProjectFile) -> str:
    """Target path of a markdown file: ``tim_path`` or its lower-cased stem."""
    tim_path = file.front_matter.get("tim_path")
    if tim_path is not None:
        path = str(tim_path)
    else:
        path = file.rel_stem
    return path.replace("\\", "/").strip("/").lower()


def published_values(file: ProjectFile) -> dict[str, Any]:
    """Front matter values the file asks to expose to other documents.

    ``publish: [key, ...]`` lists the keys; missing keys are skipped.
    """
    front_matter = file.front_matter
    keys = front_matter.get("publish") or []
    if isinstance(keys, str):
        keys = [keys]
    if not isinstance(keys, list):
        raise MalformedFrontMatter(file.rel_path, "'publish' must be a list of keys")
    return {
        key: front_matter[key]
        for key in keys
        if key in front_matter and key not in _PRIVATE_KEYS
    }


def _uid(file: ProjectFile) -> str | None:
    uid = file.front_matter.get("uid")
    if uid is None:
        return None
    uid = str(uid).strip()
    if not uid:
        raise MalformedFrontMatter(file.rel_path, "'uid' must not be empty")
    return uid


class DocumentProcessor(TemplatedProcessor):
    """Compiles markdown files into documents of the same relative path."""

    processor_type = ProcessorType.DOCUMENT

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._files: dict[str, DocumentFile] = {}
        # project-relative source path -> document path
        self._paths: dict[str, str] = {}

    def register(self, file: ProjectFile) -> None:
        path = document_path(file)
        if not path:
            raise MalformedFrontMatter(file.rel_path, "document path is empty")
        # Front matter problems reject the file before it claims a path
        _uid(file)
        published_values(file)
        for other_rel, other_path in self._paths.items():
            if other_path == path:
                raise ReconciliationConflict(
                    f"'{file.rel_path}' and '{other_rel}' both compile to '{path}'"
                )
        self._files[file.rel_path] = file
        self._paths[file.rel_path] = path

    def build_documents(self) -> list[TIMDocument]:
        documents = []
        for rel_path in sorted(self._files):
            file = self._files[rel_path]
            title = file.front_matter.get("title")
            documents.append(
                TIMDocument(
                    path=self._paths[rel_path],
                    title=str(title) if title is not None else file.stem,
                    stable_key=rel_path,
                    kind=DocumentKind.DOCUMENT,
                    processor=self,
                    sources=(file,),
                    uid=_uid(file),
                    published=published_values(file),
                )
            )
        return documents

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def render(self, document: TIMDocument, context: SiteSnapshot) -> PreparedDocument:
        file = document.sources[0]
        result = self.render_source(
            self.rewrite_links(file.body, file),
            file,
            context,
            RegionIdAssigner(document.stable_key),
            {
                "title": document.title,
                "path": document.path,
                "doc_id": document.doc_id or 0,
                "local_file_path": str(file.path),
            },
        )
        return PreparedDocument(
            markdown=result.text,
            stable_key=document.stable_key,
            settings=result.settings,
        )

    def _link_target(self, url: str, file: ProjectFile) -> str | None:
        parts = urlsplit(url)
        if parts.scheme or parts.netloc or not parts.path or "{{" in url:
            return None

        if parts.path.startswith("/"):
            rel = posixpath.normpath(parts.path.lstrip("/"))
        else:
            base = posixpath.dirname(file.rel_path)
            rel = posixpath.normpath(posixpath.join(base, parts.path))

        if not rel.lower().endswith(".md"):
            return None
        path = self._paths.get(rel)
        if path is None:
            logger.warning(
                "%s: link to '%s' does not point to a project document",
                file.rel_path,
                url,
            )
            return None

        location = "/".join(p for p in (self.base_path, path) if p)
        suffix = f"#{parts.fragment}" if parts.fragment else ""
        if parts.query:
            suffix = f"?{parts.query}{suffix}"
        return f"/view/{location}{suffix}"

    def rewrite_links(self, body: str, file: ProjectFile) -> str:
        """Point relative links to project markdown at the remote documents.

        Links inside fenced code blocks are left untouched.
        """

        def _replace(match: re.Match) -> str:
            url = match.group(2)
            bare = url[1:-1] if url.startswith("<") else url
            target = self._link_target(bare, file)
            if target is None:
                return match.group(0)
            return f"{match.group(1)}{target}{match.group(3)}"

        lines = body.splitlines(keepends=True)
        fence: str | None = None
        for i, line in enumerate(lines):
            marker = _FENCE.match(line)
            if marker:
                if fence is None:
                    fence = marker.group(1)
                elif marker.group(1) == fence:
                    fence = None
                continue
            if fence is None and "](" in line:
                lines[i] = _LINK.sub(_replace, line)
        return "".join(lines)
