"""Document artifacts produced by the file processors.

- ``DocumentKind``: what produced a document.
- ``TIMDocument``: desired state of one remote document.
- ``PreparedDocument``: rendered, uploadable markdown plus its settings.
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

import yaml

if TYPE_CHECKING:
    from ..project.files import ProjectFile
    from ..sync.context import SiteSnapshot
    from .base import FileProcessor

# Key of the settings section timsync owns inside the TIM document settings.
SETTINGS_KEY = "timsync"

_SETTINGS_BLOCK = re.compile(
    r'\A\s*``` ?\{settings=""\}[ \t]*\r?\n(.*?)\r?\n```', re.DOTALL
)


class DocumentKind(str, Enum):
    DOCUMENT = "document"
    TASKS = "tasks"
    STYLE = "style"


@dataclass(eq=False)
class TIMDocument:
    """Desired state of one remote document.

    Attributes:
        path: Target path below the target root; slash separated,
            case-sensitive, no leading or trailing slash.
        title: Document title.
        stable_key: Key persisted in the remote settings that matches this
            document across runs, independent of path and title.
        kind: Producing processor family.
        processor: Processor that renders this document.
        sources: Project files the document was built from.
        uid: Front matter ``uid``; the name templates use to refer to it.
        published: Front matter values exposed under ``site.doc.<uid>``.
        doc_id: Remote id, set by the reconciler.
    """

    path: str
    title: str
    stable_key: str
    kind: DocumentKind
    processor: FileProcessor = field(repr=False)
    sources: tuple[ProjectFile, ...] = ()
    uid: str | None = None
    published: dict[str, Any] = field(default_factory=dict)
    doc_id: int | None = None

    @property
    def depth(self) -> int:
        return self.path.count("/")

    @property
    def parent(self) -> str:
        """Parent folder path ("" for documents at the root)."""
        return self.path.rpartition("/")[0]

    def render(self, context: SiteSnapshot) -> PreparedDocument:
        return self.processor.render(self, context)


def _settings_yaml(settings: dict[str, Any]) -> str:
    return yaml.safe_dump(
        settings, sort_keys=True, allow_unicode=True, default_flow_style=False
    )


@dataclass(frozen=True)
class PreparedDocument:
    """Rendered content of one document."""

    markdown: str
    stable_key: str
    settings: dict[str, Any] = field(default_factory=dict)

    @property
    def content_hash(self) -> str:
        """SHA-1 over settings and markdown."""
        payload = _settings_yaml(self.settings) + "\n" + self.markdown
        return hashlib.sha1(payload.encode("utf-8")).hexdigest()

    def header_settings(self) -> dict[str, Any]:
        settings = dict(self.settings)
        settings[SETTINGS_KEY] = {
            "key": self.stable_key,
            "hash": self.content_hash,
        }
        return settings

    def with_header(self) -> str:
        """Markdown with a leading TIM settings block.

        The block carries the merged document settings plus the stable key
        and the content hash under ``timsync``.
        """
        block = _settings_yaml(self.header_settings()).rstrip("\n")
        return f'``` {{settings=""}}\n{block}\n```\n\n{self.markdown}'

    def header_matches(self, remote_text: str) -> bool:
        """True if ``remote_text`` was uploaded from identical content."""
        remote = parse_header(remote_text)
        section = remote.get(SETTINGS_KEY) if remote else None
        if not isinstance(section, dict):
            return False
        return section.get("hash") == self.content_hash


def parse_header(text: str) -> dict[str, Any] | None:
    """Settings of the leading ``{settings=""}`` block, or ``None``."""
    match = _SETTINGS_BLOCK.match(text)
    if not match:
        return None
    try:
        data = yaml.safe_load(match.group(1))
    except yaml.YAMLError:
        return None
    return data if isinstance(data, dict) else None
