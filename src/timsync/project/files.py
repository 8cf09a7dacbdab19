"""Project file variants and front matter parsing.

Every source file timsync recognizes is one of a closed set of variants,
each bound to one processor family:

- ``DocumentFile`` -- ``.md`` documents.
- ``TaskFile`` -- ``.task.yml`` / ``.task.yaml`` plugin task definitions.
- ``StyleFile`` -- ``.scss`` / ``.css`` style themes.

A file may start with a front matter block bounded by a variant-specific
start/end marker pair. The marker lines are the literal first and last
lines of the block and the text between them is decoded as YAML.
"""

from __future__ import annotations

import logging
from enum import Enum
from functools import cached_property
from pathlib import Path
from typing import Any

import yaml

from ..errors import MalformedFrontMatter

logger = logging.getLogger(__name__)


class ProcessorType(str, Enum):
    """Processor family a project file belongs to."""

    DOCUMENT = "document"
    TASK = "task"
    STYLE = "style"


# ---------------------------------------------------------------------------
# Front matter
# ---------------------------------------------------------------------------


def find_front_matter(
    text: str, start_marker: str, end_marker: str
) -> tuple[int, int] | None:
    """Locate the front matter block in ``text``.

    Leading blank lines are skipped. The first non-blank line must start
    with ``start_marker``; the block ends at the first later line starting
    with ``end_marker``.

    Returns:
        ``(start, end)`` character offsets of the block, markers included
        and the closing line break excluded, or ``None`` when the file has
        no (terminated) front matter.
    """
    offset = 0
    block_start: int | None = None

    for line in text.splitlines(keepends=True):
        stripped = line.rstrip()
        if block_start is None:
            if not stripped:
                offset += len(line)
                continue
            if not stripped.startswith(start_marker):
                return None
            block_start = offset
        elif stripped.startswith(end_marker):
            return block_start, offset + len(line.rstrip("\r\n"))
        offset += len(line)

    return None


def parse_front_matter(
    text: str,
    start_marker: str = "---",
    end_marker: str = "---",
    source: str = "<string>",
) -> tuple[dict[str, Any], str]:
    """Split ``text`` into decoded front matter and body.

    A missing block is not an error: the result is ``({}, text)``.

    Raises:
        MalformedFrontMatter: If the block's last inner line is blank, the
            inner text is not valid YAML, or it does not decode to a mapping.
    """
    position = find_front_matter(text, start_marker, end_marker)
    if position is None:
        return {}, text

    start, end = position
    lines = text[start:end].splitlines()
    inner = lines[1:-1]

    if inner and not inner[-1].strip():
        raise MalformedFrontMatter(
            source, "blank line before the closing marker"
        )

    body = text[end:]
    if body.startswith("\r\n"):
        body = body[2:]
    elif body.startswith("\n"):
        body = body[1:]

    inner_text = "\n".join(inner)
    if not inner_text.strip():
        return {}, body

    try:
        data = yaml.safe_load(inner_text)
    except yaml.YAMLError as exc:
        raise MalformedFrontMatter(source, str(exc)) from exc

    if data is None:
        return {}, body
    if not isinstance(data, dict):
        raise MalformedFrontMatter(
            source,
            f"expected a mapping, got {type(data).__name__}",
        )
    return data, body


# ---------------------------------------------------------------------------
# Variants
# ---------------------------------------------------------------------------


class ProjectFile:
    """A source file recognized by the project.

    Content is read lazily, once; front matter is parsed on first access.

    Attributes:
        path: Absolute path on disk.
        rel_path: POSIX path relative to the project root.
    """

    extensions: tuple[str, ...] = ()
    start_marker = "---"
    end_marker = "---"
    processor_type: ProcessorType

    def __init__(self, path: Path, root: Path) -> None:
        self.path = path
        self.rel_path = path.relative_to(root).as_posix()

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.rel_path!r})"

    @classmethod
    def claims(cls, name: str) -> bool:
        return name.lower().endswith(cls.extensions)

    @cached_property
    def contents(self) -> str:
        return self.path.read_text(encoding="utf-8")

    @cached_property
    def _parsed(self) -> tuple[dict[str, Any], str]:
        return parse_front_matter(
            self.contents, self.start_marker, self.end_marker, self.rel_path
        )

    @property
    def front_matter(self) -> dict[str, Any]:
        return self._parsed[0]

    @property
    def body(self) -> str:
        return self._parsed[1]

    @property
    def stem(self) -> str:
        """File name without the variant's extension."""
        name = self.path.name
        lowered = name.lower()
        for ext in self.extensions:
            if lowered.endswith(ext):
                return name[: -len(ext)]
        return self.path.stem

    @property
    def rel_stem(self) -> str:
        """Relative path without the variant's extension."""
        parent = Path(self.rel_path).parent.as_posix()
        return self.stem if parent == "." else f"{parent}/{self.stem}"


class DocumentFile(ProjectFile):
    extensions = (".md",)
    processor_type = ProcessorType.DOCUMENT


class TaskFile(ProjectFile):
    extensions = (".task.yml", ".task.yaml")
    processor_type = ProcessorType.TASK


class StyleFile(ProjectFile):
    extensions = (".scss", ".css")
    start_marker = "/*"
    end_marker = "*/"
    processor_type = ProcessorType.STYLE


# Task files end in .yml, so they must be tried before anything broader.
FILE_TYPES: tuple[type[ProjectFile], ...] = (TaskFile, DocumentFile, StyleFile)


def classify(path: Path, root: Path) -> ProjectFile | None:
    """Return the variant for ``path``, or ``None`` if no processor claims it."""
    for file_type in FILE_TYPES:
        if file_type.claims(path.name):
            return file_type(path, root)
    return None
