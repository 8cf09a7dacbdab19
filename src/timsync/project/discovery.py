"""Project tree discovery.

Walks the project root in sorted order and classifies every file into a
``ProjectFile`` variant. Names starting with ``.`` or ``_`` are reserved
(config, templates, site data) and are never collected, and paths listed
in ``.timsyncignore`` are skipped.
"""

from __future__ import annotations

import fnmatch
import logging
import os
from pathlib import Path

from .files import ProjectFile, classify

logger = logging.getLogger(__name__)

IGNORE_FILE_NAME = ".timsyncignore"

DEFAULT_IGNORE_FILE = """\
# This file is used to ignore files and directories in the project.
# Glob patterns are matched against paths relative to the project root.
# These patterns apply in addition to the default rules
# (files and directories starting with _ or . are never synced).

README.md
"""


def is_reserved(name: str) -> bool:
    return name.startswith((".", "_"))


class IgnoreRules:
    """Glob patterns from a ``.timsyncignore`` file.

    A pattern matches a path relative to the project root, or any of its
    parent directories, so ``drafts`` ignores everything below ``drafts/``.
    """

    def __init__(self, patterns: list[str] | None = None) -> None:
        self.patterns = list(patterns or [])

    @classmethod
    def for_project(cls, root: Path) -> IgnoreRules:
        path = root / IGNORE_FILE_NAME
        if not path.is_file():
            return cls()
        patterns = []
        for line in path.read_text(encoding="utf-8").splitlines():
            line = line.strip()
            if line and not line.startswith("#"):
                patterns.append(line.rstrip("/"))
        logger.debug("Loaded %d ignore patterns from %s", len(patterns), path)
        return cls(patterns)

    def matches(self, rel_path: str) -> bool:
        parts = rel_path.split("/")
        candidates = ["/".join(parts[: i + 1]) for i in range(len(parts))]
        return any(
            fnmatch.fnmatchcase(candidate, pattern)
            for pattern in self.patterns
            for candidate in candidates
        )


def discover(root: Path, ignore: IgnoreRules | None = None) -> list[ProjectFile]:
    """Collect every project file under ``root``.

    Args:
        root: Project root directory.
        ignore: Ignore rules; defaults to the project's ``.timsyncignore``.

    Returns:
        Project files in sorted relative-path order.
    """
    root = root.resolve()
    rules = ignore if ignore is not None else IgnoreRules.for_project(root)
    found: list[ProjectFile] = []

    for dirpath, dirnames, filenames in os.walk(root):
        current = Path(dirpath)
        rel_dir = current.relative_to(root).as_posix()

        def _rel(name: str) -> str:
            return name if rel_dir == "." else f"{rel_dir}/{name}"

        # Prune in place so os.walk does not descend
        dirnames[:] = sorted(
            d
            for d in dirnames
            if not is_reserved(d) and not rules.matches(_rel(d))
        )

        for name in sorted(filenames):
            if is_reserved(name):
                continue
            rel = _rel(name)
            if rules.matches(rel):
                logger.debug("Ignoring %s", rel)
                continue
            project_file = classify(current / name, root)
            if project_file is None:
                logger.debug("No processor claims %s, skipping", rel)
                continue
            found.append(project_file)

    found.sort(key=lambda f: f.rel_path)
    logger.debug("Discovered %d project files under %s", len(found), root)
    return found
