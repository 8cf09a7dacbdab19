"""A timsync project: a directory tree of sources plus ``.timsync/``.

Layout conventions:

- ``.timsync/config.yml`` -- sync targets and settings (marks the root).
- ``_config.yml`` -- global site data exposed to templates as ``site``.
- ``_templates/`` -- fallback lookup directory for ``{{> name}}``.
- ``.timsyncignore`` -- extra glob patterns excluded from discovery.
"""

from __future__ import annotations

import logging
import shutil
from functools import cached_property
from pathlib import Path
from typing import Any

import yaml

from ..config_loader import (
    CONFIG_FOLDER,
    ensure_config,
    load_hierarchical_config,
    project_config_path,
)
from ..config_schema import UnifiedConfig, build_config
from ..errors import ConfigError, ProjectNotFound
from .discovery import DEFAULT_IGNORE_FILE, IGNORE_FILE_NAME, IgnoreRules, discover
from .files import ProjectFile

logger = logging.getLogger(__name__)

MAX_SEARCH_DEPTH = 10
SITE_DATA_FILE = "_config.yml"
TEMPLATE_DIR = "_templates"

DEFAULT_SITE_DATA = """\
#
# Settings that affect your whole TIM site.
# Every value is available in all documents through the `site` variable,
# e.g. `{{ site.title }}`.

# The title of your site
title: My TIM page
"""

DEFAULT_GITIGNORE = """\
# timsync
.timsync
"""


class Project:
    """A resolved timsync project.

    Args:
        root: Project root directory (the one holding ``.timsync/``).
    """

    def __init__(self, root: Path) -> None:
        self.root = root.resolve()

    def __repr__(self) -> str:
        return f"Project({str(self.root)!r})"

    @classmethod
    def resolve_from_directory(cls, path: Path) -> Project:
        """Find the project containing ``path``.

        ``path`` and up to ``MAX_SEARCH_DEPTH`` of its ancestors are checked
        for ``.timsync/config.yml``.

        Raises:
            ProjectNotFound: If no project root is found.
        """
        path = path.resolve()
        if not path.is_dir():
            raise ProjectNotFound(
                f"The given path is not a directory or does not exist: {path}"
            )

        for candidate in [path, *path.parents][: MAX_SEARCH_DEPTH + 1]:
            config_dir = candidate / CONFIG_FOLDER
            if (config_dir / "config.yml").is_file() or (
                config_dir / "config.yaml"
            ).is_file():
                logger.debug("Resolved project root: %s", candidate)
                return cls(candidate)

        raise ProjectNotFound(
            f"Could not find a timsync project in {path} or its parents. "
            "Is the project initialized (`timsync init`)?"
        )

    # ------------------------------------------------------------------
    # Layout
    # ------------------------------------------------------------------

    @property
    def template_dir(self) -> Path:
        return self.root / TEMPLATE_DIR

    @cached_property
    def config(self) -> UnifiedConfig:
        return build_config(load_hierarchical_config(self.root))

    def site_data(self) -> dict[str, Any]:
        """Global site data from ``_config.yml`` (empty when absent).

        Raises:
            ConfigError: If the file is not a YAML mapping.
        """
        path = self.root / SITE_DATA_FILE
        if not path.is_file():
            return {}
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8"))
        except yaml.YAMLError as exc:
            raise ConfigError(f"Could not parse {SITE_DATA_FILE}: {exc}") from exc
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError(f"{SITE_DATA_FILE} must contain a YAML mapping")
        return data

    def discover(self) -> list[ProjectFile]:
        return discover(self.root, IgnoreRules.for_project(self.root))

    # ------------------------------------------------------------------
    # Initialization
    # ------------------------------------------------------------------

    @classmethod
    def init(cls, path: Path, force: bool = False) -> Project:
        """Create a new project skeleton in ``path``.

        Writes a starter ``.timsync/config.yml``, ``_config.yml``,
        ``.timsyncignore``, and makes sure ``.gitignore`` excludes
        ``.timsync`` (it holds credentials).

        Raises:
            ProjectNotFound: If ``path`` exists and is not a directory.
            ConfigError: If the project is already initialized and
                ``force`` is not set.
        """
        path = path.resolve()
        if path.exists() and not path.is_dir():
            raise ProjectNotFound(f"The path {path} is not a directory.")

        config_dir = path / CONFIG_FOLDER
        if config_dir.exists():
            if not force:
                raise ConfigError(
                    f"The project {path} is already initialized. "
                    "Use --force to recreate the configuration."
                )
            shutil.rmtree(config_dir)

        logger.info("Initializing new project in %s", path)
        path.mkdir(parents=True, exist_ok=True)
        ensure_config(path)

        gitignore = path / ".gitignore"
        if gitignore.exists():
            content = gitignore.read_text(encoding="utf-8")
            if CONFIG_FOLDER not in content:
                with gitignore.open("a", encoding="utf-8") as fh:
                    if content and not content.endswith("\n"):
                        fh.write("\n")
                    fh.write(DEFAULT_GITIGNORE)
        else:
            gitignore.write_text(DEFAULT_GITIGNORE, encoding="utf-8")

        site_data = path / SITE_DATA_FILE
        if not site_data.exists():
            site_data.write_text(DEFAULT_SITE_DATA, encoding="utf-8")

        ignore_file = path / IGNORE_FILE_NAME
        if not ignore_file.exists():
            ignore_file.write_text(DEFAULT_IGNORE_FILE, encoding="utf-8")

        logger.debug("Project config written to %s", project_config_path(path))
        return cls(path)
