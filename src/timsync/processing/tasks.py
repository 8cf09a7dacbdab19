"""Task definitions: ``*.task.yml`` files aggregated into task documents.

Each task file becomes one plugin paragraph. Tasks are grouped by their
``group`` front matter key into one document per group:

- default group: ``_project_tasks`` (uid ``_timsync_tasks``)
- named group ``g``: ``_project_tasks-g`` (uid ``_timsync_tasks-g``)

Example task file::

    ---
    uid: intro-quiz
    plugin: mcq
    plugin_attributes:
        lazy: false
    class: [exercise]
    ---
    stem: "What is 1 + 1?"
    choices: ...
"""

from __future__ import annotations

import json
import logging
from collections import defaultdict
from typing import TYPE_CHECKING, Any

from ..errors import MalformedFrontMatter, ReconciliationConflict
from ..project.files import ProcessorType, ProjectFile
from ..templating.helpers import TASKS_SITE_KEY, deep_merge
from ..templating.identifiers import RegionIdAssigner, region_id
from .base import TemplatedProcessor
from .models import DocumentKind, PreparedDocument, TIMDocument

if TYPE_CHECKING:
    from ..sync.context import SiteSnapshot

logger = logging.getLogger(__name__)

TASKS_DOC_PATH = "_project_tasks"
TASKS_DOC_UID = "_timsync_tasks"
TASKS_TITLE = "Project tasks"
TASKS_KEY_PREFIX = "@tasks"


def group_path(group: str | None) -> str:
    return f"{TASKS_DOC_PATH}-{group}" if group else TASKS_DOC_PATH


def group_uid(group: str | None) -> str:
    return f"{TASKS_DOC_UID}-{group}" if group else TASKS_DOC_UID


def group_key(group: str | None) -> str:
    return f"{TASKS_KEY_PREFIX}/{group}" if group else TASKS_KEY_PREFIX


def _attribute(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value)


class TaskInfo:
    """One registered task file with its validated front matter."""

    def __init__(self, file: ProjectFile) -> None:
        front_matter = file.front_matter
        self.file = file

        uid = front_matter.get("uid")
        if uid is None or not str(uid).strip():
            raise MalformedFrontMatter(
                file.rel_path, "a task needs a 'uid' in its front matter"
            )
        self.uid = str(uid).strip()

        plugin = front_matter.get("plugin")
        if plugin is None or not str(plugin).strip():
            raise MalformedFrontMatter(
                file.rel_path, "a task needs a 'plugin' in its front matter"
            )
        self.plugin = str(plugin).strip()

        attributes = front_matter.get("plugin_attributes") or {}
        if not isinstance(attributes, dict):
            raise MalformedFrontMatter(
                file.rel_path, "'plugin_attributes' must be a mapping"
            )
        self.attributes: dict[str, Any] = attributes

        classes = front_matter.get("class") or []
        if isinstance(classes, str):
            classes = classes.split()
        if not isinstance(classes, list):
            raise MalformedFrontMatter(file.rel_path, "'class' must be a list")
        self.classes = [str(c).lstrip(".") for c in classes]

        group = front_matter.get("group")
        self.group = str(group).strip() if group is not None else None
        if self.group is not None and (not self.group or "/" in self.group):
            raise MalformedFrontMatter(
                file.rel_path, f"invalid task group '{group}'"
            )

    @property
    def par_id(self) -> str:
        return region_id(group_key(self.group), f"task:{self.uid}")

    def opening_line(self) -> str:
        parts = [f"#{self.uid}", f'id="{self.par_id}"', f'plugin="{self.plugin}"']
        parts.extend(f'{k}="{_attribute(v)}"' for k, v in self.attributes.items())
        parts.extend(f".{c}" for c in self.classes if c)
        return "``` {" + " ".join(parts) + "}\n"


class TaskProcessor(TemplatedProcessor):
    """Aggregates task files into one plugin-paragraph document per group."""

    processor_type = ProcessorType.TASK

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._tasks: dict[str, TaskInfo] = {}

    def register(self, file: ProjectFile) -> None:
        info = TaskInfo(file)
        other = self._tasks.get(info.uid)
        if other is not None:
            raise ReconciliationConflict(
                f"task uid '{info.uid}' is defined in both "
                f"'{other.file.rel_path}' and '{file.rel_path}'"
            )
        self._tasks[info.uid] = info

    def _groups(self) -> dict[str | None, list[TaskInfo]]:
        groups: dict[str | None, list[TaskInfo]] = defaultdict(list)
        for uid in sorted(self._tasks):
            info = self._tasks[uid]
            groups[info.group].append(info)
        return groups

    def build_documents(self) -> list[TIMDocument]:
        groups = self._groups()
        documents = []
        for group in sorted(groups, key=lambda g: g or ""):
            tasks = groups[group]
            documents.append(
                TIMDocument(
                    path=group_path(group),
                    title=TASKS_TITLE if group is None else f"{TASKS_TITLE} ({group})",
                    stable_key=group_key(group),
                    kind=DocumentKind.TASKS,
                    processor=self,
                    sources=tuple(info.file for info in tasks),
                    uid=group_uid(group),
                )
            )
        return documents

    def publish_context(self) -> dict[str, Any]:
        if not self._tasks:
            return {}
        return {
            TASKS_SITE_KEY: {
                uid: {"par_id": info.par_id, "doc": group_uid(info.group)}
                for uid, info in sorted(self._tasks.items())
            }
        }

    def render(self, document: TIMDocument, context: SiteSnapshot) -> PreparedDocument:
        settings: dict[str, Any] = {}
        chunks = []
        for file in document.sources:
            info = TaskInfo(file)
            result = self.render_source(
                file.body,
                file,
                context,
                RegionIdAssigner(f"{document.stable_key}#{info.uid}"),
                {
                    "title": document.title,
                    "path": document.path,
                    "doc_id": document.doc_id or 0,
                    "local_file_path": file.rel_path,
                },
            )
            deep_merge(settings, result.settings)
            chunks.append(
                info.opening_line() + result.text.strip("\n") + "\n\n```\n"
            )
        logger.debug("Rendered %d tasks into %s", len(chunks), document.path)
        return PreparedDocument(
            markdown="\n".join(chunks),
            stable_key=document.stable_key,
            settings=settings,
        )
