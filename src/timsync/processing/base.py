"""Processor protocol and the factory that builds one processor per type.

A processor turns the project files of one ``ProcessorType`` into
``TIMDocument`` objects and later renders those documents against the
frozen site context. Processors are independent of each other; the
pipeline only talks to them through ``FileProcessor``.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Mapping, Protocol, runtime_checkable

from ..project.files import ProcessorType, ProjectFile
from ..templating.engine import RenderResult, TemplateEngine
from ..templating.identifiers import RegionIdAssigner

if TYPE_CHECKING:
    from ..project.project import Project
    from ..sync.context import SiteSnapshot
    from .models import PreparedDocument, TIMDocument

logger = logging.getLogger(__name__)

__all__ = [
    "FileProcessor",
    "ProcessorType",
    "TemplatedProcessor",
    "create_processors",
]


@runtime_checkable
class FileProcessor(Protocol):
    """What the pipeline needs from a processor."""

    processor_type: ProcessorType

    def register(self, file: ProjectFile) -> None:
        """Accept one project file of this processor's type."""
        ...

    def build_documents(self) -> list[TIMDocument]:
        """Documents for all registered files, deterministically ordered."""
        ...

    def render(self, document: TIMDocument, context: SiteSnapshot) -> PreparedDocument:
        """Render one of this processor's documents."""
        ...

    def publish_context(self) -> dict[str, Any]:
        """Processor-level values to add under ``site``."""
        ...


class TemplatedProcessor:
    """Shared plumbing for processors that run sources through templates.

    Args:
        project: Project being compiled.
        engine: Template engine shared by all processors.
        base_path: Remote root folder of the compiled tree.
    """

    processor_type: ProcessorType

    def __init__(
        self,
        project: Project,
        engine: TemplateEngine,
        base_path: str = "",
    ) -> None:
        self.project = project
        self.engine = engine
        self.base_path = base_path.strip("/")

    def publish_context(self) -> dict[str, Any]:
        return {}

    def render_source(
        self,
        source: str,
        file: ProjectFile,
        site: SiteSnapshot,
        assigner: RegionIdAssigner,
        values: Mapping[str, Any],
    ) -> RenderResult:
        """Render ``source`` with the file's front matter and ``values``.

        ``site`` always wins over a front matter key of the same name.
        """
        context: dict[str, Any] = dict(file.front_matter)
        context.update(values)
        context["site"] = site
        return self.engine.render(
            source, context, origin=file.path, assigner=assigner
        )


def create_processors(
    project: Project,
    engine: TemplateEngine | None = None,
    *,
    base_path: str = "",
) -> dict[ProcessorType, FileProcessor]:
    """One processor per ``ProcessorType``, sharing one template engine."""
    from .documents import DocumentProcessor
    from .styles import StyleProcessor
    from .tasks import TaskProcessor

    if engine is None:
        engine = TemplateEngine(project.root, project.template_dir)

    processors: dict[ProcessorType, FileProcessor] = {
        ProcessorType.DOCUMENT: DocumentProcessor(project, engine, base_path),
        ProcessorType.TASK: TaskProcessor(project, engine, base_path),
        ProcessorType.STYLE: StyleProcessor(project, engine, base_path),
    }
    logger.debug("Created processors: %s", ", ".join(p.value for p in processors))
    return processors
