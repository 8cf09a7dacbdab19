"""Style themes: ``.scss``/``.css`` files published as TIM style documents."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from ..errors import ReconciliationConflict
from ..project.files import ProcessorType, ProjectFile
from ..templating.identifiers import RegionIdAssigner
from .base import TemplatedProcessor
from .documents import _uid
from .models import DocumentKind, PreparedDocument, TIMDocument

if TYPE_CHECKING:
    from ..sync.context import SiteSnapshot

logger = logging.getLogger(__name__)

STYLES_FOLDER = "styles"
THEMES_SITE_KEY = "style_themes"


def _quote(value: str) -> str:
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


class StyleProcessor(TemplatedProcessor):
    """One style document per theme file, all under ``styles/``.

    Theme names are the lower-cased file stems and must be unique across
    the project, wherever the files live locally.
    """

    processor_type = ProcessorType.STYLE

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._themes: dict[str, ProjectFile] = {}

    def register(self, file: ProjectFile) -> None:
        name = file.stem.lower()
        _uid(file)
        other = self._themes.get(name)
        if other is not None:
            raise ReconciliationConflict(
                f"style theme '{name}' is defined in both '{other.rel_path}' "
                f"and '{file.rel_path}'; theme file names must be unique"
            )
        self._themes[name] = file

    def theme_path(self, name: str) -> str:
        return f"{STYLES_FOLDER}/{name}"

    def build_documents(self) -> list[TIMDocument]:
        documents = []
        for name in sorted(self._themes):
            file = self._themes[name]
            title = file.front_matter.get("title")
            documents.append(
                TIMDocument(
                    path=self.theme_path(name),
                    title=str(title) if title is not None else file.stem,
                    stable_key=file.rel_path,
                    kind=DocumentKind.STYLE,
                    processor=self,
                    sources=(file,),
                    uid=_uid(file),
                )
            )
        return documents

    def publish_context(self) -> dict[str, Any]:
        if not self._themes:
            return {}
        themes = {}
        for name in sorted(self._themes):
            location = "/".join(p for p in (self.base_path, self.theme_path(name)) if p)
            themes[name] = f"/{location}"
        return {THEMES_SITE_KEY: themes}

    def render(self, document: TIMDocument, context: SiteSnapshot) -> PreparedDocument:
        file = document.sources[0]
        result = self.render_source(
            file.body,
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
        markdown = (
            '``` {settings=""}\n'
            f"description: {_quote(document.title)}\n"
            "```\n\n"
            "```scss\n"
            f"{result.text.strip()}\n"
            "```\n"
        )
        return PreparedDocument(
            markdown=markdown,
            stable_key=document.stable_key,
            settings=result.settings,
        )
