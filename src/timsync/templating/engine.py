"""Handlebars template evaluation for project files.

``TemplateEngine`` wraps the ``pybars3`` evaluator with the pieces TIM
markdown needs:

- ``{{> path}}`` inclusions are expanded in the source text before
  compilation, so an included file behaves exactly as if pasted in.
- ``{{{{raw}}}} ... {{{{/raw}}}}`` blocks are cut out before compilation
  and restored verbatim in the output.
- The context is strict: reading an undefined path is an error instead of
  an empty string, and unknown ``site.doc.<uid>`` entries raise
  ``UnknownDocumentReference``.
- Nothing is HTML escaped.

Usage:
    engine = TemplateEngine(project.root, project.template_dir)
    result = engine.render(
        source, context, origin=path, assigner=RegionIdAssigner(key)
    )
    result.text, result.settings, result.regions
"""

from __future__ import annotations

import keyword
import logging
import re
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

from pybars import Compiler, strlist

from ..errors import MalformedFrontMatter, TemplateError, UnknownDocumentReference
from ..project.files import parse_front_matter
from ..sync.context import SiteSnapshot
from .helpers import HelperMisuse, HelperSet
from .identifiers import Region, RegionIdAssigner

logger = logging.getLogger(__name__)

_RAW_BLOCK = re.compile(
    r"\{\{\{\{\s*raw\s*\}\}\}\}(.*?)\{\{\{\{\s*/raw\s*\}\}\}\}", re.DOTALL
)
_INCLUDE = re.compile(r'\{\{>\s*(?:"([^"]+)"|([^\s}]+))\s*\}\}')
_RAW_TOKEN = "@@timsync-raw-{}@@"
_RAW_TOKEN_PATTERN = re.compile(r"@@timsync-raw-(\d+)@@")
_COMMENT = re.compile(r"\{\{!--.*?--\}\}|\{\{![^}]*\}\}", re.DOTALL)
_TAG = re.compile(r"\{\{[^{}]*\}\}")
_BLOCK_TAG = re.compile(r"\{\{~?\s*([#^/])\s*([^\s}~]+)")
_HASH_KEYWORD = re.compile(
    r'"[^"]*"|' + r"'[^']*'|(?<=\s)(" + "|".join(keyword.kwlist) + r")(?==)"
)

# Names the template runtime itself looks up on every scope.
_RUNTIME_NAMES = frozenset({"this", ".."})

_TEMPLATE_EXTENSIONS = ("", ".md", ".hbs")
MAX_INCLUDE_DEPTH = 32


# ---------------------------------------------------------------------------
# Strict context
# ---------------------------------------------------------------------------


class UndefinedPath(Exception):
    """A template read a name that is not in its context."""

    def __init__(self, key: Any) -> None:
        self.key = key
        super().__init__(f"'{key}' is not defined")


class StrictMapping(dict):
    """Template scope that refuses to resolve missing names."""

    def _missing(self, key: Any) -> Any:
        raise UndefinedPath(key)

    def __missing__(self, key: Any) -> Any:
        return self._missing(key)

    def get(self, key: Any, default: Any = None) -> Any:
        if key in self:
            return dict.__getitem__(self, key)
        if isinstance(key, str) and (key.startswith("@") or key in _RUNTIME_NAMES):
            return default
        return self._missing(key)


class _DocumentMap(StrictMapping):
    def _missing(self, key: Any) -> Any:
        raise UnknownDocumentReference(str(key))


class _DocumentEntry(StrictMapping):
    def __init__(self, uid: str, data: Mapping[str, Any]) -> None:
        super().__init__(data)
        self._uid = uid

    def _missing(self, key: Any) -> Any:
        if key == "doc_id":
            raise UnknownDocumentReference(
                self._uid, "document has no remote id"
            )
        raise UndefinedPath(f"site.doc.{self._uid}.{key}")


def _entry(data: Mapping[str, Any]) -> _DocumentEntry:
    uid = data.get("uid") or data.get("path", "")
    converted = {
        k: template_value(v)
        for k, v in data.items()
        if not (k == "doc_id" and v is None)
    }
    return _DocumentEntry(uid, converted)


def template_value(value: Any) -> Any:
    """Convert context data into what the evaluator should see.

    Mappings become strict scopes, sequences become lists, and non-empty
    strings become ``strlist`` so they are emitted without escaping.
    """
    if isinstance(value, SiteSnapshot):
        return site_value(value)
    if isinstance(value, strlist):
        return value
    if isinstance(value, Mapping):
        return StrictMapping({k: template_value(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return [template_value(v) for v in value]
    if isinstance(value, str):
        return strlist([value]) if value else value
    return value


def site_value(site: SiteSnapshot) -> StrictMapping:
    data = {}
    for key, value in site.data.items():
        if key == "doc":
            data[key] = _DocumentMap(
                {uid: _entry(entry) for uid, entry in value.items()}
            )
        elif key == "docs":
            data[key] = [_entry(entry) for entry in value]
        else:
            data[key] = template_value(value)
    return StrictMapping(data)


# ---------------------------------------------------------------------------
# Source checks
# ---------------------------------------------------------------------------


def check_blocks(source: str, location: str) -> None:
    """Raise ``TemplateError`` unless every block is closed by its own name.

    The evaluator silently drops the rest of a template after an unclosed
    block, so balance is checked before compiling.
    """
    stack: list[str] = []
    for match in _BLOCK_TAG.finditer(_COMMENT.sub("", source)):
        marker, name = match.groups()
        if marker != "/":
            stack.append(name)
        elif not stack:
            raise TemplateError(location, f"syntax error: '/{name}' closes no block")
        elif stack[-1] != name:
            raise TemplateError(
                location, f"syntax error: '{stack[-1]}' block closed by '/{name}'"
            )
        else:
            stack.pop()
    if stack:
        raise TemplateError(location, f"syntax error: unclosed '{stack[-1]}' block")


def rename_keyword_arguments(source: str) -> str:
    """Rename hash arguments that are Python keywords (``class=`` to ``class_=``).

    Hash arguments reach helpers as Python keyword arguments.
    """

    def _tag(match: re.Match) -> str:
        return _HASH_KEYWORD.sub(
            lambda m: f"{m.group(1)}_" if m.group(1) else m.group(0), match.group(0)
        )

    return _TAG.sub(_tag, source)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


@dataclass
class RenderResult:
    """Output of one template render.

    Attributes:
        text: Rendered markdown.
        settings: Settings merged from ``docsettings`` blocks.
        regions: Regions that received ids, in encounter order.
    """

    text: str
    settings: dict[str, Any] = field(default_factory=dict)
    regions: list[Region] = field(default_factory=list)


class _RawStore:
    def __init__(self) -> None:
        self.blocks: list[str] = []

    def protect(self, source: str) -> str:
        def _cut(match: re.Match) -> str:
            self.blocks.append(match.group(1))
            return _RAW_TOKEN.format(len(self.blocks) - 1)

        return _RAW_BLOCK.sub(_cut, source)

    def restore(self, rendered: str) -> str:
        return _RAW_TOKEN_PATTERN.sub(
            lambda m: self.blocks[int(m.group(1))], rendered
        )


class TemplateEngine:
    """Render project sources through Handlebars.

    Args:
        root: Project root; ``/``-prefixed inclusions resolve against it.
        template_dir: Fallback directory for bare inclusion names.
    """

    def __init__(self, root: Path, template_dir: Path | None = None) -> None:
        self.root = root.resolve()
        self.template_dir = (
            template_dir.resolve() if template_dir else self.root / "_templates"
        )
        self._compiler = Compiler()
        # The compiler keeps per-compile state; renders run on worker threads.
        self._compile_lock = threading.Lock()

    def _label(self, origin: Path | None) -> str:
        if origin is None:
            return "<template>"
        try:
            return origin.resolve().relative_to(self.root).as_posix()
        except ValueError:
            return str(origin)

    # ------------------------------------------------------------------
    # Inclusion
    # ------------------------------------------------------------------

    def resolve_include(self, reference: str, origin: Path | None) -> Path:
        """Locate the file an inclusion refers to.

        Raises:
            TemplateError: No candidate file exists.
        """
        if reference.startswith("/"):
            bases = [self.root / reference.lstrip("/")]
        else:
            relative_base = origin.parent if origin is not None else self.root
            bases = [relative_base / reference, self.template_dir / reference]

        for base in bases:
            for ext in _TEMPLATE_EXTENSIONS:
                candidate = base.with_name(base.name + ext) if ext else base
                if candidate.is_file():
                    return candidate.resolve()

        raise TemplateError(
            self._label(origin), f"included file '{reference}' not found"
        )

    def expand(
        self,
        source: str,
        origin: Path | None,
        raw: _RawStore,
        stack: tuple[Path, ...] = (),
    ) -> str:
        """Protect raw blocks and splice in inclusions, recursively."""
        if len(stack) > MAX_INCLUDE_DEPTH:
            raise TemplateError(self._label(origin), "inclusions nested too deeply")

        protected = raw.protect(source)
        here = origin.resolve() if origin is not None else None
        chain = (*stack, here) if here is not None else stack

        def _splice(match: re.Match) -> str:
            reference = match.group(1) or match.group(2)
            path = self.resolve_include(reference, origin)
            if path in stack or path == here:
                cycle = " -> ".join(self._label(p) for p in (*chain, path))
                raise TemplateError(
                    self._label(origin), f"circular inclusion: {cycle}"
                )
            try:
                _, body = parse_front_matter(
                    path.read_text(encoding="utf-8"), source=self._label(path)
                )
            except MalformedFrontMatter as exc:
                raise TemplateError(self._label(path), str(exc)) from exc
            except OSError as exc:
                raise TemplateError(self._label(origin), str(exc)) from exc
            logger.debug("Including %s into %s", self._label(path), self._label(origin))
            return self.expand(body, path, raw, chain)

        return _INCLUDE.sub(_splice, protected)

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def render(
        self,
        source: str,
        context: Mapping[str, Any],
        *,
        origin: Path | None = None,
        assigner: RegionIdAssigner,
    ) -> RenderResult:
        """Evaluate ``source`` against ``context``.

        Args:
            source: Template text (front matter already removed).
            context: Render context. A ``SiteSnapshot`` under ``site`` is
                exposed to templates and used by the helpers.
            origin: Path of the file the source came from.
            assigner: Region id assigner of the document being rendered.

        Raises:
            TemplateError: Syntax errors, undefined context paths, helper
                misuse, failed inclusions.
            UnknownDocumentReference: A reference to a document missing
                from the site context.
        """
        location = self._label(origin)
        raw = _RawStore()
        expanded = self.expand(source, origin, raw)

        site = context.get("site")
        helpers = HelperSet(
            site if isinstance(site, SiteSnapshot) else None,
            assigner,
            raw.restore,
        )
        scope = template_value(dict(context))

        check_blocks(expanded, location)
        try:
            with self._compile_lock:
                template = self._compiler.compile(rename_keyword_arguments(expanded))
        except Exception as exc:
            raise TemplateError(location, f"syntax error: {exc}") from exc

        try:
            output = template(scope, helpers=helpers.as_dict())
        except (TemplateError, UnknownDocumentReference):
            raise
        except UndefinedPath as exc:
            raise TemplateError(location, str(exc)) from exc
        except HelperMisuse as exc:
            raise TemplateError(location, str(exc)) from exc
        except Exception as exc:
            raise TemplateError(location, f"{type(exc).__name__}: {exc}") from exc

        return RenderResult(
            text=raw.restore("".join(output)),
            settings=helpers.settings,
            regions=list(assigner.regions),
        )
