"""Handlebars helpers for TIM markdown.

Helpers are bound per render through ``HelperSet`` so that each document
gets its own region id assigner and settings accumulator. All output is
returned as ``strlist`` so pybars does not HTML-escape it.

Block helpers follow the pybars calling convention
``helper(this, options, *args, **kwargs)``; simple helpers are called as
``helper(this, *args, **kwargs)``.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Mapping

import yaml
from pybars import strlist

from ..sync.context import SiteSnapshot
from .identifiers import RegionIdAssigner

logger = logging.getLogger(__name__)

# Site key holding the task reference map published by the task processor:
# task uid -> {"par_id": ..., "doc": <uid of the tasks document>}
TASKS_SITE_KEY = "tasks"


class HelperMisuse(Exception):
    """A helper was called with missing or invalid arguments."""


def text(value: Any) -> str:
    """Plain string of a template value (``strlist`` aware)."""
    if isinstance(value, strlist):
        return "".join(value)
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def deep_merge(base: dict[str, Any], update: Mapping[str, Any]) -> dict[str, Any]:
    """Recursively merge ``update`` into ``base`` (in place)."""
    for key, value in update.items():
        if isinstance(value, Mapping) and isinstance(base.get(key), dict):
            deep_merge(base[key], value)
        else:
            base[key] = dict(value) if isinstance(value, Mapping) else value
    return base


def _truthy(value: Any) -> bool:
    if isinstance(value, strlist):
        return bool("".join(value))
    if isinstance(value, str):
        return value.lower() not in ("", "false", "0", "no")
    return bool(value)


def _classes(value: Any) -> str:
    names = [c.lstrip(".") for c in text(value).split() if c.lstrip(".")]
    return " ".join(f".{c}" for c in names)


def _line_block(value: Any) -> str:
    """Rendered block content, terminated by a newline unless empty.

    Standalone closing tags swallow the newline before them, and TIM
    markers must start on a line of their own.
    """
    rendered = text(value)
    if rendered and not rendered.endswith("\n"):
        rendered += "\n"
    return rendered


class HelperSet:
    """Helpers bound to one document render.

    Args:
        site: Frozen site snapshot, or ``None`` when rendering without one.
        assigner: Region id assigner of the document being rendered.
        restore_raw: Callback restoring raw-block placeholders in a string.
    """

    def __init__(
        self,
        site: SiteSnapshot | None,
        assigner: RegionIdAssigner,
        restore_raw: Callable[[str], str] = lambda s: s,
    ) -> None:
        self.site = site
        self.assigner = assigner
        self.restore_raw = restore_raw
        self.settings: dict[str, Any] = {}

    def as_dict(self) -> dict[str, Callable[..., Any]]:
        return {
            "docsettings": self.docsettings,
            "area": self.area,
            "ref_area": self.ref_area,
            "task": self.task,
            "task_id": self.task_id,
            "url_for": self.url_for,
            "gen_par_id": self.gen_par_id,
        }

    # ------------------------------------------------------------------
    # Site access
    # ------------------------------------------------------------------

    def _site(self, helper: str) -> SiteSnapshot:
        if self.site is None:
            raise HelperMisuse(f"'{helper}' needs the site context")
        return self.site

    def _resolve_doc_id(self, reference: Any) -> int:
        if isinstance(reference, bool):
            raise HelperMisuse("document reference must be a uid or an id")
        if isinstance(reference, int):
            return reference
        ref = text(reference).strip()
        if ref.isdigit():
            return int(ref)
        if not ref:
            raise HelperMisuse("document reference is empty")
        return self._site("ref_area").doc_id(ref)

    def _task_ref(self, helper: str, uid: Any) -> tuple[str, int, str]:
        uid = text(uid).strip()
        if not uid:
            raise HelperMisuse(f"'{helper}' needs a task uid")
        site = self._site(helper)
        tasks = site.get(TASKS_SITE_KEY)
        if not tasks:
            raise HelperMisuse(
                "There are no tasks registered in the project. Add tasks "
                "(`.task.yml` files) to the project to use the task helpers."
            )
        entry = tasks.get(uid)
        if entry is None:
            raise HelperMisuse(
                f"Task with UID '{uid}' is not registered in the project."
            )
        return uid, site.doc_id(entry["doc"]), entry["par_id"]

    # ------------------------------------------------------------------
    # Block helpers
    # ------------------------------------------------------------------

    def docsettings(self, this: Any, options: Any, *args: Any, **kwargs: Any) -> strlist:
        """Merge the block's YAML body into the document settings."""
        body = self.restore_raw(text(options["fn"](this)))
        try:
            data = yaml.safe_load(body) if body.strip() else {}
        except yaml.YAMLError as exc:
            raise HelperMisuse(f"docsettings body is not valid YAML: {exc}") from exc
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise HelperMisuse("docsettings body must be a YAML mapping")
        deep_merge(self.settings, data)
        logger.debug("docsettings merged keys: %s", ", ".join(sorted(map(str, data))))
        return strlist()

    def area(self, this: Any, options: Any, *args: Any, **kwargs: Any) -> strlist:
        """A named or anonymous TIM area.

        ``{{#area "name" collapse=true class="c"}}...{{else}}...{{/area}}``;
        the else branch is only emitted for collapsed areas. The engine
        passes the ``class`` hash argument as ``class_``.
        """
        if args and args[0] is not None and text(args[0]).strip():
            name = text(args[0]).strip()
            region = self.assigner.named(name)
        else:
            region = self.assigner.anonymous()
            name = f"area-{region.id}"

        collapse = _truthy(kwargs.get("collapse", False))
        attrs = [f'area="{name}"', f'id="{region.id}"']
        if collapse:
            attrs.append('collapse="true"')
        classes = _classes(kwargs.get("class_", ""))
        if classes:
            attrs.append(classes)

        out = strlist()
        out.append("#- {" + " ".join(attrs) + "}\n")
        if not collapse:
            out.append("\n#-\n")
        out.append(_line_block(options["fn"](this)))
        if collapse:
            rendered = _line_block(options["inverse"](this))
            if rendered:
                out.append("#-\n")
                out.append(rendered)
        out.append(f'#- {{area_end="{name}"}}\n\n#-\n')
        return out

    # ------------------------------------------------------------------
    # Simple helpers
    # ------------------------------------------------------------------

    def ref_area(self, this: Any, doc: Any = None, area: Any = None, **kwargs: Any) -> strlist:
        """Reference paragraph to an area of another document."""
        if doc is None or area is None:
            raise HelperMisuse("usage: {{ref_area <doc uid or id> <area name>}}")
        doc_id = self._resolve_doc_id(doc)
        return strlist([f'#- {{rd="{doc_id}" ra="{text(area)}"}}'])

    def task(self, this: Any, uid: Any = None, **kwargs: Any) -> strlist:
        """Import a project task by uid as a reference paragraph."""
        uid, doc_id, par_id = self._task_ref("task", uid)
        region = self.assigner.task(uid)
        return strlist(
            [f'#- {{rd="{doc_id}" rp="{par_id}" id="{region.id}"}}\n#-\n']
        )

    def task_id(self, this: Any, uid: Any = None, **kwargs: Any) -> strlist:
        """Global task id ``<tasks doc id>.<uid>``."""
        uid, doc_id, _ = self._task_ref("task_id", uid)
        return strlist([f"{doc_id}.{uid}"])

    def url_for(self, this: Any, uid: Any = None, **kwargs: Any) -> strlist:
        """URL of a project document, ``/view/<base>/<path>`` by default."""
        ref = text(uid).strip()
        if not ref:
            raise HelperMisuse("usage: {{url_for <doc uid> [view=\"view\"]}}")
        site = self._site("url_for")
        path = site.lookup(ref)["path"]
        view = text(kwargs.get("view", "view")).strip("/")
        base = site.base_path.strip("/")
        location = "/".join(p for p in (base, path) if p)
        if not view:
            return strlist([location])
        return strlist([f"/{view}/{location}"])

    def gen_par_id(self, this: Any, name: Any = None, **kwargs: Any) -> strlist:
        """A stable paragraph id, named or by encounter order."""
        if name is not None and text(name).strip():
            region = self.assigner.named(text(name).strip(), kind="par")
        else:
            region = self.assigner.anonymous(kind="par")
        return strlist([region.id])
