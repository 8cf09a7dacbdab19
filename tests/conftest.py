"""Shared pytest fixtures for timsync tests."""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Any, Dict, Optional
from unittest.mock import MagicMock

import pytest

from timsync.config import Target
from timsync.core.client import ItemType, RemoteNode, TimClient
from timsync.errors import ItemNotFound, RemoteOperationError
from timsync.project import Project


@pytest.fixture(autouse=True)
def _isolate_config(monkeypatch, tmp_path):
    """Keep the user's global config and TIMSYNC_* variables out of tests."""
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.delenv("TIMSYNC_CONFIG", raising=False)
    for var in (
        "TIMSYNC_HOST",
        "TIMSYNC_FOLDER_ROOT",
        "TIMSYNC_USERNAME",
        "TIMSYNC_PASSWORD",
        "TIMSYNC_INSECURE",
        "TIMSYNC_MAX_PARALLEL_REQUESTS",
        "LOG_LEVEL",
    ):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def mock_target():
    """A valid sync target."""
    return Target(
        name="default",
        host="https://tim.example.com",
        folder_root="kurssit/demo",
        username="testuser",
        password="testpass",
    )


@pytest.fixture
def mock_tim_client(mock_target):
    """MagicMock TimClient for tests that only check calls."""
    client = MagicMock(spec=TimClient)
    client.target = mock_target
    return client


# ---------------------------------------------------------------------------
# Project trees
# ---------------------------------------------------------------------------

PROJECT_CONFIG = """\
targets:
  default:
    host: https://tim.example.com
    folder_root: kurssit/demo
    username: testuser
    password: testpass
"""


def write_project(root: Path, files: Dict[str, str], config: str = PROJECT_CONFIG) -> Project:
    """Create a project under ``root`` with the given relative files."""
    config_dir = root / ".timsync"
    config_dir.mkdir(parents=True, exist_ok=True)
    (config_dir / "config.yml").write_text(config, encoding="utf-8")
    for rel_path, content in files.items():
        path = root / rel_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    return Project(root)


@pytest.fixture
def make_project(tmp_path):
    """Factory fixture: ``make_project({"a.md": "..."})``."""

    def _make(files: Dict[str, str], config: str = PROJECT_CONFIG) -> Project:
        return write_project(tmp_path / "project", files, config)

    return _make


# ---------------------------------------------------------------------------
# In-memory TIM server
# ---------------------------------------------------------------------------


class FakeTimClient:
    """Minimal TimClient replacement for testing.

    Simulates the TIM item tree with an in-memory dict keyed by path.
    Creating an item requires its parent folder to exist, like the real
    server does.
    """

    def __init__(self, folders: Optional[list] = None) -> None:
        self.items: Dict[str, Dict[str, Any]] = {}
        self.contents: Dict[int, str] = {}
        self.calls: list[tuple] = []
        self.fail_paths: set[str] = set()
        self._next_id = 100
        self._lock = threading.Lock()
        for folder in folders or []:
            self.add_folder(folder)

    # -- test setup helpers ------------------------------------------------

    def add_folder(self, path: str) -> int:
        parts = path.split("/")
        for i in range(1, len(parts) + 1):
            sub = "/".join(parts[:i])
            if sub not in self.items:
                self._add(sub, ItemType.FOLDER, parts[i - 1])
        return self.items[path]["id"]

    def add_document(
        self,
        path: str,
        title: str = "",
        key: Optional[str] = None,
        content: str = "",
    ) -> int:
        parent = path.rpartition("/")[0]
        if parent:
            self.add_folder(parent)
        item_id = self._add(path, ItemType.DOCUMENT, title or path.rsplit("/", 1)[-1])
        if key is not None:
            self.items[path]["settings"] = {"timsync": {"key": key}}
        self.contents[item_id] = content
        return item_id

    def _add(self, path: str, kind: ItemType, title: str) -> int:
        self._next_id += 1
        self.items[path] = {
            "id": self._next_id,
            "kind": kind,
            "title": title,
            "settings": {},
        }
        return self._next_id

    def _path_of(self, item_id: int) -> str:
        for path, item in self.items.items():
            if item["id"] == item_id:
                return path
        raise ItemNotFound(str(item_id))

    def _node(self, path: str) -> RemoteNode:
        item = self.items[path]
        return RemoteNode(
            id=item["id"],
            kind=item["kind"],
            path=path,
            title=item["title"],
            settings=dict(item["settings"]),
        )

    def document(self, path: str) -> Dict[str, Any]:
        return self.items[path]

    def operations(self, name: str) -> list[tuple]:
        return [c for c in self.calls if c[0] == name]

    @property
    def mutations(self) -> list[tuple]:
        readonly = {"login", "get_item_info", "list_tree", "download_markdown"}
        return [c for c in self.calls if c[0] not in readonly]

    # -- TimClient API -----------------------------------------------------

    def login(self) -> None:
        self.calls.append(("login",))

    def get_item_info(self, path: str) -> RemoteNode:
        with self._lock:
            self.calls.append(("get_item_info", path))
            if path not in self.items:
                raise ItemNotFound(path)
            return self._node(path)

    def list_tree(self, root: str) -> list[RemoteNode]:
        with self._lock:
            self.calls.append(("list_tree", root))
            if root not in self.items:
                raise ItemNotFound(root, operation="list_tree")
            prefix = root + "/"
            return [self._node(p) for p in sorted(self.items) if p.startswith(prefix)]

    def create_item(self, kind: ItemType, path: str, title: str) -> RemoteNode:
        with self._lock:
            self.calls.append(("create_item", ItemType(kind), path, title))
            if path in self.fail_paths:
                raise RemoteOperationError("create_item", path, "HTTP 500")
            if path in self.items:
                raise RemoteOperationError("create_item", path, "item already exists")
            parent = path.rpartition("/")[0]
            if parent and self.items.get(parent, {}).get("kind") != ItemType.FOLDER:
                raise RemoteOperationError("create_item", path, "parent folder missing")
            item_id = self._add(path, ItemType(kind), title)
            if kind == ItemType.DOCUMENT:
                self.contents[item_id] = ""
            return self._node(path)

    def update_settings(self, doc_id: int, settings: Dict[str, Any]) -> None:
        with self._lock:
            self.calls.append(("update_settings", doc_id, settings))
            item = self.items[self._path_of(doc_id)]
            merged = dict(item["settings"])
            merged.update(settings)
            item["settings"] = merged

    def set_title(self, item_id: int, title: str) -> None:
        with self._lock:
            self.calls.append(("set_title", item_id, title))
            self.items[self._path_of(item_id)]["title"] = title

    def move_item(self, item_id: int, path: str, title: str) -> None:
        with self._lock:
            self.calls.append(("move_item", item_id, path, title))
            if path in self.items:
                raise RemoteOperationError("move_item", path, "item already exists")
            old = self._path_of(item_id)
            item = self.items.pop(old)
            item["title"] = title
            self.items[path] = item

    def delete_item(self, item_id: int) -> None:
        with self._lock:
            self.calls.append(("delete_item", item_id))
            del self.items[self._path_of(item_id)]
            self.contents.pop(item_id, None)

    def download_markdown(self, doc_id: int) -> str:
        with self._lock:
            self.calls.append(("download_markdown", doc_id))
            return self.contents[doc_id]

    def upload_markdown(self, doc_id: int, text: str, original: str) -> None:
        with self._lock:
            self.calls.append(("upload_markdown", doc_id))
            if self.contents.get(doc_id) != original:
                raise RemoteOperationError("upload_markdown", str(doc_id), "edit conflict")
            self.contents[doc_id] = text


@pytest.fixture
def fake_client():
    """In-memory TIM server with the target root folder present."""
    return FakeTimClient(folders=["kurssit/demo"])
