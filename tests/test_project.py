"""Tests for project discovery, ignore rules and project layout."""

from __future__ import annotations

import pytest

from timsync.errors import ConfigError, ProjectNotFound
from timsync.project import IgnoreRules, Project, discover
from timsync.project.discovery import DEFAULT_IGNORE_FILE, IGNORE_FILE_NAME

from conftest import write_project


def _touch(root, *paths):
    for rel in paths:
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("content", encoding="utf-8")


# ---------------------------------------------------------------------------
# discover()
# ---------------------------------------------------------------------------


class TestDiscover:
    def test_sorted_relative_paths(self, tmp_path):
        _touch(tmp_path, "b.md", "a.md", "sub/c.md", "sub/a.task.yml")
        files = discover(tmp_path)
        assert [f.rel_path for f in files] == [
            "a.md",
            "b.md",
            "sub/a.task.yml",
            "sub/c.md",
        ]

    def test_reserved_names_pruned(self, tmp_path):
        _touch(
            tmp_path,
            "keep.md",
            "_draft.md",
            ".hidden.md",
            "_templates/part.md",
            ".timsync/notes.md",
            "sub/_private/x.md",
        )
        assert [f.rel_path for f in discover(tmp_path)] == ["keep.md"]

    def test_unclaimed_extensions_skipped(self, tmp_path):
        _touch(tmp_path, "a.md", "image.png", "data.json", "notes.txt")
        assert [f.rel_path for f in discover(tmp_path)] == ["a.md"]

    def test_ignore_file(self, tmp_path):
        _touch(tmp_path, "README.md", "a.md", "drafts/x.md", "docs/old-1.md", "docs/new.md")
        (tmp_path / IGNORE_FILE_NAME).write_text(
            "# comment\n\nREADME.md\ndrafts/\ndocs/old-*\n", encoding="utf-8"
        )
        assert [f.rel_path for f in discover(tmp_path)] == ["a.md", "docs/new.md"]

    def test_explicit_rules_override_ignore_file(self, tmp_path):
        _touch(tmp_path, "a.md", "b.md")
        (tmp_path / IGNORE_FILE_NAME).write_text("a.md\n", encoding="utf-8")
        files = discover(tmp_path, IgnoreRules(["b.md"]))
        assert [f.rel_path for f in files] == ["a.md"]


class TestIgnoreRules:
    def test_matches_parent_directories(self):
        rules = IgnoreRules(["drafts"])
        assert rules.matches("drafts/deep/x.md")
        assert not rules.matches("final/drafts.md")

    def test_default_file_ignores_readme(self, tmp_path):
        (tmp_path / IGNORE_FILE_NAME).write_text(DEFAULT_IGNORE_FILE)
        rules = IgnoreRules.for_project(tmp_path)
        assert rules.matches("README.md")
        assert not rules.matches("index.md")


# ---------------------------------------------------------------------------
# Project
# ---------------------------------------------------------------------------


class TestProject:
    def test_resolve_from_nested_directory(self, tmp_path):
        project = write_project(tmp_path / "proj", {"a/b/c.md": "x"})
        resolved = Project.resolve_from_directory(tmp_path / "proj" / "a" / "b")
        assert resolved.root == project.root

    def test_resolve_fails_outside_project(self, tmp_path):
        (tmp_path / "empty").mkdir()
        with pytest.raises(ProjectNotFound):
            Project.resolve_from_directory(tmp_path / "empty")

    def test_resolve_gives_up_after_ten_ancestors(self, tmp_path):
        write_project(tmp_path, {})
        deep = tmp_path.joinpath(*[f"d{i}" for i in range(11)])
        deep.mkdir(parents=True)
        with pytest.raises(ProjectNotFound):
            Project.resolve_from_directory(deep)
        assert Project.resolve_from_directory(deep.parent).root == tmp_path.resolve()

    def test_site_data(self, tmp_path):
        project = write_project(tmp_path, {"_config.yml": "title: Course\nyear: 2026\n"})
        assert project.site_data() == {"title": "Course", "year": 2026}

    def test_site_data_missing(self, tmp_path):
        assert write_project(tmp_path, {}).site_data() == {}

    def test_site_data_not_a_mapping(self, tmp_path):
        project = write_project(tmp_path, {"_config.yml": "- a\n- b\n"})
        with pytest.raises(ConfigError):
            project.site_data()

    def test_config_targets(self, tmp_path):
        project = write_project(tmp_path, {})
        target = project.config.target()
        assert target.host == "https://tim.example.com"
        assert target.folder_root == "kurssit/demo"

    def test_template_dir(self, tmp_path):
        project = write_project(tmp_path, {})
        assert project.template_dir == tmp_path.resolve() / "_templates"


class TestInit:
    def test_creates_skeleton(self, tmp_path):
        project = Project.init(tmp_path / "new")
        root = project.root
        assert (root / ".timsync" / "config.yml").is_file()
        assert (root / "_config.yml").is_file()
        assert (root / IGNORE_FILE_NAME).is_file()
        assert ".timsync" in (root / ".gitignore").read_text()
        assert Project.resolve_from_directory(root).root == root

    def test_refuses_existing_project(self, tmp_path):
        Project.init(tmp_path)
        with pytest.raises(ConfigError):
            Project.init(tmp_path)

    def test_force_keeps_user_files(self, tmp_path):
        Project.init(tmp_path)
        (tmp_path / "_config.yml").write_text("title: Mine\n")
        Project.init(tmp_path, force=True)
        assert (tmp_path / "_config.yml").read_text() == "title: Mine\n"

    def test_appends_to_existing_gitignore(self, tmp_path):
        (tmp_path / ".gitignore").write_text("*.pyc")
        Project.init(tmp_path)
        content = (tmp_path / ".gitignore").read_text()
        assert content.startswith("*.pyc\n")
        assert ".timsync" in content

    def test_rejects_file_path(self, tmp_path):
        path = tmp_path / "file.txt"
        path.write_text("x")
        with pytest.raises(ProjectNotFound):
            Project.init(path)
