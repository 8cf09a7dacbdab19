"""Project file model: discovery, front matter, project layout."""

from .discovery import IgnoreRules, discover
from .files import (
    DocumentFile,
    ProcessorType,
    ProjectFile,
    StyleFile,
    TaskFile,
    classify,
    parse_front_matter,
)
from .project import Project

__all__ = [
    "DocumentFile",
    "IgnoreRules",
    "ProcessorType",
    "Project",
    "ProjectFile",
    "StyleFile",
    "TaskFile",
    "classify",
    "discover",
    "parse_front_matter",
]
