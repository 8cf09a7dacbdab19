"""File processors: project files in, TIM documents out."""

from .base import FileProcessor, ProcessorType, create_processors
from .documents import DocumentProcessor
from .models import DocumentKind, PreparedDocument, TIMDocument
from .styles import StyleProcessor
from .tasks import TaskProcessor

__all__ = [
    "DocumentKind",
    "DocumentProcessor",
    "FileProcessor",
    "PreparedDocument",
    "ProcessorType",
    "StyleProcessor",
    "TIMDocument",
    "TaskProcessor",
    "create_processors",
]
