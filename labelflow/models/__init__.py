# labelflow/models/__init__.py

from .annotation import Annotation
from .asset import Asset
from .export import Export
from .label import Label
from .notification import MilestoneClaim, Notification
from .project import Project
from .task import Task, TaskStatus

__all__ = [
    "Annotation",
    "Asset",
    "Export",
    "Label",
    "MilestoneClaim",
    "Notification",
    "Project",
    "Task",
    "TaskStatus",
]
