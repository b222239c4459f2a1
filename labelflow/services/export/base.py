"""
Base exporter class and the in-memory dataset every exporter reads.
"""

from __future__ import annotations

import io
import json
import logging
import re
import zipfile
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from labelflow.schemas.annotations import AnnotationPayload, dump_payload
from labelflow.schemas.exports import ExportOptions
from labelflow.services.geometry import image_size

logger = logging.getLogger(__name__)

SPLITS = ("train", "val", "test")

# relative filename -> text content
FileBundle = Dict[str, str]


@dataclass
class ExportAnnotation:
    id: int
    label_id: int
    label_name: str
    type: str
    payload: AnnotationPayload
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def data(self) -> Dict[str, Any]:
        return dump_payload(self.payload)


@dataclass
class ExportTask:
    id: int
    status: str
    asset_id: int
    asset_name: str
    asset_url: str = ""
    asset_type: str = "image"
    content: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    assigned_to: Optional[str] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    annotations: List[ExportAnnotation] = field(default_factory=list)
    split: Optional[str] = None

    def image_size(self) -> tuple[float, float]:
        return image_size(self.metadata, asset_name=self.asset_name)


@dataclass
class ExportDataset:
    project_id: int
    project_name: str
    tool_type: str
    options: ExportOptions
    exported_at: datetime
    tasks: List[ExportTask] = field(default_factory=list)

    @property
    def annotation_count(self) -> int:
        return sum(len(t.annotations) for t in self.tasks)

    def label_names(self) -> List[str]:
        """Distinct label names in first-seen order."""
        seen: Dict[str, None] = {}
        for task in self.tasks:
            for ann in task.annotations:
                seen.setdefault(ann.label_name, None)
        return list(seen)

    def split_ids(self) -> Optional[Dict[str, List[int]]]:
        """Task ids per split, or None when the dataset is not split."""
        if not self.options.split_dataset:
            return None
        out: Dict[str, List[int]] = {name: [] for name in SPLITS}
        for task in self.tasks:
            if task.split:
                out[task.split].append(task.id)
        return out


def assign_splits(tasks: List[ExportTask], options: ExportOptions) -> None:
    """
    Deterministic partition in task order: the first train% go to train, the
    next val% to val, the rest to test.
    """
    if not options.split_dataset:
        return
    n = len(tasks)
    n_train = n * options.train_split // 100
    n_val = n * options.val_split // 100
    for idx, task in enumerate(tasks):
        if idx < n_train:
            task.split = "train"
        elif idx < n_train + n_val:
            task.split = "val"
        else:
            task.split = "test"


def number(value: float) -> int | float:
    """Drop the fractional part of integral floats (10.0 -> 10)."""
    value = float(value)
    return int(value) if value.is_integer() else value


def fmt_float(value: float) -> str:
    """Fixed 6 decimal text without trailing zeros, as label files use."""
    text = f"{value:.6f}".rstrip("0").rstrip(".")
    return "0" if text in ("", "-0") else text


def replace_extension(name: str, ext: str) -> str:
    stem = re.sub(r"\.[^/.]+$", "", name)
    return f"{stem}{ext}"


def split_prefix(task: ExportTask) -> str:
    return f"{task.split}/" if task.split else ""


class BaseExporter(ABC):
    """Abstract base class for all annotation format exporters."""

    format_name: str = ""
    content_type: str = "application/json"
    # appended to "export_<project>_<ts>"
    suffix: str = ".json"
    image_only: bool = False
    text_only: bool = False

    @abstractmethod
    def export(self, dataset: ExportDataset) -> Any:
        """Build the format's document (dict, list, text, bytes or file bundle)."""

    def truncate(self, result: Any, limit: int) -> Any:
        """Cut a generated result down to ``limit`` items for previews."""
        if isinstance(result, list):
            return result[:limit]
        return result

    def serialize(self, result: Any) -> bytes:
        return json.dumps(result, indent=2, ensure_ascii=False, default=str).encode("utf-8")


class TextLinesExporter(BaseExporter):
    """Results are newline-joined text; previews keep ``header_lines`` plus ``limit`` rows."""

    content_type = "text/plain"
    header_lines = 0

    def truncate(self, result: Any, limit: int) -> Any:
        if not result:
            return result
        lines = result.split("\n")
        return "\n".join(lines[: self.header_lines + limit])

    def serialize(self, result: Any) -> bytes:
        return result.encode("utf-8")


class BundleExporter(BaseExporter):
    """Multi-file formats: per-asset files plus shared files (class lists)."""

    content_type = "application/zip"
    shared_files: tuple[str, ...] = ()

    def truncate(self, result: FileBundle, limit: int) -> FileBundle:
        out: FileBundle = {}
        kept = 0
        for name, text in result.items():
            if name in self.shared_files:
                out[name] = text
            elif kept < limit:
                out[name] = text
                kept += 1
        return out

    def serialize(self, result: FileBundle) -> bytes:
        buf = io.BytesIO()
        with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            for name, text in result.items():
                zf.writestr(name, text)
        return buf.getvalue()

    def asset_file(self, task: ExportTask, ext: str, files: FileBundle) -> str:
        name = split_prefix(task) + replace_extension(task.asset_name, ext)
        if name in files:
            logger.warning("Duplicate asset name %s in %s export, overwriting", name, self.format_name)
        return name
