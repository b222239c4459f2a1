"""
Native JSON export.

One record per task with an asset summary and its annotations; the payload of
each annotation is flattened into the record so that a record can be fed back
through ``AnnotationIn.from_export_record``.
"""

from __future__ import annotations

import json
from typing import Any, Dict

from .base import BaseExporter, ExportAnnotation, ExportDataset, ExportTask, TextLinesExporter


def annotation_record(ann: ExportAnnotation, dataset: ExportDataset) -> Dict[str, Any]:
    data = ann.data
    record: Dict[str, Any] = {
        "id": ann.id,
        "type": ann.type,
        "label_id": ann.label_id,
        "label_name": ann.label_name,
        **data,
        "attributes": data.get("attributes") or {},
    }
    if dataset.options.include_review_metadata:
        record["created_at"] = ann.created_at.isoformat() if ann.created_at else None
        record["updated_at"] = ann.updated_at.isoformat() if ann.updated_at else None
    return record


def task_record(task: ExportTask, dataset: ExportDataset) -> Dict[str, Any]:
    asset: Dict[str, Any] = {
        "id": task.asset_id,
        "name": task.asset_name,
        "url": task.asset_url,
        "type": task.asset_type,
    }
    if dataset.options.include_metadata:
        asset["metadata"] = task.metadata

    record: Dict[str, Any] = {
        "id": task.id,
        "status": task.status,
        "asset": asset,
        "annotations": [annotation_record(a, dataset) for a in task.annotations],
    }
    if dataset.options.include_review_metadata:
        record["assigned_to"] = task.assigned_to
        record["completed_at"] = task.completed_at.isoformat() if task.completed_at else None
    if task.split:
        record["split"] = task.split
    return record


class JsonExporter(BaseExporter):
    format_name = "json"

    def export(self, dataset: ExportDataset) -> Dict[str, Any]:
        doc: Dict[str, Any] = {
            "version": "1.0",
            "export_date": dataset.exported_at.isoformat(),
            "project_id": dataset.project_id,
            "total_tasks": len(dataset.tasks),
            "total_annotations": dataset.annotation_count,
            "tasks": [task_record(t, dataset) for t in dataset.tasks],
        }
        splits = dataset.split_ids()
        if splits is not None:
            doc["splits"] = splits
        return doc

    def truncate(self, result: Dict[str, Any], limit: int) -> Dict[str, Any]:
        return {**result, "tasks": result["tasks"][:limit]}


class CustomExporter(JsonExporter):
    """Templates are applied client side; the server ships the native JSON."""

    format_name = "custom"
    suffix = "_custom.json"


class JsonlExporter(TextLinesExporter):
    format_name = "jsonl"
    content_type = "application/x-ndjson"
    suffix = ".jsonl"

    def export(self, dataset: ExportDataset) -> str:
        return "\n".join(
            json.dumps(task_record(t, dataset), ensure_ascii=False) for t in dataset.tasks
        )
