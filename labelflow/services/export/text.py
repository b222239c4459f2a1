"""
Exports for text and RLHF projects.

The record shape depends on the kind of the task's first annotation: spans
become NER entities, sentiment/emotion take the first annotation's value,
classification lists every selected label.
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

from labelflow.schemas.annotations import (
    EmotionData,
    RlhfRankingData,
    SentimentData,
    TextSpanData,
)

from .base import BaseExporter, ExportAnnotation, ExportDataset, ExportTask, TextLinesExporter
from .tabular import CsvTextExporter, write_csv

ANNOTATION_KINDS = {
    "text-span": "ner",
    "sentiment": "sentiment",
    "classification": "classification",
    "emotion": "emotion",
    "rlhf-ranking": "rlhf",
}


def _first(task: ExportTask) -> Optional[ExportAnnotation]:
    return task.annotations[0] if task.annotations else None


def text_record(task: ExportTask) -> Optional[Dict[str, Any]]:
    first = _first(task)
    if first is None or first.type not in ANNOTATION_KINDS:
        return None

    record: Dict[str, Any] = {
        "task_id": task.id,
        "asset_id": task.asset_id,
        "asset_name": task.asset_name,
        "annotation_type": ANNOTATION_KINDS[first.type],
    }
    payload = first.payload
    if isinstance(payload, RlhfRankingData):
        record.update(
            preferred=payload.preferred,
            rating=payload.rating,
            feedback=payload.feedback,
            response_a=payload.response_a,
            response_b=payload.response_b,
        )
        return record

    record["text"] = task.content or ""
    if isinstance(payload, TextSpanData):
        record["entities"] = [
            {
                "text": a.payload.text,
                "label": a.label_name,
                "label_id": a.label_id,
                "start": a.payload.start,
                "end": a.payload.end,
            }
            for a in task.annotations
            if isinstance(a.payload, TextSpanData)
        ]
    elif isinstance(payload, SentimentData):
        record["sentiment"] = payload.sentiment
    elif isinstance(payload, EmotionData):
        record.update(emotion=payload.emotion, intensity=payload.intensity)
    else:
        record["labels"] = [
            {"label_id": a.label_id, "label_name": a.label_name} for a in task.annotations
        ]
    return record


def _spans(task: ExportTask) -> List[List[Any]]:
    return [
        [a.payload.start, a.payload.end, a.label_name]
        for a in task.annotations
        if isinstance(a.payload, TextSpanData)
    ]


class TextJsonExporter(BaseExporter):
    """One flat record per annotated task, shaped by its annotation kind."""

    format_name = "text-json"
    suffix = "_text.json"
    text_only = True

    def export(self, dataset: ExportDataset) -> Dict[str, Any]:
        records = [r for r in (text_record(t) for t in dataset.tasks) if r is not None]
        doc: Dict[str, Any] = {
            "project": {
                "id": dataset.project_id,
                "name": dataset.project_name,
                "tool_type": dataset.tool_type,
            },
            "export_date": dataset.exported_at.isoformat(),
            "total_tasks": len(dataset.tasks),
            "total_annotations": len(records),
            "annotations": records,
        }
        splits = dataset.split_ids()
        if splits is not None:
            doc["splits"] = splits
        return doc

    def truncate(self, result: Dict[str, Any], limit: int) -> Dict[str, Any]:
        return {**result, "annotations": result["annotations"][:limit]}


class TextCsvExporter(CsvTextExporter):
    """Columns follow the kind of the first annotation found in the project."""

    format_name = "csv"

    def export(self, dataset: ExportDataset) -> str:
        first = next((t.annotations[0] for t in dataset.tasks if t.annotations), None)
        if first is None:
            return ""

        rows: List[List[Any]] = []
        if first.type == "text-span":
            rows.append(["asset_name", "text", "entity_text", "label", "start", "end"])
            for task in dataset.tasks:
                for ann in task.annotations:
                    if isinstance(ann.payload, TextSpanData):
                        p = ann.payload
                        rows.append([task.asset_name, task.content or "", p.text, ann.label_name, p.start, p.end])
        elif first.type == "sentiment":
            rows.append(["asset_name", "text", "sentiment"])
            for task in dataset.tasks:
                p = _first(task).payload if task.annotations else None
                rows.append([task.asset_name, task.content or "", getattr(p, "sentiment", "")])
        elif first.type == "classification":
            rows.append(["asset_name", "text", "labels"])
            for task in dataset.tasks:
                labels = ";".join(a.label_name for a in task.annotations)
                rows.append([task.asset_name, task.content or "", labels])
        elif first.type == "emotion":
            rows.append(["asset_name", "text", "emotion", "intensity"])
            for task in dataset.tasks:
                p = _first(task).payload if task.annotations else None
                rows.append(
                    [task.asset_name, task.content or "", getattr(p, "emotion", ""), getattr(p, "intensity", 0)]
                )
        elif first.type == "rlhf-ranking":
            rows.append(["asset_name", "preferred", "rating", "feedback"])
            for task in dataset.tasks:
                p = _first(task).payload if task.annotations else None
                if isinstance(p, RlhfRankingData):
                    rows.append([task.asset_name, p.preferred, p.rating, p.feedback])
        else:
            return ""
        return write_csv(rows)


class TextJsonlExporter(TextLinesExporter):
    """One training example per line."""

    format_name = "jsonl"
    content_type = "application/x-ndjson"
    suffix = ".jsonl"

    def export(self, dataset: ExportDataset) -> str:
        lines = []
        for task in dataset.tasks:
            line = self._line(task)
            if line is not None:
                lines.append(json.dumps(line, ensure_ascii=False))
        return "\n".join(lines)

    def _line(self, task: ExportTask) -> Optional[Dict[str, Any]]:
        first = _first(task)
        if first is None:
            return None
        text = task.content or ""
        p = first.payload
        if isinstance(p, TextSpanData):
            return {"text": text, "entities": _spans(task)}
        if isinstance(p, SentimentData):
            return {"text": text, "sentiment": p.sentiment}
        if isinstance(p, EmotionData):
            return {"text": text, "emotion": p.emotion, "intensity": p.intensity}
        if isinstance(p, RlhfRankingData):
            return {"preferred": p.preferred, "rating": p.rating, "feedback": p.feedback}
        if first.type == "classification":
            return {"text": text, "labels": [a.label_name for a in task.annotations]}
        return None


class SpacyExporter(BaseExporter):
    """spaCy NER training data: ``[[text, {"entities": [[start, end, label], ...]}], ...]``."""

    format_name = "spacy"
    suffix = "_spacy.json"
    text_only = True

    def export(self, dataset: ExportDataset) -> List[Any]:
        data: List[Any] = []
        for task in dataset.tasks:
            first = _first(task)
            if first is None or first.type != "text-span":
                continue
            data.append([task.content or "", {"entities": _spans(task)}])
        return data
