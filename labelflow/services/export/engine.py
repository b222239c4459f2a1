"""
Export engine.

Loads the tasks of a project (status filter, creation order, optional limit),
turns them into an ``ExportDataset`` and hands it to the exporter registered
for the requested format. Previews run the same pipeline and cut the result
down afterwards.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping, Optional, Type, Union, get_args

import pydantic
from sqlalchemy import select
from sqlalchemy.orm import Session

from labelflow.core.config import settings
from labelflow.core.errors import NotFoundError, ValidationError
from labelflow.models.annotation import Annotation
from labelflow.models.label import Label
from labelflow.models.project import IMAGE_TOOL_TYPE, Project
from labelflow.models.task import Task
from labelflow.schemas.annotations import parse_payload
from labelflow.schemas.exports import ExportFormat, ExportOptions

from .base import BaseExporter, ExportAnnotation, ExportDataset, ExportTask, assign_splits
from .coco import CocoExporter
from .native import CustomExporter, JsonExporter, JsonlExporter
from .pascal_voc import PascalVocExporter
from .tabular import CsvExporter, ParquetExporter
from .text import SpacyExporter, TextCsvExporter, TextJsonExporter, TextJsonlExporter
from .yolo import YoloExporter, YoloSegExporter

logger = logging.getLogger(__name__)

FORMATS: tuple[str, ...] = get_args(ExportFormat)

IMAGE_EXPORTERS: Dict[str, Type[BaseExporter]] = {
    "json": JsonExporter,
    "custom": CustomExporter,
    "jsonl": JsonlExporter,
    "coco": CocoExporter,
    "yolo": YoloExporter,
    "yolov8-seg": YoloSegExporter,
    "pascal-voc": PascalVocExporter,
    "csv": CsvExporter,
    "parquet": ParquetExporter,
    "spacy": SpacyExporter,
    "text-json": TextJsonExporter,
}

# json/custom keep the task records for every project; the text-shaped
# document is "text-json"
TEXT_EXPORTERS: Dict[str, Type[BaseExporter]] = {
    **IMAGE_EXPORTERS,
    "jsonl": TextJsonlExporter,
    "csv": TextCsvExporter,
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def parse_options(options: Union[ExportOptions, Mapping[str, Any], None]) -> ExportOptions:
    if isinstance(options, ExportOptions):
        return options
    try:
        return ExportOptions.model_validate(dict(options or {}))
    except pydantic.ValidationError as e:
        msg = "; ".join(err["msg"] for err in e.errors())
        raise ValidationError(f"Invalid export options: {msg}") from e


@dataclass
class ExportRun:
    exporter: BaseExporter
    dataset: ExportDataset
    result: Any


class ExportEngine:
    def __init__(self, db: Session, clock: Callable[[], datetime] = _now) -> None:
        self.db = db
        self._clock = clock

    def exporter_for(self, fmt: str, tool_type: str) -> BaseExporter:
        if fmt not in FORMATS:
            raise ValidationError(
                f"Invalid export format: {fmt}. Supported formats: {', '.join(FORMATS)}"
            )
        is_image = tool_type == IMAGE_TOOL_TYPE
        exporter = (IMAGE_EXPORTERS if is_image else TEXT_EXPORTERS)[fmt]()
        if exporter.image_only and not is_image:
            raise ValidationError(
                f"Format {fmt} is only supported for image projects. This is a {tool_type} project."
            )
        if exporter.text_only and is_image:
            raise ValidationError(f"Format {fmt} is only supported for text projects.")
        return exporter

    def run(
        self,
        project_id: int,
        fmt: str,
        options: Union[ExportOptions, Mapping[str, Any], None] = None,
    ) -> ExportRun:
        opts = parse_options(options)
        project = self.db.get(Project, project_id)
        if project is None:
            raise NotFoundError("Project not found", project_id=project_id)

        exporter = self.exporter_for(fmt, project.tool_type)
        dataset = self.load(project, opts)
        logger.info(
            "Exporting project %s (%s) to %s: %s tasks",
            project_id,
            project.tool_type,
            fmt,
            len(dataset.tasks),
        )
        return ExportRun(exporter=exporter, dataset=dataset, result=exporter.export(dataset))

    def generate(
        self,
        project_id: int,
        fmt: str,
        options: Union[ExportOptions, Mapping[str, Any], None] = None,
    ) -> Any:
        return self.run(project_id, fmt, options).result

    def preview(
        self,
        project_id: int,
        fmt: str,
        options: Union[ExportOptions, Mapping[str, Any], None] = None,
        limit: Optional[int] = None,
    ) -> Any:
        if limit is None:
            limit = settings.export_preview_limit
        elif limit < 1:
            raise ValidationError("Preview limit must be at least 1", limit=limit)
        opts = parse_options(options)
        if opts.limit is None or opts.limit > limit:
            opts = opts.model_copy(update={"limit": limit})

        run = self.run(project_id, fmt, opts)
        return run.exporter.truncate(run.result, limit)

    def load(self, project: Project, options: ExportOptions) -> ExportDataset:
        stmt = (
            select(Task)
            .where(Task.project_id == project.id, Task.status.in_(options.status_filter))
            .order_by(Task.created_at.asc(), Task.id.asc())
        )
        if options.limit:
            stmt = stmt.limit(options.limit)
        tasks = list(self.db.scalars(stmt).unique())

        if not tasks:
            logger.warning(
                "No tasks found for export of project %s. Status filter: %s",
                project.id,
                ", ".join(options.status_filter),
            )

        export_tasks = {
            t.id: ExportTask(
                id=t.id,
                status=t.status,
                asset_id=t.asset.id,
                asset_name=t.asset.name,
                asset_url=t.asset.url,
                asset_type=t.asset.type,
                content=t.asset.content,
                metadata=dict(t.asset.metadata_ or {}),
                assigned_to=t.assigned_to,
                completed_at=t.completed_at,
                created_at=t.created_at,
            )
            for t in tasks
        }

        if export_tasks:
            rows = self.db.execute(
                select(Annotation, Label.name)
                .join(Label, Label.id == Annotation.label_id)
                .where(Annotation.task_id.in_(list(export_tasks)))
                .order_by(Annotation.task_id, Annotation.id)
            ).all()
            for ann, label_name in rows:
                try:
                    payload = parse_payload(ann.type, ann.data)
                except pydantic.ValidationError:
                    logger.warning("Skipping annotation %s with unreadable %s payload", ann.id, ann.type)
                    continue
                export_tasks[ann.task_id].annotations.append(
                    ExportAnnotation(
                        id=ann.id,
                        label_id=ann.label_id,
                        label_name=label_name,
                        type=ann.type,
                        payload=payload,
                        created_at=ann.created_at,
                        updated_at=ann.updated_at,
                    )
                )

        ordered = list(export_tasks.values())
        assign_splits(ordered, options)
        return ExportDataset(
            project_id=project.id,
            project_name=project.name,
            tool_type=project.tool_type,
            options=options,
            exported_at=self._clock(),
            tasks=ordered,
        )
