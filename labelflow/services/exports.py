"""
Stored exports.

``create_export`` runs the export engine, uploads the serialized result to the
exports bucket and records a versioned ``Export`` row. The steps are not
rolled back as a unit: a failure after the upload leaves an orphaned object,
which expires with the bucket lifecycle.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Mapping, Optional, Union

from sqlalchemy import case, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from labelflow.core.config import settings
from labelflow.core.errors import ExpiredResourceError, NotFoundError, StorageError
from labelflow.core.s3 import S3Client
from labelflow.models.annotation import Annotation
from labelflow.models.export import Export
from labelflow.models.label import Label
from labelflow.models.project import Project
from labelflow.models.task import Task, TaskStatus
from labelflow.schemas.exports import ExportOptions, ExportStatsOut
from labelflow.services.export import ExportEngine, parse_options
from labelflow.services.notifications import NotificationSink, notify_export_ready
from labelflow.services.queue_router import JobOptions, WorkQueue
from labelflow.worker.celery_app import EXPORT_QUEUE

logger = logging.getLogger(__name__)

EXPORT_JOB = "export.create"
_VERSION_ATTEMPTS = 3


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime) -> datetime:
    # sqlite hands back naive datetimes
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def split_storage_path(path: str) -> tuple[str, str]:
    """s3://bucket/key -> (bucket, key)"""
    if not path.startswith("s3://"):
        raise StorageError(f"Unsupported storage path: {path}")
    bucket, _, key = path[len("s3://"):].partition("/")
    if not bucket or not key:
        raise StorageError(f"Unsupported storage path: {path}")
    return bucket, key


def _disposition(filename: str) -> str:
    return f'attachment; filename="{filename}"'


@dataclass
class ExportCreated:
    export: Export
    download_url: str


class ExportService:
    def __init__(
        self,
        db: Session,
        s3: S3Client,
        notifier: Optional[NotificationSink] = None,
        *,
        engine: Optional[ExportEngine] = None,
        clock: Callable[[], datetime] = _now,
    ) -> None:
        self.db = db
        self.s3 = s3
        self.notifier = notifier
        self.engine = engine or ExportEngine(db, clock=clock)
        self._clock = clock

    def create_export(
        self,
        project_id: int,
        fmt: str,
        options: Union[ExportOptions, Mapping[str, Any], None] = None,
        *,
        user_id: Optional[str] = None,
    ) -> ExportCreated:
        opts = parse_options(options)
        run = self.engine.run(project_id, fmt, opts)
        data = run.exporter.serialize(run.result)

        now = self._clock()
        filename = f"export_{project_id}_{now.strftime('%Y%m%dT%H%M%SZ')}{run.exporter.suffix}"
        bucket = settings.s3_bucket_exports
        key = f"projects/{project_id}/exports/{filename}"

        self.s3.put_bytes(
            bucket=bucket,
            key=key,
            data=data,
            content_type=run.exporter.content_type,
            content_disposition=_disposition(filename),
        )
        logger.info("Export saved to s3://%s/%s (%s bytes)", bucket, key, len(data))

        record = self._record(
            project_id=project_id,
            format=fmt,
            filename=filename,
            storage_path=f"s3://{bucket}/{key}",
            file_size=len(data),
            task_count=len(run.dataset.tasks),
            annotation_count=run.dataset.annotation_count,
            options=opts.model_dump(by_alias=True),
            status_filter="all" if opts.include_non_reviewed else "completed",
            created_at=now,
            expires_at=now + timedelta(days=settings.export_expiry_days),
        )

        if self.notifier is not None:
            project = self.db.get(Project, project_id)
            recipient = user_id or (project.owner_id if project else None) or settings.system_user_id
            notify_export_ready(self.notifier, recipient, project_id, project.name if project else "", fmt)

        url = self.s3.presign_get(
            bucket=bucket,
            key=key,
            expires_s=settings.s3_presign_expires_s,
            response_headers={"ResponseContentDisposition": _disposition(filename)},
        )
        return ExportCreated(export=record, download_url=url)

    def _record(self, **values: Any) -> Export:
        """Insert the Export row with the next version for project+format."""
        for attempt in range(1, _VERSION_ATTEMPTS + 1):
            latest = self.db.scalar(
                select(func.max(Export.version)).where(
                    Export.project_id == values["project_id"],
                    Export.format == values["format"],
                )
            )
            record = Export(version=(latest or 0) + 1, **values)
            self.db.add(record)
            try:
                self.db.commit()
                return record
            except IntegrityError:
                # another export took the same version
                self.db.rollback()
                logger.warning("Export version clash (attempt %s)", attempt)
            except SQLAlchemyError as e:
                self.db.rollback()
                raise StorageError(f"Failed to record export: {e}") from e
        raise StorageError("Failed to allocate an export version")

    def queue_export(
        self,
        queue: WorkQueue,
        project_id: int,
        fmt: str,
        options: Union[ExportOptions, Mapping[str, Any], None] = None,
        *,
        user_id: Optional[str] = None,
    ) -> Optional[str]:
        """Validate now, build on the worker."""
        opts = parse_options(options)
        project = self.db.get(Project, project_id)
        if project is None:
            raise NotFoundError("Project not found", project_id=project_id)
        self.engine.exporter_for(fmt, project.tool_type)

        payload = {
            "project_id": project_id,
            "fmt": fmt,
            "options": opts.model_dump(by_alias=True),
            "user_id": user_id,
        }
        try:
            return queue.enqueue(EXPORT_QUEUE, EXPORT_JOB, payload, JobOptions())
        except Exception as e:
            raise StorageError(f"Failed to queue export: {e}") from e

    def get(self, export_id: int) -> Export:
        record = self.db.get(Export, export_id)
        if record is None:
            raise NotFoundError("Export not found", export_id=export_id)
        return record

    def download(self, export_id: int) -> tuple[Export, str]:
        record = self.get(export_id)
        if record.expires_at is not None and _aware(record.expires_at) < self._clock():
            raise ExpiredResourceError("Export has expired", export_id=export_id)

        bucket, key = split_storage_path(record.storage_path)
        url = self.s3.presign_get(
            bucket=bucket,
            key=key,
            expires_s=settings.s3_presign_expires_s,
            response_headers={"ResponseContentDisposition": _disposition(record.filename)},
        )
        return record, url

    def delete_export(self, export_id: int) -> None:
        record = self.get(export_id)
        bucket, key = split_storage_path(record.storage_path)
        self.s3.delete_object(bucket=bucket, key=key)
        self.db.delete(record)
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(f"Failed to delete export {export_id}: {e}") from e

    def list_exports(self, project_id: int) -> list[Export]:
        return list(
            self.db.scalars(
                select(Export)
                .where(Export.project_id == project_id)
                .order_by(Export.created_at.desc(), Export.id.desc())
            )
        )

    def export_stats(self, project_id: int) -> ExportStatsOut:
        if self.db.get(Project, project_id) is None:
            raise NotFoundError("Project not found", project_id=project_id)

        completed, labeled = self.db.execute(
            select(
                func.count(case((Task.status == TaskStatus.COMPLETED.value, 1))),
                func.count(
                    case((Task.status.in_([TaskStatus.LABEL.value, TaskStatus.REVIEW.value]), 1))
                ),
            ).where(Task.project_id == project_id)
        ).one()

        by_type = dict(
            self.db.execute(
                select(Annotation.type, func.count(Annotation.id))
                .join(Task, Task.id == Annotation.task_id)
                .where(Task.project_id == project_id)
                .group_by(Annotation.type)
            ).all()
        )
        by_label = self.db.execute(
            select(Label.name, func.count(Annotation.id))
            .join(Annotation, Annotation.label_id == Label.id)
            .join(Task, Task.id == Annotation.task_id)
            .where(Task.project_id == project_id)
            .group_by(Label.name)
        ).all()

        timings = list(
            self.db.scalars(
                select(Task.time_spent).where(Task.project_id == project_id, Task.time_spent > 0)
            )
        )
        total = sum(timings)

        return ExportStatsOut(
            completed_tasks=completed,
            labeled_tasks=labeled,
            total_annotations=sum(by_type.values()),
            bbox_count=by_type.get("bbox", 0),
            polygon_count=by_type.get("polygon", 0),
            point_count=by_type.get("point", 0),
            label_stats=dict(sorted(by_label, key=lambda kv: (-kv[1], kv[0]))),
            total_duration=total,
            avg_time_per_task=round(total / len(timings)) if timings else 0,
            fastest_task=min(timings) if timings else 0,
            slowest_task=max(timings) if timings else 0,
        )
