from __future__ import annotations

from functools import lru_cache
from typing import Optional

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from labelflow.core.config import get_s3_client, settings
from labelflow.core.s3 import S3Client
from labelflow.db.session import get_db
from labelflow.services.annotations import AnnotationStore
from labelflow.services.completion import CompletionWatcher, NotifyingEventSink
from labelflow.services.export import ExportEngine
from labelflow.services.exports import ExportService
from labelflow.services.labels import LabelService
from labelflow.services.notifications import NotificationService
from labelflow.services.queue_router import CeleryWorkQueue, QueueRouter, WorkQueue
from labelflow.services.state_machine import TaskStateMachine

__all__ = [
    "get_db",
    "get_s3",
    "get_work_queue",
    "get_current_user_id",
    "get_notifier",
    "get_state_machine",
    "get_annotation_store",
    "get_label_service",
    "get_export_engine",
    "get_export_service",
]


@lru_cache
def get_work_queue() -> WorkQueue:
    """Process-wide work queue; the broker connection opens on first enqueue."""
    return CeleryWorkQueue()


def close_work_queue() -> None:
    if get_work_queue.cache_info().currsize:
        get_work_queue().close()
        get_work_queue.cache_clear()


def get_s3() -> S3Client:
    return get_s3_client()


def get_current_user_id(x_user_id: Optional[str] = Header(default=None)) -> Optional[str]:
    # identity comes from the gateway in front of the API
    return x_user_id


def get_notifier(db: Session = Depends(get_db)) -> NotificationService:
    return NotificationService(db, limit=settings.notification_limit)


def get_state_machine(
    db: Session = Depends(get_db),
    queue: WorkQueue = Depends(get_work_queue),
    notifier: NotificationService = Depends(get_notifier),
) -> TaskStateMachine:
    watcher = CompletionWatcher(db, NotifyingEventSink(db, notifier))
    return TaskStateMachine(db, QueueRouter(queue), watcher, notifier)


def get_annotation_store(db: Session = Depends(get_db)) -> AnnotationStore:
    return AnnotationStore(db)


def get_label_service(db: Session = Depends(get_db)) -> LabelService:
    return LabelService(db)


def get_export_engine(db: Session = Depends(get_db)) -> ExportEngine:
    return ExportEngine(db)


def get_export_service(
    db: Session = Depends(get_db),
    s3: S3Client = Depends(get_s3),
    notifier: NotificationService = Depends(get_notifier),
) -> ExportService:
    return ExportService(db, s3, notifier)
