"""
Task queue routing.

Each task status has its own named work queue. The queue is only a
distribution hint for downstream workers: the persisted task status stays the
source of truth and ``QueueRouter.rebuild`` can re-enqueue everything from it.
"""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass
from typing import Any, Callable, Optional, Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from labelflow.core.errors import StorageError
from labelflow.models.task import Task, TaskStatus
from labelflow.worker.celery_app import COMPLETED_QUEUE, LABEL_QUEUE, REVIEW_QUEUE, celery_app

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JobOptions:
    priority: Optional[int] = None
    # retention hints for the consumer side (how many finished jobs to keep)
    keep_completed: Optional[int] = None
    keep_failed: Optional[int] = None


@dataclass(frozen=True)
class QueueRoute:
    queue: str
    job_name: str
    options: JobOptions


ROUTES: dict[str, QueueRoute] = {
    TaskStatus.LABEL.value: QueueRoute(
        LABEL_QUEUE, "label-task", JobOptions(priority=1, keep_completed=100, keep_failed=50)
    ),
    TaskStatus.REVIEW.value: QueueRoute(
        REVIEW_QUEUE, "review-task", JobOptions(priority=1, keep_completed=100, keep_failed=50)
    ),
    TaskStatus.COMPLETED.value: QueueRoute(
        COMPLETED_QUEUE, "completed-task", JobOptions(keep_completed=1000)
    ),
    # prelabel tasks are not queued
}


class WorkQueue(Protocol):
    def enqueue(
        self, queue_name: str, job_name: str, payload: dict[str, Any], options: JobOptions
    ) -> Optional[str]: ...

    def close(self) -> None: ...


class CeleryWorkQueue:
    """
    Celery-backed work queue. The Celery app (and its broker connection) is
    created on first enqueue and released by ``close()``.
    """

    def __init__(self, app_factory: Optional[Callable[[], Any]] = None) -> None:
        self._app_factory = app_factory or _default_celery_app
        self._app = None

    @property
    def app(self):
        if self._app is None:
            self._app = self._app_factory()
        return self._app

    def enqueue(
        self, queue_name: str, job_name: str, payload: dict[str, Any], options: JobOptions
    ) -> Optional[str]:
        async_res = self.app.send_task(
            job_name,
            kwargs=payload,
            queue=queue_name,
            priority=options.priority,
            headers={k: v for k, v in asdict(options).items() if v is not None},
        )
        return async_res.id

    def close(self) -> None:
        if self._app is not None:
            self._app.close()
            self._app = None


def _default_celery_app():
    return celery_app


def _now_ms() -> int:
    return int(time.time() * 1000)


class QueueRouter:
    def __init__(self, queue: WorkQueue, clock: Callable[[], int] = _now_ms) -> None:
        self.queue = queue
        self._clock = clock

    def route(self, task_id: int, status: str, *, strict: bool = False) -> Optional[str]:
        """
        Enqueue a job for ``task_id`` on the queue of ``status``.
        Returns the queue name, or None when the status has no queue.
        Broker failures are logged; with ``strict=True`` they raise StorageError.
        """
        route = ROUTES.get(status)
        if route is None:
            return None

        payload = {"task_id": task_id, "timestamp": self._clock()}
        try:
            job_id = self.queue.enqueue(route.queue, route.job_name, payload, route.options)
        except Exception as e:
            logger.error("Failed to enqueue task %s on %s: %s", task_id, route.queue, e)
            if strict:
                raise StorageError(f"Failed to enqueue task {task_id}: {e}") from e
            return route.queue

        logger.debug("Task %s queued on %s (job %s)", task_id, route.queue, job_id)
        return route.queue

    def rebuild(self, db: Session, project_id: int) -> dict[str, int]:
        """Re-enqueue every queued-stage task of a project from its persisted status."""
        counts = {r.queue: 0 for r in ROUTES.values()}
        rows = db.execute(
            select(Task.id, Task.status)
            .where(Task.project_id == project_id, Task.status.in_(list(ROUTES)))
            .order_by(Task.priority.desc(), Task.created_at.asc(), Task.id.asc())
        ).all()
        for task_id, status in rows:
            queue = self.route(task_id, status)
            if queue:
                counts[queue] += 1
        logger.info("Rebuilt queues for project %s: %s", project_id, counts)
        return counts
