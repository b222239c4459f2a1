"""
Task lifecycle.

``TaskStateMachine`` is the only code that changes a task's status. A
transition is persisted first, then the task is routed to the queue of its new
status and the completion watcher runs. Concurrent transitions of the same
task are last-write-wins at the row level; nothing here locks.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from labelflow.core.config import settings
from labelflow.core.errors import (
    InvalidStateError,
    LabelflowError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from labelflow.core.result import Outcome
from labelflow.models.annotation import Annotation
from labelflow.models.asset import Asset
from labelflow.models.project import Project
from labelflow.models.task import ACTIVE_STATUSES, STATUS_ALIASES, Task, TaskStatus
from labelflow.schemas.tasks import BulkTransitionOut, QueueStatsOut, TaskOutcome
from labelflow.services.completion import CompletionWatcher
from labelflow.services.notifications import NotificationSink, notify_task_assigned
from labelflow.services.queue_router import QueueRouter

logger = logging.getLogger(__name__)

# transitions accepted in strict mode; staying in the same status is always allowed
STRICT_TRANSITIONS: dict[str, set[str]] = {
    TaskStatus.PRELABEL.value: {TaskStatus.LABEL.value},
    TaskStatus.LABEL.value: {TaskStatus.REVIEW.value, TaskStatus.PRELABEL.value},
    TaskStatus.REVIEW.value: {TaskStatus.LABEL.value, TaskStatus.COMPLETED.value},
    TaskStatus.COMPLETED.value: {TaskStatus.REVIEW.value, TaskStatus.LABEL.value},
}

REVIEW_ACTIONS = {
    "approve": TaskStatus.COMPLETED.value,
    "reject": TaskStatus.LABEL.value,
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def normalize_status(status: object) -> str:
    """Map a requested status (including the ``rejected`` alias) to a stored one."""
    if isinstance(status, TaskStatus):
        return status.value
    if not isinstance(status, str) or not status.strip():
        raise ValidationError("Status is required")

    key = status.strip().lower()
    if key in STATUS_ALIASES:
        return STATUS_ALIASES[key].value
    try:
        return TaskStatus(key).value
    except ValueError:
        allowed = ", ".join(s.value for s in TaskStatus)
        raise ValidationError(f"Unknown task status: {status}. Allowed: {allowed}, rejected")


class TaskStateMachine:
    def __init__(
        self,
        db: Session,
        router: QueueRouter,
        watcher: Optional[CompletionWatcher] = None,
        notifier: Optional[NotificationSink] = None,
        *,
        strict: Optional[bool] = None,
        clock: Callable[[], datetime] = _now,
    ) -> None:
        self.db = db
        self.router = router
        self.watcher = watcher
        self.notifier = notifier
        self.strict = settings.strict_transitions if strict is None else strict
        self._clock = clock

    # ---------- lifecycle ----------
    def create_task_for_asset(
        self, asset_id: int, status: str = TaskStatus.LABEL.value, priority: int = 0
    ) -> Task:
        status = normalize_status(status)
        asset = self.db.get(Asset, asset_id)
        if asset is None:
            raise NotFoundError("Asset not found", asset_id=asset_id)

        task = Task(
            project_id=asset.project_id,
            asset_id=asset.id,
            status=status,
            priority=priority,
            queued_at=self._clock(),
        )
        self.db.add(task)
        self._commit(f"create task for asset {asset_id}")
        self.router.route(task.id, status)

        # a new label/review task reopens milestones the project already reached
        if self.watcher is not None:
            self.watcher.after_transition(task.project_id, status)
        return task

    def transition(self, task_id: int, new_status: str) -> Task:
        status = normalize_status(new_status)
        task = self._get(task_id)
        previous = task.status

        if self.strict and status != previous and status not in STRICT_TRANSITIONS.get(previous, set()):
            raise InvalidStateError(
                f"Transition {previous} -> {status} is not allowed", task_id=task_id
            )

        now = self._clock()
        task.status = status
        if status == TaskStatus.LABEL.value and task.started_at is None:
            task.started_at = now
        if status == TaskStatus.COMPLETED.value:
            task.completed_at = now
        self._commit(f"transition task {task_id}")

        logger.info("Task %s: %s -> %s", task_id, previous, status)
        self.router.route(task.id, status)

        if self.watcher is not None:
            self.watcher.after_transition(task.project_id, status)
        return task

    def bulk_transition(
        self,
        task_ids: Iterable[int],
        new_status: str,
        *,
        remove_annotations: bool = False,
        remove_assignee: bool = False,
        remove_stage_history: bool = False,
    ) -> BulkTransitionOut:
        task_ids = list(task_ids)
        if not task_ids:
            raise ValidationError("Task IDs are required")
        status = normalize_status(new_status)

        logger.info(
            "Bulk status change: %s tasks to %s (annotations=%s, assignee=%s, history=%s)",
            len(task_ids),
            status,
            remove_annotations,
            remove_assignee,
            remove_stage_history,
        )

        results: list[TaskOutcome] = []
        for task_id in task_ids:
            try:
                if remove_annotations:
                    self.db.execute(delete(Annotation).where(Annotation.task_id == task_id))
                    self._commit(f"remove annotations of task {task_id}")
                if remove_assignee or remove_stage_history:
                    self._strip(task_id, remove_assignee, remove_stage_history)
                self.transition(task_id, status)
                results.append(TaskOutcome(task_id=task_id, success=True))
            except LabelflowError as e:
                self.db.rollback()
                logger.warning("Bulk update of task %s failed: %s", task_id, e.message)
                results.append(TaskOutcome(task_id=task_id, success=False, error=e.message))

        succeeded = sum(1 for r in results if r.success)
        logger.info("Bulk update complete: %s succeeded, %s failed", succeeded, len(results) - succeeded)
        return BulkTransitionOut(
            total=len(task_ids),
            succeeded=succeeded,
            failed=len(results) - succeeded,
            results=results,
        )

    def review_decision(self, task_id: int, action: str) -> Task:
        if action not in REVIEW_ACTIONS:
            raise ValidationError('Invalid action. Must be "approve" or "reject"')

        task = self._get(task_id)
        if task.status != TaskStatus.REVIEW.value:
            raise InvalidStateError(
                f"Task is not in review status (status={task.status})", task_id=task_id
            )
        logger.info("Task %s review: %s", task_id, action)
        return self.transition(task_id, REVIEW_ACTIONS[action])

    def assign(self, task_id: int, user_id: str) -> Task:
        if not user_id:
            raise ValidationError("User ID is required")
        task = self._get(task_id)
        task.assigned_to = user_id
        task.assigned_at = self._clock()
        self._commit(f"assign task {task_id}")

        if self.notifier is not None:
            project = self.db.get(Project, task.project_id)
            notify_task_assigned(
                self.notifier, user_id, task.id, task.project_id, project.name if project else ""
            )
        return task

    def record_time(self, task_id: int, seconds: int) -> None:
        if isinstance(seconds, bool) or not isinstance(seconds, int) or seconds < 0:
            raise ValidationError("Invalid time value")
        result = self.db.execute(
            update(Task)
            .where(Task.id == task_id)
            .values(time_spent=Task.time_spent + seconds)
            .execution_options(synchronize_session=False)
        )
        if not result.rowcount:
            self.db.rollback()
            raise NotFoundError("Task not found", task_id=task_id)
        self._commit(f"record time for task {task_id}")

    # ---------- queries ----------
    def fetch(self, task_id: int) -> Outcome[Task]:
        task = self.db.get(Task, task_id)
        if task is None:
            return Outcome.failure(f"Task {task_id} not found")
        return Outcome.success(task)

    def get_queue_stats(self, project_id: int, current_task_id: Optional[int] = None) -> QueueStatsOut:
        counts = dict(
            self.db.execute(
                select(Task.status, func.count(Task.id))
                .where(Task.project_id == project_id)
                .group_by(Task.status)
            ).all()
        )
        active_ids = self._active_ids(project_id)

        position = 1
        if current_task_id is not None and current_task_id in active_ids:
            position = active_ids.index(current_task_id) + 1

        return QueueStatsOut(
            label=counts.get(TaskStatus.LABEL.value, 0),
            review=counts.get(TaskStatus.REVIEW.value, 0),
            completed=counts.get(TaskStatus.COMPLETED.value, 0),
            active=len(active_ids),
            total=sum(counts.values()),
            current_task_number=position,
            tasks_remaining=max(len(active_ids) - position, 0),
        )

    def next_task(self, project_id: int, status: str = TaskStatus.LABEL.value) -> Optional[Task]:
        """Highest priority, oldest unassigned task waiting in ``status``."""
        status = normalize_status(status)
        return self.db.scalars(
            select(Task)
            .where(
                Task.project_id == project_id,
                Task.status == status,
                Task.assigned_to.is_(None),
            )
            .order_by(Task.priority.desc(), Task.created_at.asc(), Task.id.asc())
            .limit(1)
        ).first()

    def next_in_sequence(self, project_id: int, current_task_id: int) -> Optional[int]:
        ids = self._active_ids(project_id)
        if current_task_id not in ids:
            return None
        idx = ids.index(current_task_id)
        return ids[idx + 1] if idx + 1 < len(ids) else None

    def previous_in_sequence(self, project_id: int, current_task_id: int) -> Optional[int]:
        ids = self._active_ids(project_id)
        if current_task_id not in ids:
            return None
        idx = ids.index(current_task_id)
        return ids[idx - 1] if idx > 0 else None

    # ---------- helpers ----------
    def _active_ids(self, project_id: int) -> list[int]:
        return list(
            self.db.scalars(
                select(Task.id)
                .where(Task.project_id == project_id, Task.status.in_(ACTIVE_STATUSES))
                .order_by(Task.created_at.asc(), Task.id.asc())
            )
        )

    def _get(self, task_id: int) -> Task:
        task = self.db.get(Task, task_id)
        if task is None:
            raise NotFoundError("Task not found", task_id=task_id)
        return task

    def _strip(self, task_id: int, assignee: bool, history: bool) -> None:
        task = self._get(task_id)
        if assignee:
            task.assigned_to = None
        if history:
            task.queued_at = None
            task.assigned_at = None
            task.started_at = None
            task.completed_at = None
        self._commit(f"reset task {task_id}")

    def _commit(self, what: str) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(f"Failed to {what}: {e}") from e
