"""
Project milestone detection.

After a task transition the watcher checks whether the sibling tasks of the
same project reached a milestone and publishes a domain event. A milestone is
claimed through ``milestone_claims`` (unique per project+kind) before the event
is published, so two transitions racing to be "the last one" publish once.
Claims are released when a task moves back to a stage that breaks the
milestone, which lets it fire again later.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional, Protocol, Union

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from labelflow.core.config import settings
from labelflow.models.notification import MilestoneClaim
from labelflow.models.project import Project
from labelflow.models.task import Task, TaskStatus
from labelflow.services.notifications import (
    NotificationSink,
    notify_all_labeling_complete,
    notify_project_complete,
)

logger = logging.getLogger(__name__)

LABELING_COMPLETE = "labeling_complete"
PROJECT_COMPLETE = "project_complete"


@dataclass(frozen=True)
class LabelingComplete:
    project_id: int


@dataclass(frozen=True)
class ProjectComplete:
    project_id: int


MilestoneEvent = Union[LabelingComplete, ProjectComplete]


class EventSink(Protocol):
    def publish(self, event: MilestoneEvent) -> None: ...


class NotifyingEventSink:
    """Turns milestone events into notifications for the project's reviewer/owner."""

    def __init__(self, db: Session, notifier: NotificationSink) -> None:
        self.db = db
        self.notifier = notifier

    def publish(self, event: MilestoneEvent) -> None:
        project = self.db.get(Project, event.project_id)
        if project is None:
            logger.warning("Milestone for missing project %s dropped", event.project_id)
            return

        owner = project.owner_id or settings.system_user_id
        if isinstance(event, LabelingComplete):
            notify_all_labeling_complete(
                self.notifier, project.reviewer_id or owner, project.id, project.name
            )
        elif isinstance(event, ProjectComplete):
            notify_project_complete(self.notifier, owner, project.id, project.name)


class CompletionWatcher:
    def __init__(self, db: Session, sink: Optional[EventSink] = None) -> None:
        self.db = db
        self.sink = sink

    def after_transition(self, project_id: int, status: str) -> list[MilestoneEvent]:
        """
        Run the milestone checks for a task that just moved to, or was created
        in, ``status``.
        Never raises: this runs after the transition was persisted.
        """
        try:
            return self._check(project_id, status)
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("Milestone check failed for project %s", project_id)
            return []

    def _check(self, project_id: int, status: str) -> list[MilestoneEvent]:
        events: list[MilestoneEvent] = []

        if status == TaskStatus.REVIEW.value:
            self._release(project_id, [PROJECT_COMPLETE])
            if self._count(project_id, [TaskStatus.LABEL.value]) == 0:
                if self._claim(project_id, LABELING_COMPLETE):
                    events.append(LabelingComplete(project_id))
        elif status == TaskStatus.COMPLETED.value:
            remaining = self._count(
                project_id, [TaskStatus.LABEL.value, TaskStatus.REVIEW.value]
            )
            if remaining == 0 and self._claim(project_id, PROJECT_COMPLETE):
                events.append(ProjectComplete(project_id))
        elif status == TaskStatus.LABEL.value:
            self._release(project_id, [LABELING_COMPLETE, PROJECT_COMPLETE])

        for event in events:
            self._publish(event)
        return events

    def _count(self, project_id: int, statuses: list[str]) -> int:
        return int(
            self.db.scalar(
                select(func.count(Task.id)).where(
                    Task.project_id == project_id, Task.status.in_(statuses)
                )
            )
            or 0
        )

    def _claim(self, project_id: int, kind: str) -> bool:
        self.db.add(MilestoneClaim(project_id=project_id, kind=kind))
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.debug("Milestone %s already claimed for project %s", kind, project_id)
            return False
        return True

    def _release(self, project_id: int, kinds: Iterable[str]) -> None:
        result = self.db.execute(
            delete(MilestoneClaim).where(
                MilestoneClaim.project_id == project_id,
                MilestoneClaim.kind.in_(list(kinds)),
            )
        )
        if result.rowcount:
            self.db.commit()

    def _publish(self, event: MilestoneEvent) -> None:
        logger.info("Milestone reached: %s", event)
        if self.sink is None:
            return
        try:
            self.sink.publish(event)
        except Exception:
            logger.exception("Failed to deliver %s", event)
