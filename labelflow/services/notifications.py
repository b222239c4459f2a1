from __future__ import annotations

import logging
from typing import Any, Optional, Protocol

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from labelflow.core.config import settings
from labelflow.models.notification import Notification

logger = logging.getLogger(__name__)


class NotificationSink(Protocol):
    def notify(
        self,
        user_id: str,
        type: str,
        title: str,
        message: str,
        context: Optional[dict[str, Any]] = None,
    ) -> None: ...


class NotificationService:
    """
    Stores in-app notifications, keeping at most ``limit`` per user.
    Delivery is fire-and-forget: errors are logged and swallowed so callers
    (state machine, export) never fail because of a notification.
    """

    def __init__(self, db: Session, limit: Optional[int] = None) -> None:
        self.db = db
        self.limit = limit or settings.notification_limit

    def notify(
        self,
        user_id: str,
        type: str,
        title: str,
        message: str,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        context = dict(context or {})
        try:
            self.db.add(
                Notification(
                    user_id=user_id,
                    type=type,
                    title=title,
                    message=message,
                    project_id=context.pop("project_id", None),
                    task_id=context.pop("task_id", None),
                    data=context or None,
                )
            )
            self.db.flush()
            self._prune(user_id)
            self.db.commit()
            logger.info("Notification %s created for user %s", type, user_id)
        except Exception:
            self.db.rollback()
            logger.exception("Failed to create notification %s for user %s", type, user_id)

    def _prune(self, user_id: str) -> None:
        keep_ids = self.db.scalars(
            select(Notification.id)
            .where(Notification.user_id == user_id)
            .order_by(Notification.created_at.desc(), Notification.id.desc())
            .limit(self.limit)
        ).all()
        result = self.db.execute(
            delete(Notification)
            .where(Notification.user_id == user_id, Notification.id.not_in(keep_ids))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            logger.info("Pruned %s old notifications for user %s", result.rowcount, user_id)


def notify_all_labeling_complete(
    sink: NotificationSink, user_id: str, project_id: int, project_name: str
) -> None:
    sink.notify(
        user_id,
        "all_labeling_complete",
        "All Labeling Complete",
        f'All tasks in "{project_name}" have been labeled and are ready for review',
        {"project_id": project_id},
    )


def notify_project_complete(
    sink: NotificationSink, user_id: str, project_id: int, project_name: str
) -> None:
    sink.notify(
        user_id,
        "project_complete",
        "Project Complete",
        f'All tasks in "{project_name}" have been completed!',
        {"project_id": project_id},
    )


def notify_task_assigned(
    sink: NotificationSink, user_id: str, task_id: int, project_id: int, project_name: str
) -> None:
    sink.notify(
        user_id,
        "task_assigned",
        "New Task Assigned",
        f'You have been assigned a new task in "{project_name}"',
        {"project_id": project_id, "task_id": task_id},
    )


def notify_export_ready(
    sink: NotificationSink, user_id: str, project_id: int, project_name: str, fmt: str
) -> None:
    sink.notify(
        user_id,
        "export_ready",
        "Export Ready",
        f'Your {fmt.upper()} export for "{project_name}" is ready',
        {"project_id": project_id, "format": fmt},
    )
