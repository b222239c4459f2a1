"""
Annotation store.

Saving a task's annotations replaces the whole set: the old rows are deleted
and the new ones created inside one transaction, so a failure part way leaves
the previous set untouched.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

import pydantic
from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from labelflow.core.errors import NotFoundError, StorageError, ValidationError
from labelflow.models.annotation import Annotation
from labelflow.models.label import Label
from labelflow.models.task import Task
from labelflow.schemas.annotations import AnnotationIn, AnnotationUpdateIn, dump_payload, parse_payload
from labelflow.services.labels import validate_attributes

logger = logging.getLogger(__name__)


def _errors_text(e: pydantic.ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
    )


class AnnotationStore:
    def __init__(self, db: Session) -> None:
        self.db = db

    # ---------- reads ----------
    def list_for_task(self, task_id: int) -> list[Annotation]:
        self._get_task(task_id)
        return list(
            self.db.scalars(
                select(Annotation).where(Annotation.task_id == task_id).order_by(Annotation.id)
            )
        )

    def count_for_label(self, label_id: int) -> int:
        return int(
            self.db.scalar(select(func.count(Annotation.id)).where(Annotation.label_id == label_id))
            or 0
        )

    # ---------- writes ----------
    def replace_for_task(self, task_id: int, items: Iterable[AnnotationIn]) -> list[Annotation]:
        task = self._get_task(task_id)
        items = list(items)

        # validate everything before touching the table
        labels = self._project_labels(task.project_id)
        rows: list[Annotation] = []
        for idx, item in enumerate(items):
            data = self._validated_data(item.type, item.data, labels.get(item.label_id), item.label_id, idx)
            rows.append(Annotation(task_id=task_id, label_id=item.label_id, type=item.type, data=data))

        try:
            self.db.execute(delete(Annotation).where(Annotation.task_id == task_id))
            self.db.add_all(rows)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(f"Failed to save annotations for task {task_id}: {e}") from e

        self.db.expire(task, ["annotations"])
        logger.info("Saved %s annotations for task %s", len(rows), task_id)
        return rows

    def create(self, task_id: int, item: AnnotationIn) -> Annotation:
        task = self._get_task(task_id)
        label = self._project_labels(task.project_id).get(item.label_id)
        data = self._validated_data(item.type, item.data, label, item.label_id)
        ann = Annotation(task_id=task_id, label_id=item.label_id, type=item.type, data=data)
        self.db.add(ann)
        self._commit(f"create annotation on task {task_id}")
        self.db.refresh(ann)
        return ann

    def update(self, annotation_id: int, patch: AnnotationUpdateIn) -> Annotation:
        ann = self.db.get(Annotation, annotation_id)
        if ann is None:
            raise NotFoundError("Annotation not found", annotation_id=annotation_id)

        task = self._get_task(ann.task_id)
        label_id = patch.label_id if patch.label_id is not None else ann.label_id
        label = self._project_labels(task.project_id).get(label_id)
        data = patch.data if patch.data is not None else ann.data

        ann.data = self._validated_data(ann.type, data, label, label_id)
        ann.label_id = label_id
        if patch.status is not None:
            ann.status = patch.status
        self._commit(f"update annotation {annotation_id}")
        self.db.refresh(ann)
        return ann

    def delete(self, annotation_id: int) -> None:
        ann = self.db.get(Annotation, annotation_id)
        if ann is None:
            raise NotFoundError("Annotation not found", annotation_id=annotation_id)
        self.db.delete(ann)
        self._commit(f"delete annotation {annotation_id}")

    def delete_for_task(self, task_id: int) -> int:
        """Drop every annotation of a task; the task itself stays."""
        result = self.db.execute(delete(Annotation).where(Annotation.task_id == task_id))
        self._commit(f"delete annotations of task {task_id}")
        return int(result.rowcount or 0)

    # ---------- helpers ----------
    def _get_task(self, task_id: int) -> Task:
        task = self.db.get(Task, task_id)
        if task is None:
            raise NotFoundError("Task not found", task_id=task_id)
        return task

    def _project_labels(self, project_id: int) -> dict[int, Label]:
        return {
            label.id: label
            for label in self.db.scalars(select(Label).where(Label.project_id == project_id))
        }

    def _validated_data(
        self,
        type_: str,
        data: Optional[dict],
        label: Optional[Label],
        label_id: int,
        idx: Optional[int] = None,
    ) -> dict:
        where = f"annotation #{idx}: " if idx is not None else ""
        if label is None:
            raise ValidationError(f"{where}label {label_id} does not belong to this project")

        try:
            payload = parse_payload(type_, data)
        except pydantic.ValidationError as e:
            raise ValidationError(f"{where}invalid {type_} payload: {_errors_text(e)}") from e

        problems = validate_attributes(label, payload.attributes)
        if problems:
            raise ValidationError(f"{where}{'; '.join(problems)}")

        return dump_payload(payload)

    def _commit(self, what: str) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(f"Failed to {what}: {e}") from e
