from __future__ import annotations

import logging
from collections import Counter
from typing import Any, Mapping

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from labelflow.core.errors import InvalidStateError, NotFoundError, StorageError, ValidationError
from labelflow.models.annotation import Annotation
from labelflow.models.label import Label
from labelflow.models.project import Project
from labelflow.schemas.labels import LabelAttribute, LabelIn

logger = logging.getLogger(__name__)


def validate_attributes(label: Label, values: Mapping[str, Any]) -> list[str]:
    """Problems with ``values`` against the attribute definitions of ``label``."""
    problems = []
    for raw in label.attributes or []:
        attr = LabelAttribute.model_validate(raw)
        problem = attr.check(values.get(attr.name))
        if problem:
            problems.append(problem)
    return problems


class LabelService:
    def __init__(self, db: Session) -> None:
        self.db = db

    def list_labels(self, project_id: int) -> list[Label]:
        return list(
            self.db.scalars(
                select(Label).where(Label.project_id == project_id).order_by(Label.order, Label.id)
            )
        )

    def references(self, label_id: int) -> int:
        return int(
            self.db.scalar(select(func.count(Annotation.id)).where(Annotation.label_id == label_id))
            or 0
        )

    def delete_label(self, label_id: int) -> None:
        label = self.db.get(Label, label_id)
        if label is None:
            raise NotFoundError("Label not found", label_id=label_id)

        refs = self.references(label_id)
        if refs:
            raise InvalidStateError(
                f'Label "{label.name}" is used by {refs} annotation(s)',
                label_id=label_id,
            )
        self.db.delete(label)
        self._commit(f"delete label {label_id}")

    def save_schema(self, project_id: int, classes: list[LabelIn]) -> tuple[list[Label], list[int]]:
        """
        Make the project's labels match ``classes``.

        Existing labels are updated by id, new ones created. Labels missing from
        the schema are deleted when no annotation uses them; used ones are kept
        and reported in the second element of the result.
        """
        if self.db.get(Project, project_id) is None:
            raise NotFoundError("Project not found", project_id=project_id)

        dupes = [n for n, c in Counter(c.name for c in classes).items() if c > 1]
        if dupes:
            raise ValidationError(f"Duplicate label names: {', '.join(sorted(dupes))}")

        existing = {label.id: label for label in self.list_labels(project_id)}
        incoming_ids = {c.id for c in classes if c.id is not None}

        retained: list[int] = []
        for label in list(existing.values()):
            if label.id in incoming_ids:
                continue
            refs = self.references(label.id)
            if refs:
                logger.warning(
                    'Cannot delete label "%s" - has %s annotations', label.name, refs
                )
                retained.append(label.id)
                continue
            self.db.delete(label)
            del existing[label.id]
        # free names of deleted labels before renames/creates reuse them
        self.db.flush()

        saved: list[Label] = []
        for cls in classes:
            values = dict(
                name=cls.name,
                color=cls.color,
                description=cls.description,
                shortcut=cls.shortcut,
                order=cls.order,
                attributes=[a.model_dump() for a in cls.attributes],
            )
            label = existing.get(cls.id) if cls.id is not None else None
            if label is None:
                label = Label(project_id=project_id, **values)
                self.db.add(label)
            else:
                for key, value in values.items():
                    setattr(label, key, value)
            saved.append(label)

        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise ValidationError(f"Label names must be unique within a project: {e.orig}") from e
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(f"Failed to save label schema: {e}") from e

        logger.info("Label schema saved for project %s: %s classes", project_id, len(saved))
        return saved, retained

    def _commit(self, what: str) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(f"Failed to {what}: {e}") from e
