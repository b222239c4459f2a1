from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from labelflow.db.session import Base


class TaskStatus(str, Enum):
    PRELABEL = "prelabel"
    LABEL = "label"
    REVIEW = "review"
    COMPLETED = "completed"


# UI action "reject" is stored as a return to the label stage
STATUS_ALIASES = {"rejected": TaskStatus.LABEL}

ACTIVE_STATUSES = (TaskStatus.LABEL.value, TaskStatus.REVIEW.value)


class Task(Base):
    __tablename__ = "tasks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    project_id: Mapped[int] = mapped_column(
        ForeignKey("projects.id", ondelete="CASCADE"), index=True
    )
    asset_id: Mapped[int] = mapped_column(
        ForeignKey("assets.id", ondelete="CASCADE"), index=True
    )

    status: Mapped[str] = mapped_column(
        String(16), default=TaskStatus.LABEL.value, index=True
    )  # prelabel/label/review/completed
    priority: Mapped[int] = mapped_column(Integer, default=0)
    assigned_to: Mapped[str | None] = mapped_column(
        String(64), nullable=True, index=True
    )

    # stage history, set by transitions only
    queued_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    assigned_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # seconds, only ever incremented
    time_spent: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    asset = relationship("Asset", lazy="joined")
    annotations = relationship(
        "Annotation",
        back_populates="task",
        order_by="Annotation.id",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
