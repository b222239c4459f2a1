from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from labelflow.db.session import Base


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Annotation(Base):
    __tablename__ = "annotations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)

    task_id: Mapped[int] = mapped_column(
        ForeignKey("tasks.id", ondelete="CASCADE"), index=True
    )
    label_id: Mapped[int] = mapped_column(ForeignKey("labels.id"), index=True)

    # bbox/polygon/point/line/text-span/sentiment/classification/emotion/rlhf-ranking
    type: Mapped[str] = mapped_column(String(32), index=True)
    # type-tagged payload without the "type" key, see schemas.annotations
    data: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    status: Mapped[str] = mapped_column(String(32), default="pending")

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_now, onupdate=_now
    )

    task = relationship("Task", back_populates="annotations")
    label = relationship("Label", lazy="joined")
