from __future__ import annotations

import logging
from typing import Any, Optional

from celery import shared_task

from labelflow.core.config import get_s3_client
from labelflow.core.errors import LabelflowError
from labelflow.db.session import SessionLocal
from labelflow.services.exports import EXPORT_JOB, ExportService
from labelflow.services.notifications import NotificationService

logger = logging.getLogger(__name__)


@shared_task(name=EXPORT_JOB)
def export_job(
    project_id: int,
    fmt: str,
    options: Optional[dict[str, Any]] = None,
    user_id: Optional[str] = None,
) -> dict:
    """
    Build an export in the worker and store it in S3/MinIO.
    Returns the export id and a presigned download URL.
    """
    db = SessionLocal()
    try:
        service = ExportService(db, get_s3_client(), NotificationService(db))
        created = service.create_export(project_id, fmt, options, user_id=user_id)
        exp = created.export
        return {
            "ok": True,
            "export_id": exp.id,
            "version": exp.version,
            "storage_path": exp.storage_path,
            "download_url": created.download_url,
        }
    except LabelflowError as e:
        db.rollback()
        logger.error("Export of project %s to %s failed: %s", project_id, fmt, e.message)
        return {"ok": False, "error": e.message}
    finally:
        db.close()
