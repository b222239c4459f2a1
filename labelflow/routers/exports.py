from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import RedirectResponse

from labelflow.core.deps import (
    get_current_user_id,
    get_export_engine,
    get_export_service,
    get_work_queue,
)
from labelflow.schemas.exports import (
    DownloadOut,
    ExportCreatedOut,
    ExportOut,
    ExportQueuedOut,
    ExportRequest,
    ExportStatsOut,
    PreviewRequest,
)
from labelflow.services.export import ExportEngine
from labelflow.services.exports import ExportService
from labelflow.services.queue_router import WorkQueue

router = APIRouter(tags=["export"])


@router.post("/projects/{project_id}/export", response_model=ExportCreatedOut)
def create_export(
    project_id: int,
    payload: ExportRequest,
    exports: ExportService = Depends(get_export_service),
    user_id: Optional[str] = Depends(get_current_user_id),
):
    created = exports.create_export(project_id, payload.format, payload.options, user_id=user_id)
    return ExportCreatedOut(
        export=ExportOut.model_validate(created.export),
        download_url=created.download_url,
    )


@router.post("/projects/{project_id}/export/queue", response_model=ExportQueuedOut, status_code=202)
def queue_export(
    project_id: int,
    payload: ExportRequest,
    exports: ExportService = Depends(get_export_service),
    queue: WorkQueue = Depends(get_work_queue),
    user_id: Optional[str] = Depends(get_current_user_id),
):
    job_id = exports.queue_export(queue, project_id, payload.format, payload.options, user_id=user_id)
    return ExportQueuedOut(job_id=str(job_id or ""), project_id=project_id, format=payload.format)


@router.post("/projects/{project_id}/export-preview")
def export_preview(
    project_id: int,
    payload: PreviewRequest,
    engine: ExportEngine = Depends(get_export_engine),
):
    return {
        "format": payload.format,
        "data": engine.preview(project_id, payload.format, payload.options, payload.limit),
    }


@router.get("/projects/{project_id}/exports", response_model=List[ExportOut])
def list_exports(project_id: int, exports: ExportService = Depends(get_export_service)):
    return exports.list_exports(project_id)


@router.get("/projects/{project_id}/export-stats", response_model=ExportStatsOut)
def export_stats(project_id: int, exports: ExportService = Depends(get_export_service)):
    return exports.export_stats(project_id)


@router.get("/exports/{export_id}/download", response_model=DownloadOut)
def download_export(export_id: int, exports: ExportService = Depends(get_export_service)):
    record, url = exports.download(export_id)
    return DownloadOut(download_url=url, filename=record.filename, size=record.file_size)


@router.get("/exports/{export_id}/file")
def download_export_redirect(export_id: int, exports: ExportService = Depends(get_export_service)):
    _, url = exports.download(export_id)
    return RedirectResponse(url=url, status_code=307)


@router.delete("/exports/{export_id}", status_code=204)
def delete_export(export_id: int, exports: ExportService = Depends(get_export_service)):
    exports.delete_export(export_id)
