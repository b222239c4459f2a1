from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.orm import Session

from labelflow.core.deps import get_db, get_state_machine, get_work_queue
from labelflow.models.asset import Asset
from labelflow.models.project import Project
from labelflow.models.task import Task
from labelflow.schemas.projects import AssetIn, AssetOut, ProjectIn, ProjectOut
from labelflow.schemas.tasks import TaskOut
from labelflow.services.queue_router import QueueRouter, WorkQueue
from labelflow.services.state_machine import TaskStateMachine, normalize_status

router = APIRouter(prefix="/projects", tags=["projects"])


def _get_project(db: Session, project_id: int) -> Project:
    project = db.get(Project, project_id)
    if not project:
        raise HTTPException(status_code=404, detail="Project not found")
    return project


@router.post("", response_model=ProjectOut, status_code=201)
def create_project(payload: ProjectIn, db: Session = Depends(get_db)):
    project = Project(**payload.model_dump())
    db.add(project)
    db.commit()
    db.refresh(project)
    return project


@router.get("/{project_id}", response_model=ProjectOut)
def get_project(project_id: int, db: Session = Depends(get_db)):
    return _get_project(db, project_id)


@router.post("/{project_id}/assets", response_model=TaskOut, status_code=201)
def add_asset(
    project_id: int,
    payload: AssetIn,
    db: Session = Depends(get_db),
    sm: TaskStateMachine = Depends(get_state_machine),
):
    """Register an asset and create its task in the requested stage."""
    _get_project(db, project_id)
    status = normalize_status(payload.status)

    asset = Asset(
        project_id=project_id,
        name=payload.name,
        type=payload.type,
        content_type=payload.content_type,
        url=payload.url,
        metadata_=payload.metadata,
        content=payload.content,
    )
    db.add(asset)
    db.commit()

    return sm.create_task_for_asset(asset.id, status=status, priority=payload.priority)


@router.get("/{project_id}/assets", response_model=List[AssetOut])
def list_assets(project_id: int, db: Session = Depends(get_db)):
    _get_project(db, project_id)
    return list(
        db.scalars(select(Asset).where(Asset.project_id == project_id).order_by(Asset.id))
    )


@router.get("/{project_id}/tasks", response_model=List[TaskOut])
def list_tasks(
    project_id: int,
    status: Optional[str] = None,
    db: Session = Depends(get_db),
):
    _get_project(db, project_id)
    q = select(Task).where(Task.project_id == project_id)
    if status:
        q = q.where(Task.status == normalize_status(status))
    return list(db.scalars(q.order_by(Task.created_at.asc(), Task.id.asc())))


@router.post("/{project_id}/queues/rebuild")
def rebuild_queues(
    project_id: int,
    db: Session = Depends(get_db),
    queue: WorkQueue = Depends(get_work_queue),
):
    _get_project(db, project_id)
    return {"project_id": project_id, "queued": QueueRouter(queue).rebuild(db, project_id)}
