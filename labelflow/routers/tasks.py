from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from labelflow.core.deps import get_state_machine
from labelflow.schemas.tasks import (
    AssignIn,
    BulkTransitionIn,
    BulkTransitionOut,
    QueueStatsOut,
    ReviewDecisionIn,
    TaskOut,
    TimeSpentIn,
    TransitionIn,
)
from labelflow.services.state_machine import TaskStateMachine

router = APIRouter(prefix="", tags=["tasks"])


@router.get("/tasks/{task_id}", response_model=TaskOut)
def get_task(task_id: int, sm: TaskStateMachine = Depends(get_state_machine)):
    outcome = sm.fetch(task_id)
    if not outcome.ok:
        raise HTTPException(status_code=404, detail=outcome.error)
    return outcome.value


@router.post("/tasks/{task_id}/status", response_model=TaskOut)
def change_status(
    task_id: int,
    payload: TransitionIn,
    sm: TaskStateMachine = Depends(get_state_machine),
):
    return sm.transition(task_id, payload.status)


@router.post("/tasks/bulk-status", response_model=BulkTransitionOut)
def bulk_change_status(
    payload: BulkTransitionIn,
    sm: TaskStateMachine = Depends(get_state_machine),
):
    return sm.bulk_transition(
        payload.task_ids,
        payload.new_status,
        remove_annotations=payload.remove_annotations,
        remove_assignee=payload.remove_assignee,
        remove_stage_history=payload.remove_stage_history,
    )


@router.post("/tasks/{task_id}/review", response_model=TaskOut)
def review_task(
    task_id: int,
    payload: ReviewDecisionIn,
    sm: TaskStateMachine = Depends(get_state_machine),
):
    return sm.review_decision(task_id, payload.action)


@router.post("/tasks/{task_id}/assign", response_model=TaskOut)
def assign_task(
    task_id: int,
    payload: AssignIn,
    sm: TaskStateMachine = Depends(get_state_machine),
):
    return sm.assign(task_id, payload.user_id)


@router.post("/tasks/{task_id}/time", status_code=204)
def add_time(
    task_id: int,
    payload: TimeSpentIn,
    sm: TaskStateMachine = Depends(get_state_machine),
):
    sm.record_time(task_id, payload.seconds)


@router.get("/projects/{project_id}/queue-stats", response_model=QueueStatsOut)
def queue_stats(
    project_id: int,
    current_task_id: Optional[int] = None,
    sm: TaskStateMachine = Depends(get_state_machine),
):
    return sm.get_queue_stats(project_id, current_task_id)


@router.get("/projects/{project_id}/next-task", response_model=Optional[TaskOut])
def next_task(
    project_id: int,
    status: str = "label",
    sm: TaskStateMachine = Depends(get_state_machine),
):
    return sm.next_task(project_id, status)


@router.get("/projects/{project_id}/tasks/{task_id}/neighbours")
def task_neighbours(
    project_id: int,
    task_id: int,
    sm: TaskStateMachine = Depends(get_state_machine),
):
    return {
        "task_id": task_id,
        "previous_task_id": sm.previous_in_sequence(project_id, task_id),
        "next_task_id": sm.next_in_sequence(project_id, task_id),
    }
