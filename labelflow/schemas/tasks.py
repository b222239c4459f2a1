from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class TaskOut(BaseModel):
    id: int
    project_id: int
    asset_id: int
    status: str
    priority: int
    assigned_to: Optional[str] = None
    queued_at: Optional[datetime] = None
    assigned_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    time_spent: int
    created_at: datetime

    class Config:
        from_attributes = True


class TransitionIn(BaseModel):
    status: str


class BulkTransitionIn(BaseModel):
    task_ids: List[int]
    new_status: str
    remove_annotations: bool = False
    remove_assignee: bool = False
    remove_stage_history: bool = False


class TaskOutcome(BaseModel):
    task_id: int
    success: bool
    error: Optional[str] = None


class BulkTransitionOut(BaseModel):
    total: int
    succeeded: int
    failed: int
    results: List[TaskOutcome]


class ReviewDecisionIn(BaseModel):
    action: Literal["approve", "reject"]


class AssignIn(BaseModel):
    user_id: str


class TimeSpentIn(BaseModel):
    seconds: int = Field(ge=0)


class QueueStatsOut(BaseModel):
    label: int
    review: int
    completed: int
    active: int
    total: int
    current_task_number: int
    tasks_remaining: int
