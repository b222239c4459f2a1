from datetime import datetime
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field

from labelflow.models.project import TOOL_TYPES

ToolType = Literal[TOOL_TYPES]


class ProjectIn(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    description: str = ""
    tool_type: ToolType = "image"
    owner_id: Optional[str] = None
    reviewer_id: Optional[str] = None


class ProjectOut(BaseModel):
    id: int
    name: str
    description: str
    tool_type: str
    owner_id: Optional[str] = None
    reviewer_id: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class AssetIn(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    type: str = "image"
    content_type: str = "application/octet-stream"
    url: str = ""
    metadata: Dict[str, Any] = Field(default_factory=dict)
    content: Optional[str] = None
    # initial stage of the task created for the asset
    status: str = "label"
    priority: int = 0


class AssetOut(BaseModel):
    id: int
    project_id: int
    name: str
    type: str
    url: str
    metadata: Dict[str, Any] = Field(default_factory=dict, validation_alias="metadata_")
    created_at: datetime

    class Config:
        from_attributes = True
        populate_by_name = True
