from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

ExportFormat = Literal[
    "json",
    "coco",
    "yolo",
    "yolov8-seg",
    "pascal-voc",
    "csv",
    "custom",
    "jsonl",
    "spacy",
    "parquet",
    "text-json",
]


class ExportOptions(BaseModel):
    # clients send camelCase, python code reads snake_case
    model_config = ConfigDict(populate_by_name=True)

    include_metadata: bool = Field(default=False, alias="includeMetadata")
    include_non_reviewed: bool = Field(default=False, alias="includeNonReviewed")
    include_review_metadata: bool = Field(default=False, alias="includeReviewMetadata")
    split_dataset: bool = Field(default=False, alias="splitDataset")
    train_split: int = Field(default=70, ge=0, le=100, alias="trainSplit")
    val_split: int = Field(default=20, ge=0, le=100, alias="valSplit")
    test_split: int = Field(default=10, ge=0, le=100, alias="testSplit")
    limit: Optional[int] = Field(default=None, ge=1)

    @model_validator(mode="after")
    def _check_splits(self) -> "ExportOptions":
        if self.split_dataset:
            total = self.train_split + self.val_split + self.test_split
            if total != 100:
                raise ValueError(f"split percentages must sum to 100, got {total}")
        return self

    @property
    def status_filter(self) -> List[str]:
        if self.include_non_reviewed:
            return ["label", "review", "completed"]
        return ["completed"]


class ExportRequest(BaseModel):
    format: str = "json"
    options: Dict[str, Any] = Field(default_factory=dict)


class PreviewRequest(ExportRequest):
    limit: int = Field(default=3, ge=1)


class ExportOut(BaseModel):
    id: int
    project_id: int
    format: str
    version: int
    filename: str
    file_size: int
    task_count: int
    annotation_count: int
    status_filter: str
    created_at: datetime
    expires_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ExportCreatedOut(BaseModel):
    export: ExportOut
    download_url: str


class DownloadOut(BaseModel):
    download_url: str
    filename: str
    size: int


class ExportStatsOut(BaseModel):
    completed_tasks: int
    labeled_tasks: int
    total_annotations: int
    bbox_count: int
    polygon_count: int
    point_count: int
    # label name -> annotation count, most used first
    label_stats: Dict[str, int]
    total_duration: int
    avg_time_per_task: int
    fastest_task: int
    slowest_task: int


class ExportQueuedOut(BaseModel):
    job_id: str
    project_id: int
    format: str
