from __future__ import annotations

from fastapi import APIRouter, Depends

from labelflow.core.deps import get_label_service
from labelflow.schemas.labels import LabelOut, LabelSchemaIn, LabelSchemaOut
from labelflow.services.labels import LabelService

router = APIRouter(prefix="", tags=["labels"])


@router.get("/projects/{project_id}/labels", response_model=LabelSchemaOut)
def get_label_schema(project_id: int, labels: LabelService = Depends(get_label_service)):
    return LabelSchemaOut(
        project_id=project_id,
        classes=[LabelOut.model_validate(label) for label in labels.list_labels(project_id)],
    )


@router.put("/projects/{project_id}/labels", response_model=LabelSchemaOut)
def save_label_schema(
    project_id: int,
    payload: LabelSchemaIn,
    labels: LabelService = Depends(get_label_service),
):
    saved, retained = labels.save_schema(project_id, payload.classes)
    return LabelSchemaOut(
        project_id=project_id,
        classes=[LabelOut.model_validate(label) for label in saved],
        retained=retained,
    )


@router.delete("/labels/{label_id}", status_code=204)
def delete_label(label_id: int, labels: LabelService = Depends(get_label_service)):
    labels.delete_label(label_id)
