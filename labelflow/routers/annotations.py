from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends

from labelflow.core.deps import get_annotation_store
from labelflow.schemas.annotations import (
    AnnotationIn,
    AnnotationOut,
    AnnotationUpdateIn,
    SaveAnnotationsIn,
    SaveAnnotationsOut,
)
from labelflow.services.annotations import AnnotationStore

router = APIRouter(prefix="", tags=["annotations"])


@router.get("/tasks/{task_id}/annotations", response_model=List[AnnotationOut])
def list_annotations(task_id: int, store: AnnotationStore = Depends(get_annotation_store)):
    return store.list_for_task(task_id)


@router.put("/tasks/{task_id}/annotations", response_model=SaveAnnotationsOut)
def save_annotations(
    task_id: int,
    payload: SaveAnnotationsIn,
    store: AnnotationStore = Depends(get_annotation_store),
):
    """Replace every annotation of the task with the submitted set."""
    rows = store.replace_for_task(task_id, payload.annotations)
    return SaveAnnotationsOut(
        task_id=task_id,
        count=len(rows),
        annotations=[AnnotationOut.model_validate(r) for r in rows],
    )


@router.post("/tasks/{task_id}/annotations", response_model=AnnotationOut, status_code=201)
def create_annotation(
    task_id: int,
    payload: AnnotationIn,
    store: AnnotationStore = Depends(get_annotation_store),
):
    return store.create(task_id, payload)


@router.patch("/annotations/{annotation_id}", response_model=AnnotationOut)
def update_annotation(
    annotation_id: int,
    payload: AnnotationUpdateIn,
    store: AnnotationStore = Depends(get_annotation_store),
):
    return store.update(annotation_id, payload)


@router.delete("/annotations/{annotation_id}", status_code=204)
def delete_annotation(annotation_id: int, store: AnnotationStore = Depends(get_annotation_store)):
    store.delete(annotation_id)


@router.delete("/tasks/{task_id}/annotations")
def clear_annotations(task_id: int, store: AnnotationStore = Depends(get_annotation_store)):
    return {"task_id": task_id, "deleted": store.delete_for_task(task_id)}
