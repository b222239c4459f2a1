"""
COCO format exporter.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List

from labelflow.schemas.annotations import PolygonData
from labelflow.services.geometry import geometry_bbox

from .base import BaseExporter, ExportDataset, number

logger = logging.getLogger(__name__)


class CocoExporter(BaseExporter):
    """
    One image entry per task, one annotation entry per bbox/polygon.

    Category ids are 1-based in first-seen label order. Polygons are written as
    a single-ring segmentation and also get their bounding rectangle as
    ``bbox``; ``area`` is the bbox area in both cases. Annotations without
    geometry are skipped.
    """

    format_name = "coco"
    suffix = "_coco.json"
    image_only = True

    def export(self, dataset: ExportDataset) -> Dict[str, Any]:
        categories = {name: idx for idx, name in enumerate(dataset.label_names(), start=1)}

        images: List[Dict[str, Any]] = []
        annotations: List[Dict[str, Any]] = []
        splits: Dict[str, List[int]] = {}
        ann_id = 1

        for image_id, task in enumerate(dataset.tasks, start=1):
            width, height = task.image_size()
            images.append(
                {
                    "id": image_id,
                    "file_name": task.asset_name,
                    "width": number(width),
                    "height": number(height),
                }
            )
            if task.split:
                splits.setdefault(task.split, []).append(image_id)

            for ann in task.annotations:
                bbox = geometry_bbox(ann.payload)
                if bbox is None:
                    continue

                segmentation: List[List[float]] = []
                if isinstance(ann.payload, PolygonData):
                    segmentation = [[number(c) for p in ann.payload.polygon for c in p]]

                annotations.append(
                    {
                        "id": ann_id,
                        "image_id": image_id,
                        "category_id": categories[ann.label_name],
                        "bbox": [number(bbox.x), number(bbox.y), number(bbox.width), number(bbox.height)],
                        "area": number(bbox.width * bbox.height),
                        "segmentation": segmentation,
                        "iscrowd": 0,
                    }
                )
                ann_id += 1

        doc: Dict[str, Any] = {
            "info": {
                "description": f"{dataset.project_name} export",
                "version": "1.0",
                "year": dataset.exported_at.year,
                "date_created": dataset.exported_at.isoformat(),
            },
            "licenses": [],
            "images": images,
            "annotations": annotations,
            "categories": [
                {"id": cid, "name": name, "supercategory": "object"}
                for name, cid in categories.items()
            ],
        }
        if dataset.options.split_dataset:
            doc["splits"] = {name: splits.get(name, []) for name in ("train", "val", "test")}

        logger.info(
            "COCO export of project %s: %s images, %s annotations",
            dataset.project_id,
            len(images),
            len(annotations),
        )
        return doc

    def truncate(self, result: Dict[str, Any], limit: int) -> Dict[str, Any]:
        images = result["images"][:limit]
        keep = {img["id"] for img in images}
        return {
            **result,
            "images": images,
            "annotations": [a for a in result["annotations"] if a["image_id"] in keep],
        }
