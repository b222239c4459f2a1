"""
YOLO exporters - classes.txt plus one label file per image.
"""

from __future__ import annotations

from labelflow.schemas.annotations import BBoxData, PolygonData
from labelflow.services.geometry import bbox_to_corners, geometry_bbox, normalize_points, yolo_box

from .base import BundleExporter, ExportDataset, FileBundle, fmt_float

CLASSES_FILE = "classes.txt"


class YoloExporter(BundleExporter):
    """
    Detection labels.

    Line format: ``class_id x_center y_center width height``, all normalized to
    [0, 1] by the image size. Polygons are reduced to their bounding box.
    """

    format_name = "yolo"
    suffix = "_yolo.zip"
    image_only = True
    shared_files = (CLASSES_FILE,)

    def export(self, dataset: ExportDataset) -> FileBundle:
        classes = dataset.label_names()
        class_idx = {name: idx for idx, name in enumerate(classes)}

        files: FileBundle = {CLASSES_FILE: "\n".join(classes)}
        for task in dataset.tasks:
            width, height = task.image_size()
            lines = []
            for ann in task.annotations:
                line = self.line(class_idx[ann.label_name], ann.payload, width, height)
                if line is not None:
                    lines.append(line)
            files[self.asset_file(task, ".txt", files)] = "\n".join(lines)
        return files

    def line(self, class_id: int, payload, width: float, height: float) -> str | None:
        bbox = geometry_bbox(payload)
        if bbox is None:
            return None
        values = yolo_box(bbox, width, height)
        return " ".join([str(class_id), *(fmt_float(v) for v in values)])


class YoloSegExporter(YoloExporter):
    """
    YOLOv8 segmentation labels: ``class_id x1 y1 x2 y2 ...``.

    Every line is a polygon; boxes are expanded to their four corners
    (top-left, top-right, bottom-right, bottom-left).
    """

    format_name = "yolov8-seg"
    suffix = "_yolov8seg.zip"

    def line(self, class_id: int, payload, width: float, height: float) -> str | None:
        if isinstance(payload, PolygonData):
            points = payload.polygon
        elif isinstance(payload, BBoxData):
            points = bbox_to_corners(payload.bbox)
        else:
            return None
        coords = normalize_points(points, width, height)
        return " ".join([str(class_id), *(fmt_float(v) for v in coords)])
