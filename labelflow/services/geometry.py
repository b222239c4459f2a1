"""
Geometry helpers shared by the exporters.

Pure functions: pixel polygons/boxes in, pixel or normalized values out.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping, Optional, Sequence

from labelflow.core.config import settings
from labelflow.schemas.annotations import BBox, BBoxData, PolygonData

logger = logging.getLogger(__name__)


def polygon_to_bbox(polygon: Iterable[Sequence[float]]) -> BBox:
    """Axis-aligned bounding rectangle of a polygon given as [[x, y], ...]."""
    xs: list[float] = []
    ys: list[float] = []
    for p in polygon:
        if len(p) > 0:
            xs.append(float(p[0]))
        if len(p) > 1:
            ys.append(float(p[1]))
    if not xs or not ys:
        raise ValueError("polygon has no vertices")

    min_x, max_x = min(xs), max(xs)
    min_y, max_y = min(ys), max(ys)
    return BBox(x=min_x, y=min_y, width=max_x - min_x, height=max_y - min_y)


def bbox_to_corners(bbox: BBox) -> list[tuple[float, float]]:
    """Top-left, top-right, bottom-right, bottom-left."""
    x2 = bbox.x + bbox.width
    y2 = bbox.y + bbox.height
    return [(bbox.x, bbox.y), (x2, bbox.y), (x2, y2), (bbox.x, y2)]


def normalize(value: float, size: float) -> float:
    return value / size


def normalize_points(
    points: Iterable[Sequence[float]], width: float, height: float
) -> list[float]:
    """Flat [x1, y1, x2, y2, ...] with every vertex divided by the image size."""
    flat: list[float] = []
    for p in points:
        x = p[0] if len(p) > 0 else 0
        y = p[1] if len(p) > 1 else 0
        flat.append(normalize(x, width))
        flat.append(normalize(y, height))
    return flat


def yolo_box(bbox: BBox, width: float, height: float) -> tuple[float, float, float, float]:
    """(x_center, y_center, width, height), all normalized."""
    return (
        normalize(bbox.x + bbox.width / 2, width),
        normalize(bbox.y + bbox.height / 2, height),
        normalize(bbox.width, width),
        normalize(bbox.height, height),
    )


def geometry_bbox(payload: Any) -> Optional[BBox]:
    """
    Pixel bounding box for geometry payloads: bbox as is, polygons reduced
    to their bounding rectangle. Everything else has no box.
    """
    if isinstance(payload, BBoxData):
        return payload.bbox
    if isinstance(payload, PolygonData):
        return polygon_to_bbox(payload.polygon)
    return None


def _positive_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value if value > 0 else None


def image_size(metadata: Optional[Mapping[str, Any]], *, asset_name: str = "") -> tuple[float, float]:
    """
    Width/height recorded for an asset. Missing or unusable values fall back to
    the configured default (1920x1080), which is an approximation.
    """
    metadata = metadata or {}
    width = _positive_number(metadata.get("width"))
    height = _positive_number(metadata.get("height"))
    if width is None or height is None:
        logger.warning(
            "Asset %s has no recorded dimensions, assuming %sx%s",
            asset_name or "?",
            settings.default_image_width,
            settings.default_image_height,
        )
    return (
        width if width is not None else settings.default_image_width,
        height if height is not None else settings.default_image_height,
    )
