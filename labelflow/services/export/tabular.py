"""
Row-per-annotation exports: CSV for geometry and parquet for everything.
"""

from __future__ import annotations

import csv
import io
import json
from typing import Any, Dict, Iterable, List

import pyarrow as pa
import pyarrow.parquet as pq

from labelflow.schemas.annotations import PolygonData
from labelflow.services.geometry import geometry_bbox

from .base import BaseExporter, ExportDataset, TextLinesExporter, number

CSV_HEADER = ["filename", "label", "type", "x", "y", "width", "height", "polygon_points"]

PARQUET_SCHEMA = pa.schema(
    [
        ("task_id", pa.int64()),
        ("asset_id", pa.int64()),
        ("filename", pa.string()),
        ("split", pa.string()),
        ("label", pa.string()),
        ("type", pa.string()),
        ("x", pa.float64()),
        ("y", pa.float64()),
        ("width", pa.float64()),
        ("height", pa.float64()),
        ("polygon_points", pa.string()),
        ("data_json", pa.string()),
    ]
)


def write_csv(rows: Iterable[List[Any]]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerows(rows)
    return buf.getvalue().rstrip("\n")


class CsvTextExporter(TextLinesExporter):
    """CSV with a header row. Previews re-parse the text so quoted newlines survive."""

    content_type = "text/csv"
    suffix = ".csv"
    header_lines = 1

    def truncate(self, result: str, limit: int) -> str:
        if not result:
            return result
        rows = list(csv.reader(io.StringIO(result)))
        return write_csv(rows[: self.header_lines + limit])


class CsvExporter(CsvTextExporter):
    """One row per bbox/polygon; polygons carry their vertices as JSON in the last column."""

    format_name = "csv"

    def export(self, dataset: ExportDataset) -> str:
        rows: List[List[Any]] = [CSV_HEADER]
        for task in dataset.tasks:
            for ann in task.annotations:
                bbox = geometry_bbox(ann.payload)
                if bbox is None:
                    continue
                points = ""
                if isinstance(ann.payload, PolygonData):
                    points = json.dumps([[number(x), number(y)] for x, y in ann.payload.polygon])
                rows.append(
                    [
                        task.asset_name,
                        ann.label_name,
                        ann.type,
                        number(bbox.x),
                        number(bbox.y),
                        number(bbox.width),
                        number(bbox.height),
                        points,
                    ]
                )
        return write_csv(rows)


class ParquetExporter(BaseExporter):
    """
    Columnar rows for every annotation. Geometry columns are filled for
    bbox/polygon and null otherwise; ``data_json`` keeps the whole payload.
    """

    format_name = "parquet"
    content_type = "application/octet-stream"
    suffix = ".parquet"

    def rows(self, dataset: ExportDataset) -> List[Dict[str, Any]]:
        out: List[Dict[str, Any]] = []
        for task in dataset.tasks:
            for ann in task.annotations:
                bbox = geometry_bbox(ann.payload)
                points = None
                if isinstance(ann.payload, PolygonData):
                    points = json.dumps([list(p) for p in ann.payload.polygon])
                out.append(
                    {
                        "task_id": task.id,
                        "asset_id": task.asset_id,
                        "filename": task.asset_name,
                        "split": task.split,
                        "label": ann.label_name,
                        "type": ann.type,
                        "x": bbox.x if bbox else None,
                        "y": bbox.y if bbox else None,
                        "width": bbox.width if bbox else None,
                        "height": bbox.height if bbox else None,
                        "polygon_points": points,
                        "data_json": json.dumps(ann.data, ensure_ascii=False),
                    }
                )
        return out

    def export(self, dataset: ExportDataset) -> bytes:
        table = pa.Table.from_pylist(self.rows(dataset), schema=PARQUET_SCHEMA)

        buf = io.BytesIO()
        pq.write_table(table, buf)
        return buf.getvalue()

    def truncate(self, result: bytes, limit: int) -> List[Dict[str, Any]]:
        # previews show rows, not parquet bytes
        return pq.read_table(io.BytesIO(result)).slice(0, limit).to_pylist()

    def serialize(self, result: bytes) -> bytes:
        return result
