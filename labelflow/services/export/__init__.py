"""
Export module for converting project annotations to training formats.

Supported formats:
- json / custom: native task records
- jsonl: one record per line
- coco: COCO detection/segmentation JSON
- yolo / yolov8-seg: classes.txt plus per-image label files
- pascal-voc: per-image XML
- csv / parquet: one row per annotation
- spacy: NER training data (text projects)
- text-json: flat per-task records by annotation kind (text projects)
"""

from .base import BaseExporter, ExportAnnotation, ExportDataset, ExportTask, FileBundle
from .engine import FORMATS, ExportEngine, ExportRun, parse_options

__all__ = [
    "BaseExporter",
    "ExportAnnotation",
    "ExportDataset",
    "ExportEngine",
    "ExportRun",
    "ExportTask",
    "FORMATS",
    "FileBundle",
    "parse_options",
]
