"""
Pascal VOC format exporter.

Exports annotations in Pascal VOC XML format, one document per image.
"""

from __future__ import annotations

import math
from xml.dom import minidom
from xml.etree import ElementTree as ET

from labelflow.services.geometry import geometry_bbox

from .base import BundleExporter, ExportDataset, ExportTask, FileBundle, number


def _round(value: float) -> int:
    # half up, not banker's rounding
    return int(math.floor(value + 0.5))


def _text(parent: ET.Element, tag: str, value) -> ET.Element:
    el = ET.SubElement(parent, tag)
    el.text = str(value)
    return el


class PascalVocExporter(BundleExporter):
    format_name = "pascal-voc"
    suffix = "_pascalvoc.zip"
    image_only = True

    def export(self, dataset: ExportDataset) -> FileBundle:
        files: FileBundle = {}
        for task in dataset.tasks:
            files[self.asset_file(task, ".xml", files)] = self._create_xml_annotation(task)
        return files

    def _create_xml_annotation(self, task: ExportTask) -> str:
        width, height = task.image_size()

        annotation = ET.Element("annotation")
        _text(annotation, "folder", "images")
        _text(annotation, "filename", task.asset_name)

        size = ET.SubElement(annotation, "size")
        _text(size, "width", number(width))
        _text(size, "height", number(height))
        _text(size, "depth", 3)

        _text(annotation, "segmented", 0)

        for ann in task.annotations:
            bbox = geometry_bbox(ann.payload)
            if bbox is None:
                continue

            obj = ET.SubElement(annotation, "object")
            _text(obj, "name", ann.label_name)
            _text(obj, "pose", "Unspecified")
            _text(obj, "truncated", 0)
            _text(obj, "difficult", 0)

            bndbox = ET.SubElement(obj, "bndbox")
            _text(bndbox, "xmin", _round(bbox.x))
            _text(bndbox, "ymin", _round(bbox.y))
            _text(bndbox, "xmax", _round(bbox.x + bbox.width))
            _text(bndbox, "ymax", _round(bbox.y + bbox.height))

        # Pretty print
        xml_str = ET.tostring(annotation, encoding="unicode")
        dom = minidom.parseString(xml_str)
        return dom.toprettyxml(indent="  ")
