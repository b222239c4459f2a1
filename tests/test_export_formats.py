"""
Tests for the export engine and the individual format writers.
"""

import csv
import io
import json
import zipfile
from xml.etree import ElementTree as ET

import pyarrow.parquet as pq
import pytest

from labelflow.core.errors import NotFoundError, ValidationError
from labelflow.services.export import ExportEngine
from labelflow.services.export.base import fmt_float, number, replace_extension

POLYGON = {"polygon": [[10, 20], [40, 20], [40, 60], [10, 60]], "attributes": {}}


@pytest.fixture
def engine(db, clock):
    return ExportEngine(db, clock=clock)


@pytest.fixture
def car_project(factory):
    """One completed 100x200 image with a single bbox {10,20,30,40} labelled car."""
    project = factory.project()
    car = factory.label(project, name="car")
    task = factory.task(project, status="completed")
    factory.annotation(task, car)
    return project


class TestHelpers:
    def test_number(self):
        assert number(10.0) == 10
        assert isinstance(number(10.0), int)
        assert number(0.5) == 0.5

    def test_fmt_float(self):
        assert fmt_float(0.25) == "0.25"
        assert fmt_float(1.0) == "1"
        assert fmt_float(0.0) == "0"
        assert fmt_float(1 / 3) == "0.333333"

    def test_replace_extension(self):
        assert replace_extension("img.v2.png", ".txt") == "img.v2.txt"
        assert replace_extension("noext", ".xml") == "noext.xml"


class TestEngineSelection:
    def test_unknown_format(self, engine, car_project):
        with pytest.raises(ValidationError, match="Supported formats"):
            engine.generate(car_project.id, "tfrecord")

    def test_missing_project(self, engine):
        with pytest.raises(NotFoundError):
            engine.generate(404, "json")

    @pytest.mark.parametrize("fmt", ["coco", "yolo", "yolov8-seg", "pascal-voc"])
    def test_image_formats_refused_for_text_projects(self, engine, factory, fmt):
        project = factory.project(tool_type="text")
        with pytest.raises(ValidationError, match="only supported for image projects"):
            engine.generate(project.id, fmt)

    def test_spacy_refused_for_image_projects(self, engine, car_project):
        with pytest.raises(ValidationError):
            engine.generate(car_project.id, "spacy")

    def test_split_percentages_must_sum_to_100(self, engine, car_project):
        with pytest.raises(ValidationError, match="sum to 100"):
            engine.generate(
                car_project.id,
                "json",
                {"splitDataset": True, "trainSplit": 50, "valSplit": 20, "testSplit": 20},
            )

    def test_bad_option_type(self, engine, car_project):
        with pytest.raises(ValidationError, match="Invalid export options"):
            engine.generate(car_project.id, "json", {"limit": 0})


class TestTaskSelection:
    def test_only_completed_by_default(self, engine, factory):
        project = factory.project()
        done = factory.task(project, status="completed", name="a.png")
        factory.task(project, status="review", name="b.png")
        factory.task(project, status="label", name="c.png")
        factory.task(project, status="prelabel", name="d.png")

        doc = engine.generate(project.id, "json")
        assert [t["id"] for t in doc["tasks"]] == [done.id]

        doc = engine.generate(project.id, "json", {"includeNonReviewed": True})
        assert doc["total_tasks"] == 3

    def test_creation_order_and_limit(self, engine, factory):
        project = factory.project()
        tasks = [factory.task(project, status="completed", name=f"{i}.png") for i in range(5)]

        doc = engine.generate(project.id, "json", {"limit": 2})

        assert [t["id"] for t in doc["tasks"]] == [tasks[0].id, tasks[1].id]

    def test_empty_export_is_valid(self, engine, factory):
        project = factory.project()
        doc = engine.generate(project.id, "coco")
        assert doc["images"] == []
        assert doc["categories"] == []


class TestJson:
    def test_document_shape(self, engine, car_project, clock):
        doc = engine.generate(car_project.id, "json")

        assert doc["version"] == "1.0"
        assert doc["export_date"] == clock.now.isoformat()
        assert (doc["total_tasks"], doc["total_annotations"]) == (1, 1)
        record = doc["tasks"][0]
        assert record["asset"]["name"] == "img1.png"
        assert "metadata" not in record["asset"]
        ann = record["annotations"][0]
        assert ann["label_name"] == "car"
        assert ann["bbox"] == {"x": 10, "y": 20, "width": 30, "height": 40}

    def test_optional_sections(self, engine, car_project):
        doc = engine.generate(
            car_project.id, "json", {"includeMetadata": True, "includeReviewMetadata": True}
        )
        record = doc["tasks"][0]
        assert record["asset"]["metadata"] == {"width": 100, "height": 200}
        assert "completed_at" in record
        assert "created_at" in record["annotations"][0]

    def test_jsonl_lines(self, engine, factory):
        project = factory.project()
        for i in range(3):
            factory.task(project, status="completed", name=f"{i}.png")

        text = engine.generate(project.id, "jsonl")

        lines = text.split("\n")
        assert len(lines) == 3
        assert json.loads(lines[1])["asset"]["name"] == "1.png"


class TestCoco:
    def test_bbox_annotation(self, engine, car_project):
        doc = engine.generate(car_project.id, "coco")

        assert doc["images"] == [{"id": 1, "file_name": "img1.png", "width": 100, "height": 200}]
        assert doc["categories"] == [{"id": 1, "name": "car", "supercategory": "object"}]
        ann = doc["annotations"][0]
        assert ann["bbox"] == [10, 20, 30, 40]
        assert ann["area"] == 1200
        assert ann["category_id"] == 1
        assert ann["segmentation"] == []
        assert ann["iscrowd"] == 0

    def test_polygon_annotation(self, engine, factory):
        project = factory.project()
        road = factory.label(project, name="road")
        task = factory.task(project, status="completed")
        factory.annotation(task, road, type_="polygon", data=POLYGON)

        ann = engine.generate(project.id, "coco")["annotations"][0]

        assert ann["segmentation"] == [[10, 20, 40, 20, 40, 60, 10, 60]]
        assert ann["bbox"] == [10, 20, 30, 40]

    def test_categories_first_seen_and_ids_sequential(self, engine, factory):
        project = factory.project()
        bus = factory.label(project, name="bus")
        car = factory.label(project, name="car")
        first = factory.task(project, status="completed", name="a.png")
        second = factory.task(project, status="completed", name="b.png")
        factory.annotation(first, car)
        factory.annotation(second, bus)
        factory.annotation(second, car)

        doc = engine.generate(project.id, "coco")

        assert [c["name"] for c in doc["categories"]] == ["car", "bus"]
        assert [a["id"] for a in doc["annotations"]] == [1, 2, 3]
        assert [a["image_id"] for a in doc["annotations"]] == [1, 2, 2]

    def test_non_geometry_skipped(self, engine, factory):
        project = factory.project()
        label = factory.label(project)
        task = factory.task(project, status="completed")
        factory.annotation(task, label, type_="point", data={"point": {"x": 1, "y": 2}})

        assert engine.generate(project.id, "coco")["annotations"] == []

    def test_missing_dimensions_fall_back(self, engine, factory):
        project = factory.project()
        factory.task(project, status="completed", metadata={})

        image = engine.generate(project.id, "coco")["images"][0]

        assert (image["width"], image["height"]) == (1920, 1080)


class TestYolo:
    def test_bbox_line_and_classes(self, engine, car_project):
        files = engine.generate(car_project.id, "yolo")

        assert files["classes.txt"] == "car"
        assert files["img1.txt"] == "0 0.25 0.2 0.3 0.2"

    def test_polygon_reduced_to_box(self, engine, factory):
        project = factory.project()
        road = factory.label(project, name="road")
        task = factory.task(project, status="completed")
        factory.annotation(task, road, type_="polygon", data=POLYGON)

        assert engine.generate(project.id, "yolo")["img1.txt"] == "0 0.25 0.2 0.3 0.2"

    def test_seg_bbox_as_corners(self, engine, car_project):
        files = engine.generate(car_project.id, "yolov8-seg")
        assert files["img1.txt"] == "0 0.1 0.1 0.4 0.1 0.4 0.3 0.1 0.3"

    def test_serialized_zip(self, engine, car_project):
        run = engine.run(car_project.id, "yolo")
        data = run.exporter.serialize(run.result)

        with zipfile.ZipFile(io.BytesIO(data)) as zf:
            assert sorted(zf.namelist()) == ["classes.txt", "img1.txt"]

    def test_split_prefixes(self, engine, factory):
        project = factory.project()
        for i in range(10):
            factory.task(project, status="completed", name=f"img{i}.png")

        files = engine.generate(project.id, "yolo", {"splitDataset": True})

        names = sorted(n for n in files if n != "classes.txt")
        assert sum(n.startswith("train/") for n in names) == 7
        assert sum(n.startswith("val/") for n in names) == 2
        assert sum(n.startswith("test/") for n in names) == 1
        assert "train/img0.txt" in files
        assert "test/img9.txt" in files


class TestPascalVoc:
    def test_xml_document(self, engine, car_project):
        files = engine.generate(car_project.id, "pascal-voc")

        root = ET.fromstring(files["img1.xml"])
        assert root.findtext("filename") == "img1.png"
        assert root.findtext("size/width") == "100"
        assert root.findtext("size/height") == "200"
        assert root.findtext("size/depth") == "3"
        obj = root.find("object")
        assert obj.findtext("name") == "car"
        assert obj.findtext("pose") == "Unspecified"
        box = [obj.findtext(f"bndbox/{k}") for k in ("xmin", "ymin", "xmax", "ymax")]
        assert box == ["10", "20", "40", "60"]

    def test_rounds_half_up(self, engine, factory):
        project = factory.project()
        label = factory.label(project)
        task = factory.task(project, status="completed")
        factory.annotation(
            task, label, data={"bbox": {"x": 0.5, "y": 2.5, "width": 1, "height": 1}, "attributes": {}}
        )

        root = ET.fromstring(engine.generate(project.id, "pascal-voc")["img1.xml"])

        assert root.findtext("object/bndbox/xmin") == "1"
        assert root.findtext("object/bndbox/ymin") == "3"


class TestCsvAndParquet:
    def test_csv_bbox_row(self, engine, car_project):
        text = engine.generate(car_project.id, "csv")

        header, row = text.split("\n")
        assert header == "filename,label,type,x,y,width,height,polygon_points"
        assert row == "img1.png,car,bbox,10,20,30,40,"

    def test_csv_polygon_points_column(self, engine, factory):
        project = factory.project()
        road = factory.label(project, name="road")
        task = factory.task(project, status="completed")
        factory.annotation(task, road, type_="polygon", data=POLYGON)

        rows = list(csv.reader(io.StringIO(engine.generate(project.id, "csv"))))

        assert json.loads(rows[1][7]) == POLYGON["polygon"]

    def test_parquet_rows(self, engine, factory):
        project = factory.project()
        car = factory.label(project, name="car")
        task = factory.task(project, status="completed")
        factory.annotation(task, car)
        factory.annotation(task, car, type_="point", data={"point": {"x": 3, "y": 4}})

        data = engine.generate(project.id, "parquet")
        rows = pq.read_table(io.BytesIO(data)).to_pylist()

        assert [r["type"] for r in rows] == ["bbox", "point"]
        assert rows[0]["width"] == 30.0
        assert rows[1]["x"] is None
        assert json.loads(rows[1]["data_json"])["point"] == {"x": 3.0, "y": 4.0}


class TestPreview:
    def test_coco_preview_keeps_matching_annotations(self, engine, factory):
        project = factory.project()
        car = factory.label(project)
        for i in range(5):
            factory.annotation(factory.task(project, status="completed", name=f"{i}.png"), car)

        doc = engine.preview(project.id, "coco", limit=2)

        assert [img["id"] for img in doc["images"]] == [1, 2]
        assert {a["image_id"] for a in doc["annotations"]} == {1, 2}

    def test_bundle_preview_keeps_class_list(self, engine, factory):
        project = factory.project()
        car = factory.label(project)
        for i in range(4):
            factory.annotation(factory.task(project, status="completed", name=f"{i}.png"), car)

        files = engine.preview(project.id, "yolo", limit=1)

        assert sorted(files) == ["0.txt", "classes.txt"]

    def test_csv_preview_keeps_header(self, engine, factory):
        project = factory.project()
        car = factory.label(project)
        task = factory.task(project, status="completed")
        for _ in range(5):
            factory.annotation(task, car)

        text = engine.preview(project.id, "csv", limit=2)

        assert len(text.split("\n")) == 3

    def test_parquet_preview_returns_rows(self, engine, car_project):
        rows = engine.preview(car_project.id, "parquet")
        assert rows[0]["label"] == "car"

    def test_default_limit(self, engine, factory):
        project = factory.project()
        for i in range(6):
            factory.task(project, status="completed", name=f"{i}.png")

        assert len(engine.preview(project.id, "json")["tasks"]) == 3

    @pytest.mark.parametrize("limit", [0, -1])
    def test_limit_below_one_rejected(self, engine, car_project, limit):
        with pytest.raises(ValidationError, match="at least 1"):
            engine.preview(car_project.id, "json", limit=limit)


class TestTextProjects:
    @pytest.fixture
    def ner_project(self, factory):
        project = factory.project(tool_type="text")
        person = factory.label(project, name="PERSON")
        task = factory.task(project, status="completed", name="doc1.txt", content="Alice met Bob")
        factory.annotation(
            task, person, type_="text-span", data={"start": 0, "end": 5, "text": "Alice", "attributes": {}}
        )
        factory.annotation(
            task, person, type_="text-span", data={"start": 10, "end": 13, "text": "Bob", "attributes": {}}
        )
        return project

    def test_spacy(self, engine, ner_project):
        data = engine.generate(ner_project.id, "spacy")
        assert data == [["Alice met Bob", {"entities": [[0, 5, "PERSON"], [10, 13, "PERSON"]]}]]

    def test_jsonl(self, engine, ner_project):
        line = json.loads(engine.generate(ner_project.id, "jsonl"))
        assert line == {"text": "Alice met Bob", "entities": [[0, 5, "PERSON"], [10, 13, "PERSON"]]}

    def test_json_keeps_task_records(self, engine, ner_project):
        doc = engine.generate(ner_project.id, "json")

        assert doc["total_annotations"] == 2
        task = doc["tasks"][0]
        assert task["asset"]["name"] == "doc1.txt"
        assert [(a["type"], a["text"], a["label_name"]) for a in task["annotations"]] == [
            ("text-span", "Alice", "PERSON"),
            ("text-span", "Bob", "PERSON"),
        ]

    def test_custom_matches_json(self, engine, ner_project):
        assert engine.generate(ner_project.id, "custom") == engine.generate(ner_project.id, "json")

    def test_text_json_records(self, engine, ner_project):
        doc = engine.generate(ner_project.id, "text-json")

        assert doc["project"]["tool_type"] == "text"
        record = doc["annotations"][0]
        assert record["annotation_type"] == "ner"
        assert [e["text"] for e in record["entities"]] == ["Alice", "Bob"]

    def test_text_json_refused_for_image_projects(self, engine, car_project):
        with pytest.raises(ValidationError, match="only supported for text projects"):
            engine.generate(car_project.id, "text-json")

    def test_csv_columns_follow_first_annotation(self, engine, ner_project):
        rows = list(csv.reader(io.StringIO(engine.generate(ner_project.id, "csv"))))

        assert rows[0] == ["asset_name", "text", "entity_text", "label", "start", "end"]
        assert rows[2] == ["doc1.txt", "Alice met Bob", "Bob", "PERSON", "10", "13"]

    def test_sentiment_records(self, engine, factory):
        project = factory.project(tool_type="text")
        positive = factory.label(project, name="positive")
        task = factory.task(project, status="completed", name="r.txt", content="Great!")
        factory.annotation(
            task, positive, type_="sentiment", data={"sentiment": "positive", "attributes": {}}
        )

        record = engine.generate(project.id, "text-json")["annotations"][0]

        assert (record["annotation_type"], record["sentiment"]) == ("sentiment", "positive")
