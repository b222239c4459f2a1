"""
Annotation payloads.

Every annotation row stores ``type`` plus a ``data`` dict. The accepted shape of
``data`` depends on ``type``; the variants below form a discriminated union so a
payload is validated once on the way in and exporters can dispatch on the
concrete class.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator

Vertex = Tuple[float, float]


class BBox(BaseModel):
    x: float
    y: float
    width: float = Field(ge=0)
    height: float = Field(ge=0)


class Point(BaseModel):
    x: float
    y: float


class _Payload(BaseModel):
    # unknown keys (rotation, confidence, ...) survive a save/export round trip
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    attributes: dict[str, Any] = Field(default_factory=dict)


class BBoxData(_Payload):
    type: Literal["bbox"] = "bbox"
    bbox: BBox


class PolygonData(_Payload):
    type: Literal["polygon"] = "polygon"
    polygon: List[Vertex] = Field(min_length=3)


class PointData(_Payload):
    type: Literal["point"] = "point"
    point: Point


class LineData(_Payload):
    type: Literal["line"] = "line"
    line: List[Vertex] = Field(min_length=2)


class TextSpanData(_Payload):
    type: Literal["text-span"] = "text-span"
    start: int = Field(ge=0)
    end: int = Field(ge=0)
    text: str = ""

    @model_validator(mode="after")
    def _check_range(self) -> "TextSpanData":
        if self.end < self.start:
            raise ValueError("text-span end must be >= start")
        return self


class SentimentData(_Payload):
    type: Literal["sentiment"] = "sentiment"
    sentiment: str


class ClassificationData(_Payload):
    type: Literal["classification"] = "classification"
    selected: bool = True


class EmotionData(_Payload):
    type: Literal["emotion"] = "emotion"
    emotion: str
    intensity: float = 0


class RlhfRankingData(_Payload):
    type: Literal["rlhf-ranking"] = "rlhf-ranking"
    preferred: Literal["A", "B"]
    rating: int = Field(default=0, ge=0, le=5)
    feedback: str = ""
    response_a: Optional[str] = Field(default=None, alias="responseA")
    response_b: Optional[str] = Field(default=None, alias="responseB")


AnnotationPayload = Annotated[
    Union[
        BBoxData,
        PolygonData,
        PointData,
        LineData,
        TextSpanData,
        SentimentData,
        ClassificationData,
        EmotionData,
        RlhfRankingData,
    ],
    Field(discriminator="type"),
]

ANNOTATION_TYPES = (
    "bbox",
    "polygon",
    "point",
    "line",
    "text-span",
    "sentiment",
    "classification",
    "emotion",
    "rlhf-ranking",
)

GEOMETRY_TYPES = ("bbox", "polygon")

payload_adapter: TypeAdapter = TypeAdapter(AnnotationPayload)


def parse_payload(type_: str, data: dict[str, Any] | None) -> AnnotationPayload:
    """Validate ``data`` against the variant for ``type_`` (raises pydantic.ValidationError)."""
    return payload_adapter.validate_python({**(data or {}), "type": type_})


def dump_payload(payload: AnnotationPayload) -> dict[str, Any]:
    """The ``data`` column value: JSON-safe, camelCase wire keys, no ``type``."""
    return payload.model_dump(mode="json", by_alias=True, exclude={"type"})


# keys a JSON export adds around the flattened payload
_EXPORT_RECORD_KEYS = {"id", "type", "label_id", "label_name", "created_at", "updated_at"}


class AnnotationIn(BaseModel):
    label_id: int
    type: Literal[
        "bbox",
        "polygon",
        "point",
        "line",
        "text-span",
        "sentiment",
        "classification",
        "emotion",
        "rlhf-ranking",
    ]
    data: dict[str, Any] = Field(default_factory=dict)

    def payload(self) -> AnnotationPayload:
        return parse_payload(self.type, self.data)

    @classmethod
    def from_export_record(cls, record: dict[str, Any]) -> "AnnotationIn":
        """Rebuild an input from one annotation entry of a JSON export."""
        data = {k: v for k, v in record.items() if k not in _EXPORT_RECORD_KEYS}
        return cls(label_id=record["label_id"], type=record["type"], data=data)


class SaveAnnotationsIn(BaseModel):
    annotations: List[AnnotationIn]


class AnnotationUpdateIn(BaseModel):
    label_id: Optional[int] = None
    data: Optional[dict[str, Any]] = None
    status: Optional[str] = None


class AnnotationOut(BaseModel):
    id: int
    task_id: int
    label_id: int
    type: str
    data: dict[str, Any]
    status: str
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class SaveAnnotationsOut(BaseModel):
    task_id: int
    count: int
    annotations: List[AnnotationOut]
