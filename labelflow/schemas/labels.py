from __future__ import annotations

from typing import Any, List, Literal, Optional

from pydantic import BaseModel, Field, model_validator


class LabelAttribute(BaseModel):
    """Typed extra field a labeler fills in for annotations of this label."""

    name: str = Field(min_length=1)
    type: Literal["text", "select", "radio", "checkbox", "number"]
    required: bool = False
    options: List[str] = Field(default_factory=list)
    min: Optional[float] = None
    max: Optional[float] = None
    max_length: Optional[int] = None

    @model_validator(mode="after")
    def _check_definition(self) -> "LabelAttribute":
        if self.type in ("select", "radio") and not self.options:
            raise ValueError(f"attribute {self.name!r}: {self.type} needs options")
        if self.min is not None and self.max is not None and self.min > self.max:
            raise ValueError(f"attribute {self.name!r}: min > max")
        return self

    def check(self, value: Any) -> Optional[str]:
        """Return a problem description for ``value`` or None when it is acceptable."""
        if value is None or value == "" or value == []:
            return f"{self.name} is required" if self.required else None

        if self.type == "text":
            if not isinstance(value, str):
                return f"{self.name} must be text"
            if self.max_length is not None and len(value) > self.max_length:
                return f"{self.name} is longer than {self.max_length}"
        elif self.type in ("select", "radio"):
            if value not in self.options:
                return f"{self.name} must be one of {self.options}"
        elif self.type == "checkbox":
            values = value if isinstance(value, list) else [value]
            if self.options:
                unknown = [v for v in values if v not in self.options]
                if unknown:
                    return f"{self.name} has unknown options {unknown}"
            elif not all(isinstance(v, bool) for v in values):
                return f"{self.name} must be true/false"
        elif self.type == "number":
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                return f"{self.name} must be a number"
            if self.min is not None and value < self.min:
                return f"{self.name} must be >= {self.min}"
            if self.max is not None and value > self.max:
                return f"{self.name} must be <= {self.max}"
        return None


class LabelIn(BaseModel):
    id: Optional[int] = None
    name: str = Field(min_length=1, max_length=120)
    color: str = "#3B82F6"
    description: Optional[str] = None
    shortcut: Optional[str] = None
    order: int = 0
    attributes: List[LabelAttribute] = Field(default_factory=list)


class LabelSchemaIn(BaseModel):
    classes: List[LabelIn]


class LabelOut(BaseModel):
    id: int
    project_id: int
    name: str
    color: str
    description: Optional[str] = None
    shortcut: Optional[str] = None
    order: int
    attributes: List[dict]

    class Config:
        from_attributes = True


class LabelSchemaOut(BaseModel):
    project_id: int
    classes: List[LabelOut]
    retained: List[int] = Field(default_factory=list)
