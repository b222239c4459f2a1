from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Success/failure value for operations that are expected to fail partially."""

    ok: bool
    value: Optional[T] = None
    error: Optional[str] = None

    @classmethod
    def success(cls, value: T) -> "Outcome[T]":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: str) -> "Outcome[T]":
        return cls(ok=False, error=error)
