"""Explicit result type for optional network calls."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class OutcomeStatus(str, Enum):
    OK = "ok"
    UNAVAILABLE = "unavailable"
    ERROR = "error"


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Either a value, a benign absence, or a failure with detail.

    Callers decide how significant each branch is. ``UNAVAILABLE`` covers
    timeouts and unreachable endpoints; ``ERROR`` covers endpoints that
    answered with something unusable.
    """

    status: OutcomeStatus
    value: Optional[T] = None
    detail: str = ""

    @classmethod
    def ok(cls, value: T) -> "Outcome[T]":
        return cls(OutcomeStatus.OK, value=value)

    @classmethod
    def unavailable(cls, detail: str = "") -> "Outcome[T]":
        return cls(OutcomeStatus.UNAVAILABLE, detail=detail)

    @classmethod
    def error(cls, detail: str) -> "Outcome[T]":
        return cls(OutcomeStatus.ERROR, detail=detail)

    @property
    def is_ok(self) -> bool:
        return self.status is OutcomeStatus.OK

    def describe(self) -> str:
        if self.status is OutcomeStatus.OK:
            return str(self.value)
        if self.status is OutcomeStatus.UNAVAILABLE:
            return "not available"
        return f"error: {self.detail}"
