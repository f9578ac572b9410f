"""Explicit per-step results for skip-and-continue geometry processing.

Geometry sub-steps (normalising a feature, one pairwise union, one
intersection) may fail on malformed or degenerate input.  Such failures are
recovered locally: the step is skipped and the operation continues.  Instead
of swallowing the exception, each sub-step returns a ``StepResult`` and the
operation records a ``StepFailure`` so callers and tests can inspect how
much of a result is partial.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from pyproj.exceptions import ProjError
from shapely.errors import ShapelyError

from spatial_engine.models.feature import FeatureCollection

T = TypeVar("T")

#: Errors a geometry sub-step may raise on bad input.  Anything else is a
#: programming error and propagates.
GEOMETRY_ERRORS: tuple[type[BaseException], ...] = (
    ShapelyError,
    ProjError,
    ValueError,
    TypeError,
    IndexError,
    KeyError,
    ArithmeticError,
)


@dataclass(frozen=True, slots=True)
class StepResult(Generic[T]):
    """Value of a geometry sub-step, or the reason it failed."""

    value: T | None = None
    error: str = ""

    @property
    def ok(self) -> bool:
        return not self.error


def attempt(fn: Callable[..., T], *args: Any) -> StepResult[T]:
    """Run one geometry sub-step and capture geometry errors as a result."""
    try:
        return StepResult(value=fn(*args))
    except GEOMETRY_ERRORS as exc:
        return StepResult(error=f"{type(exc).__name__}: {exc}")


@dataclass(frozen=True, slots=True)
class StepFailure:
    """A skipped sub-step.

    Attributes:
        step: Sub-step name (e.g. ``"mask_union"``, ``"buffer"``).
        index: Index of the feature in the collection being iterated,
            or ``None`` when the step is not tied to one feature.
        reason: Error description.
    """

    step: str
    index: int | None
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return {"step": self.step, "index": self.index, "reason": self.reason}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StepFailure:
        index = data.get("index")
        return cls(
            step=str(data.get("step", "")),
            index=None if index is None else int(index),
            reason=str(data.get("reason", "")),
        )


@dataclass(frozen=True, slots=True)
class OperationOutcome:
    """Result of one operation: the output collection plus skipped steps."""

    collection: FeatureCollection = field(default_factory=FeatureCollection)
    failures: tuple[StepFailure, ...] = ()

    @property
    def failure_count(self) -> int:
        return len(self.failures)

    def to_dict(self) -> dict[str, Any]:
        """Serialise for the worker boundary."""
        return {
            "collection": self.collection.to_dict(),
            "failures": [f.to_dict() for f in self.failures],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> OperationOutcome:
        return cls(
            collection=FeatureCollection.from_dict(data["collection"]),
            failures=tuple(StepFailure.from_dict(f) for f in data.get("failures", [])),
        )
