"""Pydantic report published to result subscribers.

After every successful operation the execution service publishes an
``OperationReport`` to the listeners registered with
``SpatialService.subscribe``.  The report carries what a UI needs to react
to a result (fit the view to ``bbox``, show a partial-failure badge) without
the engine reaching into any ambient global state.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

# Schema version for forward compatibility
SCHEMA_VERSION = "operation-report-v1"


class OperationReport(BaseModel):
    """Summary of one completed operation.

    Attributes:
        operation: Operation kind value (e.g. ``"clip"``).
        mode: Execution mode that produced the result
            (``"isolated"`` or ``"inline"``).
        feature_count: Number of features in the result collection.
        failure_count: Number of skipped geometry sub-steps.
        failures: Human-readable description of each skipped sub-step.
        bbox: Result bounding box ``[minx, miny, maxx, maxy]``, or ``None``
            for an empty result.
        duration_s: Wall-clock duration of the call in seconds.
    """

    schema_version: str = SCHEMA_VERSION
    operation: str
    mode: str
    feature_count: int = 0
    failure_count: int = 0
    failures: list[str] = Field(default_factory=list)
    bbox: list[float] | None = None
    duration_s: float = 0.0
