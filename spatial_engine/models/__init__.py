"""Data models and schemas.

Defines the data structures used throughout the engine:
- Feature / FeatureCollection: GeoJSON-style geometry plus attributes
- OperationRequest: Tagged union of the seven typed operation requests
- OperationOutcome / StepFailure: Results with explicit skipped-step records
- OperationReport: Pydantic summary published to result subscribers
"""

from spatial_engine.models.feature import Feature, FeatureCollection
from spatial_engine.models.outcome import OperationOutcome, StepFailure, StepResult
from spatial_engine.models.report import OperationReport
from spatial_engine.models.requests import (
    BufferRequest,
    ClipRequest,
    DifferenceRequest,
    DistanceUnit,
    IntersectionRequest,
    OperationKind,
    OperationRequest,
    PointInPolygonRequest,
    SimplifyRequest,
    UnionRequest,
    build_request,
)

__all__ = [
    "BufferRequest",
    "ClipRequest",
    "DifferenceRequest",
    "DistanceUnit",
    "Feature",
    "FeatureCollection",
    "IntersectionRequest",
    "OperationKind",
    "OperationOutcome",
    "OperationReport",
    "OperationRequest",
    "PointInPolygonRequest",
    "SimplifyRequest",
    "StepFailure",
    "StepResult",
    "UnionRequest",
    "build_request",
]
