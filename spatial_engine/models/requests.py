"""Typed operation requests and the loosely-typed call contract.

Each of the seven spatial operations has its own frozen request dataclass
carrying exactly the inputs and parameters it needs.  ``OperationRequest``
is the tagged union of those variants; consumers dispatch over it with an
exhaustive ``match`` so that adding a variant without handling it is a
type-checker error.

``build_request`` is the boundary used by the analysis panel and by the
worker process: it maps ``{operation, input_a, input_b?, params}`` onto a
typed variant and rejects invalid calls before any strategy dispatch.
"""

from __future__ import annotations

import enum
import math
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, ClassVar, TypeAlias, assert_never

from spatial_engine.core.constants import METRES_PER_UNIT
from spatial_engine.core.exceptions import InvalidRequestError
from spatial_engine.models.contracts import RequestPayload
from spatial_engine.models.feature import FeatureCollection

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class OperationKind(enum.Enum):
    """The seven spatial operations."""

    BUFFER = "buffer"
    SIMPLIFY = "simplify"
    POINT_IN_POLYGON = "point_in_polygon"
    UNION = "union"
    INTERSECTION = "intersection"
    CLIP = "clip"
    DIFFERENCE = "difference"

    @property
    def is_binary(self) -> bool:
        """Whether the operation needs a second input collection."""
        return self not in (OperationKind.BUFFER, OperationKind.SIMPLIFY)


# Names used by the analysis panel alongside the canonical values.
_KIND_ALIASES: dict[str, OperationKind] = {
    "pip": OperationKind.POINT_IN_POLYGON,
    "pointInPolygon": OperationKind.POINT_IN_POLYGON,
    "points_in_polygon": OperationKind.POINT_IN_POLYGON,
}


class DistanceUnit(enum.Enum):
    """Units accepted for buffer distances."""

    METERS = "meters"
    KILOMETERS = "kilometers"
    MILES = "miles"

    def to_metres(self, distance: float) -> float:
        return distance * METRES_PER_UNIT[self.value]


# ---------------------------------------------------------------------------
# Request variants
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class BufferRequest:
    """Buffer every feature of *features* by *distance* in *units*."""

    kind: ClassVar[OperationKind] = OperationKind.BUFFER

    features: FeatureCollection
    distance: float
    units: DistanceUnit = DistanceUnit.KILOMETERS

    def __post_init__(self) -> None:
        _check_collection(self.kind, "features", self.features)
        _check_finite(self.kind, "distance", self.distance)
        if not isinstance(self.units, DistanceUnit):
            msg = f"buffer units must be a DistanceUnit, got {self.units!r}"
            raise InvalidRequestError(msg, operation=self.kind.value)


@dataclass(frozen=True, slots=True)
class SimplifyRequest:
    """Reduce vertices of every feature at *tolerance* (degrees)."""

    kind: ClassVar[OperationKind] = OperationKind.SIMPLIFY

    features: FeatureCollection
    tolerance: float = 0.001
    high_quality: bool = False

    def __post_init__(self) -> None:
        _check_collection(self.kind, "features", self.features)
        _check_finite(self.kind, "tolerance", self.tolerance)
        if self.tolerance < 0:
            msg = f"simplify tolerance must be >= 0, got {self.tolerance}"
            raise InvalidRequestError(msg, operation=self.kind.value)


@dataclass(frozen=True, slots=True)
class PointInPolygonRequest:
    """Keep the points of *points* that fall inside any of *polygons*."""

    kind: ClassVar[OperationKind] = OperationKind.POINT_IN_POLYGON

    points: FeatureCollection
    polygons: FeatureCollection

    def __post_init__(self) -> None:
        _check_collection(self.kind, "points", self.points)
        _check_collection(self.kind, "polygons", self.polygons)


@dataclass(frozen=True, slots=True)
class UnionRequest:
    """Merge the polygonal features of both inputs."""

    kind: ClassVar[OperationKind] = OperationKind.UNION

    features: FeatureCollection
    other: FeatureCollection

    def __post_init__(self) -> None:
        _check_collection(self.kind, "features", self.features)
        _check_collection(self.kind, "other", self.other)


@dataclass(frozen=True, slots=True)
class IntersectionRequest:
    """Pairwise intersections between *features* and *other*."""

    kind: ClassVar[OperationKind] = OperationKind.INTERSECTION

    features: FeatureCollection
    other: FeatureCollection

    def __post_init__(self) -> None:
        _check_collection(self.kind, "features", self.features)
        _check_collection(self.kind, "other", self.other)


@dataclass(frozen=True, slots=True)
class ClipRequest:
    """Keep the parts of *features* inside *mask*."""

    kind: ClassVar[OperationKind] = OperationKind.CLIP

    features: FeatureCollection
    mask: FeatureCollection

    def __post_init__(self) -> None:
        _check_collection(self.kind, "features", self.features)
        _check_collection(self.kind, "mask", self.mask)


@dataclass(frozen=True, slots=True)
class DifferenceRequest:
    """Keep the parts of *features* outside *mask*."""

    kind: ClassVar[OperationKind] = OperationKind.DIFFERENCE

    features: FeatureCollection
    mask: FeatureCollection

    def __post_init__(self) -> None:
        _check_collection(self.kind, "features", self.features)
        _check_collection(self.kind, "mask", self.mask)


OperationRequest: TypeAlias = (
    BufferRequest
    | SimplifyRequest
    | PointInPolygonRequest
    | UnionRequest
    | IntersectionRequest
    | ClipRequest
    | DifferenceRequest
)


# ---------------------------------------------------------------------------
# Call contract
# ---------------------------------------------------------------------------


def parse_kind(operation: str | OperationKind) -> OperationKind:
    """Resolve an operation name (or alias) to an ``OperationKind``.

    Raises:
        InvalidRequestError: If the name is unknown.
    """
    if isinstance(operation, OperationKind):
        return operation
    if operation in _KIND_ALIASES:
        return _KIND_ALIASES[operation]
    try:
        return OperationKind(operation)
    except ValueError:
        available = ", ".join(k.value for k in OperationKind)
        msg = f"Unknown operation: {operation!r}. Available: {available}"
        raise InvalidRequestError(msg) from None


def build_request(
    operation: str | OperationKind,
    input_a: FeatureCollection | Mapping[str, Any] | None,
    input_b: FeatureCollection | Mapping[str, Any] | None = None,
    params: Mapping[str, Any] | None = None,
) -> OperationRequest:
    """Map a loosely-typed operation call onto a typed request variant.

    Args:
        operation: Operation name (``"buffer"``, ``"clip"``, ``"pip"``, ...).
        input_a: Primary input as a ``FeatureCollection`` or GeoJSON dict.
        input_b: Second input for binary operations.
        params: Kind-specific parameters (``distance``/``units`` for
            buffer, ``tolerance``/``high_quality`` for simplify).

    Returns:
        The typed request.

    Raises:
        InvalidRequestError: On an unknown operation, a missing input or
            a bad parameter.
        FeatureValidationError: If an input collection is malformed.
    """
    kind = parse_kind(operation)
    params = dict(params or {})

    if input_a is None:
        msg = f"{kind.value} requires an input collection"
        raise InvalidRequestError(msg, operation=kind.value)
    a = _coerce_collection(input_a)

    if kind.is_binary and input_b is None:
        msg = f"{kind.value} requires a second input collection"
        raise InvalidRequestError(msg, operation=kind.value)
    b = _coerce_collection(input_b) if input_b is not None else None

    match kind:
        case OperationKind.BUFFER:
            if "distance" not in params:
                msg = "buffer requires a 'distance' parameter"
                raise InvalidRequestError(msg, operation=kind.value)
            units_raw = params.get("units", DistanceUnit.KILOMETERS.value)
            try:
                units = DistanceUnit(units_raw)
            except ValueError:
                msg = f"Unknown buffer units: {units_raw!r}"
                raise InvalidRequestError(msg, operation=kind.value) from None
            return BufferRequest(a, _as_float(kind, "distance", params["distance"]), units)
        case OperationKind.SIMPLIFY:
            tolerance = _as_float(kind, "tolerance", params.get("tolerance", 0.001))
            high_quality = bool(params.get("high_quality", params.get("highQuality", False)))
            return SimplifyRequest(a, tolerance, high_quality)
        case OperationKind.POINT_IN_POLYGON:
            return PointInPolygonRequest(a, b)  # type: ignore[arg-type]
        case OperationKind.UNION:
            return UnionRequest(a, b)  # type: ignore[arg-type]
        case OperationKind.INTERSECTION:
            return IntersectionRequest(a, b)  # type: ignore[arg-type]
        case OperationKind.CLIP:
            return ClipRequest(a, b)  # type: ignore[arg-type]
        case OperationKind.DIFFERENCE:
            return DifferenceRequest(a, b)  # type: ignore[arg-type]
        case _:
            assert_never(kind)


def request_inputs(
    request: OperationRequest,
) -> tuple[FeatureCollection, FeatureCollection | None, dict[str, Any]]:
    """Split a request into ``(input_a, input_b, params)``."""
    match request:
        case BufferRequest(features=a, distance=distance, units=units):
            return a, None, {"distance": distance, "units": units.value}
        case SimplifyRequest(features=a, tolerance=tolerance, high_quality=hq):
            return a, None, {"tolerance": tolerance, "high_quality": hq}
        case PointInPolygonRequest(points=a, polygons=b):
            return a, b, {}
        case UnionRequest(features=a, other=b) | IntersectionRequest(features=a, other=b):
            return a, b, {}
        case ClipRequest(features=a, mask=b) | DifferenceRequest(features=a, mask=b):
            return a, b, {}
        case _:
            assert_never(request)


def request_to_payload(request: OperationRequest) -> RequestPayload:
    """Structural copy of a request for the isolation boundary."""
    a, b, params = request_inputs(request)
    return {
        "operation": request.kind.value,
        "input_a": a.to_dict(),
        "input_b": b.to_dict() if b is not None else None,
        "params": params,
    }


def request_from_payload(payload: Mapping[str, Any]) -> OperationRequest:
    """Rebuild a typed request from ``request_to_payload`` output."""
    return build_request(
        payload["operation"],
        payload["input_a"],
        payload.get("input_b"),
        payload.get("params"),
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _coerce_collection(value: FeatureCollection | Mapping[str, Any]) -> FeatureCollection:
    if isinstance(value, FeatureCollection):
        return value
    return FeatureCollection.from_dict(value)


def _as_float(kind: OperationKind, name: str, value: object) -> float:
    try:
        return float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        msg = f"{kind.value} parameter {name!r} must be a number, got {value!r}"
        raise InvalidRequestError(msg, operation=kind.value) from None


def _check_collection(kind: OperationKind, name: str, value: object) -> None:
    if value is None:
        msg = f"{kind.value} requires input {name!r}"
        raise InvalidRequestError(msg, operation=kind.value)
    if not isinstance(value, FeatureCollection):
        msg = f"{kind.value} input {name!r} must be a FeatureCollection, got {type(value).__name__}"
        raise InvalidRequestError(msg, operation=kind.value)


def _check_finite(kind: OperationKind, name: str, value: float) -> None:
    if not isinstance(value, (int, float)) or not math.isfinite(value):
        msg = f"{kind.value} parameter {name!r} must be a finite number, got {value!r}"
        raise InvalidRequestError(msg, operation=kind.value)
