"""Data model for GeoJSON-style features and feature collections.

A Feature is a single geometry plus an open-ended property mapping.  The
geometry is kept as a GeoJSON geometry mapping (``{"type": ..., "coordinates":
...}``) so that collections cross the isolation boundary as plain
structural data; ``shape()`` converts to a shapely geometry on demand.

The engine treats features as immutable: operations always derive new
Feature instances and never modify the input mappings.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from spatial_engine.core.exceptions import FeatureValidationError

if TYPE_CHECKING:
    from shapely.geometry.base import BaseGeometry

GEOMETRY_TYPES = frozenset(
    {
        "Point",
        "LineString",
        "Polygon",
        "MultiPoint",
        "MultiLineString",
        "MultiPolygon",
    }
)


def as_lists(value: Any) -> Any:
    """Recursively convert tuples in a coordinate structure to lists."""
    if isinstance(value, (list, tuple)):
        return [as_lists(v) for v in value]
    return value


@dataclass(frozen=True, slots=True)
class Feature:
    """A single geometry plus attributes.

    Attributes:
        geometry: GeoJSON geometry mapping with ``type`` and ``coordinates``.
        properties: Arbitrary key-value attributes carried through operations.
    """

    geometry: dict[str, Any]
    properties: dict[str, Any] = field(default_factory=dict)

    @property
    def geometry_type(self) -> str:
        """GeoJSON geometry type name (e.g. ``"Polygon"``)."""
        return str(self.geometry.get("type", ""))

    def shape(self) -> BaseGeometry:
        """Return the geometry as a shapely object."""
        from shapely.geometry import shape

        return shape(self.geometry)

    @classmethod
    def from_shape(
        cls, geom: BaseGeometry, properties: Mapping[str, Any] | None = None
    ) -> Feature:
        """Build a Feature from a shapely geometry and optional properties."""
        from shapely.geometry import mapping

        raw = mapping(geom)
        geometry = {"type": raw["type"], "coordinates": as_lists(raw["coordinates"])}
        return cls(geometry=geometry, properties=dict(properties or {}))

    def with_geometry(self, geometry: dict[str, Any]) -> Feature:
        """Return a copy of this feature carrying *geometry*."""
        return Feature(geometry=geometry, properties=dict(self.properties))

    def to_dict(self) -> dict[str, Any]:
        """Serialise to a GeoJSON Feature dict."""
        return {
            "type": "Feature",
            "geometry": {
                "type": self.geometry_type,
                "coordinates": as_lists(self.geometry.get("coordinates", [])),
            },
            "properties": dict(self.properties),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Feature:
        """Deserialise from a GeoJSON Feature dict.

        Raises:
            FeatureValidationError: If the geometry is missing, has an
                unsupported type, or carries no coordinate array.
        """
        if not isinstance(data, Mapping):
            msg = f"Feature must be a mapping, got {type(data).__name__}"
            raise FeatureValidationError(msg)

        geometry = data.get("geometry")
        if not isinstance(geometry, Mapping):
            msg = "Feature has no geometry"
            raise FeatureValidationError(msg)

        geom_type = geometry.get("type")
        if geom_type not in GEOMETRY_TYPES:
            msg = f"Unsupported geometry type {geom_type!r}"
            raise FeatureValidationError(msg)

        coordinates = geometry.get("coordinates")
        if not isinstance(coordinates, (list, tuple)):
            msg = f"{geom_type} geometry has no coordinate array"
            raise FeatureValidationError(msg)

        properties = data.get("properties") or {}
        if not isinstance(properties, Mapping):
            msg = f"properties must be a mapping, got {type(properties).__name__}"
            raise FeatureValidationError(msg)

        return cls(
            geometry={"type": geom_type, "coordinates": as_lists(coordinates)},
            properties=dict(properties),
        )


@dataclass(frozen=True, slots=True)
class FeatureCollection:
    """An ordered group of Features."""

    features: tuple[Feature, ...] = ()

    def __len__(self) -> int:
        return len(self.features)

    def __iter__(self) -> Iterator[Feature]:
        return iter(self.features)

    def __getitem__(self, index: int) -> Feature:
        return self.features[index]

    @classmethod
    def of(cls, features: list[Feature] | tuple[Feature, ...]) -> FeatureCollection:
        """Build a collection from any sequence of features."""
        return cls(features=tuple(features))

    def bbox(self) -> tuple[float, float, float, float] | None:
        """Bounding box ``(minx, miny, maxx, maxy)`` or ``None`` when empty."""
        from shapely.errors import ShapelyError

        bounds = []
        for feature in self.features:
            try:
                b = feature.shape().bounds
            except (ShapelyError, ValueError, TypeError, IndexError):
                continue
            # Empty geometries report NaN bounds.
            if b and all(v == v for v in b):
                bounds.append(b)
        if not bounds:
            return None
        return (
            min(b[0] for b in bounds),
            min(b[1] for b in bounds),
            max(b[2] for b in bounds),
            max(b[3] for b in bounds),
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialise to a GeoJSON FeatureCollection dict."""
        return {
            "type": "FeatureCollection",
            "features": [f.to_dict() for f in self.features],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> FeatureCollection:
        """Deserialise from a GeoJSON FeatureCollection dict.

        Raises:
            FeatureValidationError: If the payload is not a
                FeatureCollection or any feature is malformed.
        """
        if not isinstance(data, Mapping) or data.get("type") != "FeatureCollection":
            msg = "Expected a GeoJSON FeatureCollection"
            raise FeatureValidationError(msg)

        raw_features = data.get("features", [])
        if not isinstance(raw_features, (list, tuple)):
            msg = f"features must be a list, got {type(raw_features).__name__}"
            raise FeatureValidationError(msg)

        return cls(features=tuple(Feature.from_dict(f) for f in raw_features))
