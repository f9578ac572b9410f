"""Geometry normalizer shared by every operation.

Responsibilities:
- Coordinate cleaning (consecutive duplicates, redundant collinear vertices)
- Ring closure and winding (outer rings counter-clockwise, holes clockwise)
- MultiPolygon expansion into single-Polygon features
- Collection-level cleaning and property sanitising for ingestion

Normalization never aborts a collection: a feature that cannot be cleaned
is passed through unchanged by ``normalize`` (``normalize_checked`` reports
the reason instead).
"""

from __future__ import annotations

import logging
import math
from typing import Any

from shapely.geometry import LinearRing

from spatial_engine.core.constants import MAX_PROPERTY_STRING_LENGTH
from spatial_engine.models.feature import Feature, FeatureCollection
from spatial_engine.models.outcome import StepResult, attempt

logger = logging.getLogger("spatial_engine.geometry.normalize")

Position = list[float]

# A closed ring needs 3 distinct vertices plus closure.
MIN_RING_POSITIONS = 4
MIN_LINE_POSITIONS = 2

POLYGONAL_TYPES = frozenset({"Polygon", "MultiPolygon"})
LINEAL_TYPES = frozenset({"LineString", "MultiLineString"})
PUNTAL_TYPES = frozenset({"Point", "MultiPoint"})


# ---------------------------------------------------------------------------
# Type predicates
# ---------------------------------------------------------------------------


def is_polygonal(feature: Feature) -> bool:
    return feature.geometry_type in POLYGONAL_TYPES


def is_lineal(feature: Feature) -> bool:
    return feature.geometry_type in LINEAL_TYPES


def is_puntal(feature: Feature) -> bool:
    return feature.geometry_type in PUNTAL_TYPES


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def normalize_checked(feature: Feature) -> StepResult[Feature]:
    """Normalize *feature*, reporting failure instead of passing through."""
    return attempt(_normalize, feature)


def normalize(feature: Feature) -> Feature:
    """Clean coordinates and fix polygon winding.

    Returns the original feature unchanged if it cannot be normalized.
    """
    result = normalize_checked(feature)
    if not result.ok:
        logger.debug(
            "Normalization skipped | type=%s | reason=%s", feature.geometry_type, result.error
        )
        return feature
    return result.value  # type: ignore[return-value]


def split_multipolygon(feature: Feature) -> list[Feature]:
    """Expand a MultiPolygon into one Polygon feature per part.

    Every part shares the original properties.  Any other geometry type is
    returned as a single-element list.
    """
    if feature.geometry_type != "MultiPolygon":
        return [feature]
    return [
        Feature(
            geometry={"type": "Polygon", "coordinates": part},
            properties=dict(feature.properties),
        )
        for part in feature.geometry.get("coordinates") or []
    ]


def clean_collection(collection: FeatureCollection) -> FeatureCollection:
    """Drop features without usable coordinates and normalize the rest.

    Every surviving feature has non-empty, finite coordinate data.  Order
    is preserved.
    """
    out: list[Feature] = []
    for index, feature in enumerate(collection):
        if not has_usable_coordinates(feature):
            logger.debug(
                "Dropping feature without usable coordinates | index=%d | type=%s",
                index,
                feature.geometry_type,
            )
            continue
        out.append(normalize(feature))
    return FeatureCollection.of(out)


def sanitize_properties(
    collection: FeatureCollection,
    *,
    max_length: int = MAX_PROPERTY_STRING_LENGTH,
) -> FeatureCollection:
    """Return a copy of *collection* without oversized string properties."""
    out: list[Feature] = []
    for feature in collection:
        props = {
            k: v
            for k, v in feature.properties.items()
            if not (isinstance(v, str) and len(v) > max_length)
        }
        out.append(Feature(geometry=feature.geometry, properties=props))
    return FeatureCollection.of(out)


def has_usable_coordinates(feature: Feature) -> bool:
    """Whether the geometry carries at least one position, all finite."""
    positions = list(_iter_positions(feature.geometry.get("coordinates")))
    if not positions:
        return False
    return all(_is_finite_position(p) for p in positions)


# ---------------------------------------------------------------------------
# Normalization internals
# ---------------------------------------------------------------------------


def _normalize(feature: Feature) -> Feature:
    geom_type = feature.geometry_type
    coords = feature.geometry.get("coordinates")

    if geom_type == "Point":
        _require_finite([coords])
        cleaned: Any = list(coords)
    elif geom_type == "MultiPoint":
        cleaned = _dedupe_points(coords)
    elif geom_type == "LineString":
        cleaned = _clean_line(coords)
    elif geom_type == "MultiLineString":
        cleaned = [_clean_line(line) for line in coords]
    elif geom_type == "Polygon":
        cleaned = _clean_polygon(coords)
    elif geom_type == "MultiPolygon":
        cleaned = [_clean_polygon(poly) for poly in coords]
    else:
        msg = f"Unsupported geometry type {geom_type!r}"
        raise ValueError(msg)

    return feature.with_geometry({"type": geom_type, "coordinates": cleaned})


def _clean_polygon(rings: list[list[Position]]) -> list[list[Position]]:
    if not rings:
        msg = "Polygon has no rings"
        raise ValueError(msg)
    out = []
    for i, ring in enumerate(rings):
        cleaned = _clean_ring(ring)
        # Exterior counter-clockwise, holes clockwise.
        if LinearRing(cleaned).is_ccw != (i == 0):
            cleaned.reverse()
        out.append(cleaned)
    return out


def _clean_ring(ring: list[Position]) -> list[Position]:
    _require_finite(ring)
    positions = _drop_repeats(ring)
    if len(positions) > 1 and _same(positions[0], positions[-1]):
        positions = positions[:-1]

    # Remove redundant vertices cyclically so the seam is treated like any
    # other vertex.
    changed = True
    while changed and len(positions) > 3:
        changed = False
        for i in range(len(positions)):
            prev = positions[i - 1]
            nxt = positions[(i + 1) % len(positions)]
            if _is_redundant(prev, positions[i], nxt):
                del positions[i]
                changed = True
                break

    if len(positions) < MIN_RING_POSITIONS - 1:
        msg = f"Degenerate ring with {len(positions)} distinct vertices"
        raise ValueError(msg)
    return [*positions, list(positions[0])]


def _clean_line(line: list[Position]) -> list[Position]:
    _require_finite(line)
    positions = _drop_repeats(line)
    if len(positions) < MIN_LINE_POSITIONS:
        msg = f"Degenerate line with {len(positions)} distinct vertices"
        raise ValueError(msg)
    out = [positions[0]]
    for i in range(1, len(positions) - 1):
        if not _is_redundant(out[-1], positions[i], positions[i + 1]):
            out.append(positions[i])
    out.append(positions[-1])
    return out


def _dedupe_points(points: list[Position]) -> list[Position]:
    _require_finite(points)
    seen: set[tuple[float, ...]] = set()
    out = []
    for p in points:
        key = tuple(p)
        if key not in seen:
            seen.add(key)
            out.append(list(p))
    if not out:
        msg = "MultiPoint has no positions"
        raise ValueError(msg)
    return out


def _drop_repeats(positions: list[Position]) -> list[Position]:
    out: list[Position] = []
    for p in positions:
        if not out or not _same(out[-1], p):
            out.append(list(p))
    return out


def _same(a: Position, b: Position) -> bool:
    return a[0] == b[0] and a[1] == b[1]


def _is_redundant(prev: Position, mid: Position, nxt: Position) -> bool:
    """Whether *mid* lies on the segment ``prev → nxt``."""
    cross = (mid[0] - prev[0]) * (nxt[1] - prev[1]) - (mid[1] - prev[1]) * (nxt[0] - prev[0])
    if cross != 0:
        return False
    return min(prev[0], nxt[0]) <= mid[0] <= max(prev[0], nxt[0]) and min(
        prev[1], nxt[1]
    ) <= mid[1] <= max(prev[1], nxt[1])


def _require_finite(positions: list[Position]) -> None:
    if not positions:
        msg = "Empty coordinate sequence"
        raise ValueError(msg)
    for p in positions:
        if not _is_finite_position(p):
            msg = f"Invalid position {p!r}"
            raise ValueError(msg)


def _is_finite_position(p: object) -> bool:
    if not isinstance(p, (list, tuple)) or len(p) < 2:
        return False
    return all(
        isinstance(v, (int, float)) and not isinstance(v, bool) and math.isfinite(v) for v in p
    )


def _iter_positions(coords: object):  # noqa: ANN202
    """Yield every position (innermost coordinate list) in *coords*."""
    if not isinstance(coords, (list, tuple)) or not coords:
        return
    if not isinstance(coords[0], (list, tuple)):
        yield coords
        return
    for item in coords:
        yield from _iter_positions(item)
