"""Shapely building blocks shared by the overlay and masking operations.

Each helper is one sub-step: it either returns a value or raises a
geometry error that the caller captures with ``attempt``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import shapely
from shapely.ops import split, unary_union

if TYPE_CHECKING:
    from shapely.geometry.base import BaseGeometry


def keep_dimension(geom: BaseGeometry, dim: int) -> BaseGeometry | None:
    """Reduce an overlay result to its components of dimension *dim*.

    Overlays of touching inputs yield lower-dimensional debris (points,
    lines, mixed collections).  Returns ``None`` when nothing of the
    requested dimension remains.
    """
    if geom.is_empty:
        return None
    if geom.geom_type != "GeometryCollection":
        return geom if shapely.get_dimensions(geom) == dim else None
    kept = [g for g in geom.geoms if not g.is_empty and shapely.get_dimensions(g) == dim]
    if not kept:
        return None
    if len(kept) == 1:
        return kept[0]
    return unary_union(kept)


def union_step(acc: BaseGeometry | None, geom: BaseGeometry) -> BaseGeometry:
    """One step of a left fold union; the first step adopts *geom*."""
    if acc is None:
        return geom
    return acc.union(geom)


def overlap(a: BaseGeometry, b: BaseGeometry) -> BaseGeometry | None:
    """Exact intersection of *a* and *b*, or ``None`` when they do not overlap.

    The result keeps only components of the lower input dimension.
    """
    if not a.intersects(b):
        return None
    dim = min(shapely.get_dimensions(a), shapely.get_dimensions(b))
    return keep_dimension(a.intersection(b), dim)


def polygon_difference(a: BaseGeometry, b: BaseGeometry) -> BaseGeometry | None:
    """Polygonal remainder of ``a - b``, or ``None`` when nothing remains."""
    return keep_dimension(a.difference(b), 2)


def split_segments(line: BaseGeometry, splitter: BaseGeometry) -> list[BaseGeometry]:
    """Split *line* at every crossing of *splitter*'s boundary.

    Each returned segment lies wholly inside or wholly outside the
    splitter polygon (up to floating point at the cut points).
    """
    pieces = split(line, splitter.boundary)
    return [p for p in pieces.geoms if not p.is_empty and p.length > 0]


def segment_inside(segment: BaseGeometry, polygon: BaseGeometry) -> bool:
    """Whether a split segment lies inside *polygon*.

    Split segments never cross the boundary, so the segment midpoint
    decides; this avoids false negatives from cut points that land a hair
    outside the boundary.
    """
    if segment.within(polygon):
        return True
    return polygon.contains(segment.interpolate(0.5, normalized=True))


def polygon_intersection(a: BaseGeometry, b: BaseGeometry) -> BaseGeometry | None:
    """Polygonal part of ``a & b``, or ``None`` when nothing remains."""
    return keep_dimension(a.intersection(b), 2)
