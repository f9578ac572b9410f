"""Mask-based operations: clip and difference.

Both operations first merge the mask collection into a single mask
geometry (``build_mask``) and then walk the primary collection,
handling polygonal, lineal and point features separately.

``difference`` keeps the source behaviour of conservative retention: a
polygon whose subtraction cannot be computed is kept whole unless it is
contained in the mask.  This can over-retain features that partially
overlap the mask when the exact difference fails; that approximation is
intentional and documented.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from spatial_engine.geometry.normalize import (
    is_lineal,
    is_polygonal,
    is_puntal,
    normalize,
    split_multipolygon,
)
from spatial_engine.models.feature import Feature
from spatial_engine.models.outcome import attempt
from spatial_engine.operations._geom import (
    polygon_difference,
    polygon_intersection,
    segment_inside,
    split_segments,
    union_step,
)

if TYPE_CHECKING:
    from shapely.geometry.base import BaseGeometry

    from spatial_engine.models.feature import FeatureCollection
    from spatial_engine.operations._support import RunContext


@dataclass(frozen=True, slots=True)
class Mask:
    """Prepared mask: each usable mask polygon plus their union."""

    parts: tuple[BaseGeometry, ...]
    union: BaseGeometry | None


# ---------------------------------------------------------------------------
# Mask union
# ---------------------------------------------------------------------------


async def build_mask(mask: FeatureCollection, ctx: RunContext) -> Mask:
    """Normalize the mask features and merge them incrementally.

    Starts from the first usable mask polygon and unions in each subsequent
    one, yielding to the event loop every ``ctx.mask_yield_every`` features.
    A failing union step is recorded and skipped: the accumulator is kept
    and the failing feature contributes nothing to the union.  Non-polygonal
    mask features are recorded and ignored.
    """
    parts: list[BaseGeometry] = []
    acc: BaseGeometry | None = None
    for j, feature in enumerate(mask):
        if not is_polygonal(feature):
            ctx.record("mask", j, f"mask feature is {feature.geometry_type}, not polygonal")
        else:
            shaped = attempt(lambda f: normalize(f).shape(), feature)
            if not shaped.ok:
                ctx.record("mask", j, shaped.error)
            else:
                parts.append(shaped.value)  # type: ignore[arg-type]
                merged = attempt(union_step, acc, shaped.value)
                if merged.ok:
                    acc = merged.value
                else:
                    ctx.record("mask_union", j, merged.error)
        await ctx.checkpoint(j, ctx.mask_yield_every)

    if acc is not None and acc.is_empty:
        acc = None
    return Mask(parts=tuple(parts), union=acc)


# ---------------------------------------------------------------------------
# Clip
# ---------------------------------------------------------------------------


async def clip(
    features: FeatureCollection, mask_fc: FeatureCollection, ctx: RunContext
) -> list[Feature]:
    """Keep the parts of *features* that lie inside the mask.

    - Polygons are split into single parts; each part is intersected with
      the mask union, falling back to the union of its intersections with
      each mask polygon, then to a containment test.  Parts with none of
      these are outside the mask and dropped.
    - Lines are split at the mask union's boundary and the segments inside
      are kept, so overlapping mask polygons never duplicate a segment.
      Without a usable union each mask polygon is tried in turn.
    - Points are kept when covered by any mask polygon.
    """
    if not len(features) or not len(mask_fc):
        return []

    mask = await build_mask(mask_fc, ctx)

    out: list[Feature] = []
    total = len(features)
    for i, feature in enumerate(features):
        norm = normalize(feature)
        if is_polygonal(norm):
            for part in split_multipolygon(norm):
                clipped = _clip_polygon(part, mask, ctx, i)
                if clipped is not None:
                    out.append(normalize(Feature.from_shape(clipped, part.properties)))
        elif is_lineal(norm):
            out.extend(_clip_line(norm, mask, ctx, i))
        elif is_puntal(norm):
            covered = attempt(_covered_by_any, norm, mask.parts)
            if not covered.ok:
                ctx.record("clip", i, covered.error)
            elif covered.value:
                out.append(norm)
        ctx.emit.fraction(i + 1, total)
        await ctx.checkpoint(i)
    return out


def _clip_polygon(part: Feature, mask: Mask, ctx: RunContext, index: int) -> BaseGeometry | None:
    shaped = attempt(part.shape)
    if not shaped.ok:
        ctx.record("clip", index, shaped.error)
        return None
    geom = shaped.value

    inter: BaseGeometry | None = None
    if mask.union is not None:
        result = attempt(polygon_intersection, geom, mask.union)
        if result.ok:
            inter = result.value
        else:
            ctx.record("clip_intersection", index, result.error)

    if inter is None:
        for mask_part in mask.parts:
            piece = attempt(polygon_intersection, geom, mask_part)
            if not piece.ok:
                ctx.record("clip_intersection", index, piece.error)
                continue
            if piece.value is None:
                continue
            merged = attempt(union_step, inter, piece.value)
            if merged.ok:
                inter = merged.value
            else:
                ctx.record("clip_union", index, merged.error)

    if inter is None:
        contained = attempt(_within_mask, geom, mask)
        if not contained.ok:
            ctx.record("clip_containment", index, contained.error)
        elif contained.value:
            inter = geom

    return inter


def _clip_line(feature: Feature, mask: Mask, ctx: RunContext, index: int) -> list[Feature]:
    shaped = attempt(feature.shape)
    if not shaped.ok:
        ctx.record("clip", index, shaped.error)
        return []
    def inside(g: BaseGeometry, m: BaseGeometry) -> list[BaseGeometry]:
        return [s for s in split_segments(g, m) if segment_inside(s, m)]

    if mask.union is not None:
        segments = attempt(inside, shaped.value, mask.union)
        if segments.ok:
            return [Feature.from_shape(s, feature.properties) for s in segments.value]
        ctx.record("clip_split", index, segments.error)

    # Per-part fallback; overlapping mask parts may each keep the same segment.
    out: list[Feature] = []
    for mask_part in mask.parts:
        segments = attempt(inside, shaped.value, mask_part)
        if not segments.ok:
            ctx.record("clip_split", index, segments.error)
            continue
        out.extend(Feature.from_shape(s, feature.properties) for s in segments.value)
    return out


def _covered_by_any(feature: Feature, parts: tuple[BaseGeometry, ...]) -> bool:
    geom = feature.shape()
    return any(m.covers(geom) for m in parts)


def _within_mask(geom: BaseGeometry, mask: Mask) -> bool:
    if mask.union is not None and geom.within(mask.union):
        return True
    return any(geom.within(m) for m in mask.parts)


# ---------------------------------------------------------------------------
# Difference
# ---------------------------------------------------------------------------


async def difference(
    features: FeatureCollection, mask_fc: FeatureCollection, ctx: RunContext
) -> list[Feature]:
    """Keep the parts of *features* that lie outside the mask.

    - Polygons have the mask union subtracted; they are kept whole when
      there is no mask, or when the subtraction yields nothing and the
      polygon is not contained in the mask (conservative retention).
    - Lines are split at the mask boundary; segments outside are kept.  A
      line that cannot be split is kept whole.
    - Points are kept when not covered by the mask.
    """
    if not len(features):
        return []

    mask = await build_mask(mask_fc, ctx)

    out: list[Feature] = []
    total = len(features)
    for i, feature in enumerate(features):
        norm = normalize(feature)
        shaped = attempt(norm.shape)
        if not shaped.ok:
            ctx.record("difference", i, shaped.error)
        elif is_polygonal(norm):
            remainder = _difference_polygon(shaped.value, mask, ctx, i)
            if remainder is not None:
                out.append(normalize(Feature.from_shape(remainder, norm.properties)))
        elif is_lineal(norm):
            out.extend(_difference_line(norm, shaped.value, mask, ctx, i))
        elif is_puntal(norm):
            inside = False
            if mask.union is not None:
                covered = attempt(mask.union.covers, shaped.value)
                if covered.ok:
                    inside = bool(covered.value)
                else:
                    ctx.record("difference", i, covered.error)
            if not inside:
                out.append(norm)
        ctx.emit.fraction(i + 1, total)
        await ctx.checkpoint(i)
    return out


def _difference_polygon(
    geom: BaseGeometry, mask: Mask, ctx: RunContext, index: int
) -> BaseGeometry | None:
    if mask.union is None:
        return geom

    result = attempt(polygon_difference, geom, mask.union)
    if result.ok and result.value is not None:
        return result.value
    if not result.ok:
        ctx.record("difference", index, result.error)

    contained = attempt(geom.within, mask.union)
    if not contained.ok:
        ctx.record("difference_containment", index, contained.error)
        return None
    return None if contained.value else geom


def _difference_line(
    feature: Feature, geom: BaseGeometry, mask: Mask, ctx: RunContext, index: int
) -> list[Feature]:
    if mask.union is None:
        return [feature]
    segments = attempt(
        lambda g, m: [s for s in split_segments(g, m) if not segment_inside(s, m)],
        geom,
        mask.union,
    )
    if not segments.ok:
        ctx.record("difference_split", index, segments.error)
        return [feature]
    return [Feature.from_shape(s, feature.properties) for s in segments.value]
