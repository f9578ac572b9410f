"""Binary overlays: union and intersection."""

from __future__ import annotations

from typing import TYPE_CHECKING

from shapely import STRtree

from spatial_engine.geometry.normalize import is_polygonal, normalize
from spatial_engine.models.feature import Feature
from spatial_engine.models.outcome import attempt
from spatial_engine.operations._geom import overlap, union_step

if TYPE_CHECKING:
    from shapely.geometry.base import BaseGeometry

    from spatial_engine.models.feature import FeatureCollection
    from spatial_engine.operations._support import RunContext


async def union(
    features: FeatureCollection, other: FeatureCollection, ctx: RunContext
) -> list[Feature]:
    """Merge every polygonal feature of both inputs into one feature.

    Left fold from the first polygon.  A pairwise step that fails is
    skipped and the accumulator is kept unchanged.  Either input being
    empty yields an empty result.
    """
    if not len(features) or not len(other):
        return []

    polygons = [f for f in (*features, *other) if is_polygonal(f)]
    acc: BaseGeometry | None = None
    last = len(polygons) - 1
    for i, feature in enumerate(polygons):
        result = attempt(lambda a, f: union_step(a, f.shape()), acc, feature)
        if result.ok:
            acc = result.value
        else:
            ctx.record("union", i, result.error)
        if i > 0:
            ctx.emit.fraction(i, last)
        await ctx.checkpoint(i, ctx.mask_yield_every)

    if acc is None or acc.is_empty:
        return []
    return [normalize(Feature.from_shape(acc))]


async def intersection(
    features: FeatureCollection, other: FeatureCollection, ctx: RunContext
) -> list[Feature]:
    """Pairwise intersections of every feature of *features* with *other*.

    With ``ctx.use_spatial_index`` the candidates for each feature are the
    members of *other* whose bounding boxes overlap it (STRtree query);
    otherwise every member of *other* is a candidate.  Pairs whose exact
    intersection is empty (or only touches at lower dimension) are skipped.
    Output features carry the properties of the *features* member.
    """
    if not len(features) or not len(other):
        return []

    candidates: list[BaseGeometry] = []
    for j, feature in enumerate(other):
        shaped = attempt(feature.shape)
        if shaped.ok:
            candidates.append(shaped.value)  # type: ignore[arg-type]
        else:
            ctx.record("intersection_input", j, shaped.error)

    tree = STRtree(candidates) if ctx.use_spatial_index and candidates else None

    out: list[Feature] = []
    total = len(features)
    for i, feature in enumerate(features):
        shaped = attempt(feature.shape)
        if not shaped.ok:
            ctx.record("intersection", i, shaped.error)
        else:
            geom = shaped.value
            if tree is None:
                pool = candidates
            else:
                pool = [candidates[k] for k in sorted(tree.query(geom))]
            for candidate in pool:
                result = attempt(overlap, geom, candidate)
                if not result.ok:
                    ctx.record("intersection", i, result.error)
                elif result.value is not None:
                    out.append(normalize(Feature.from_shape(result.value, feature.properties)))
        ctx.emit.fraction(i + 1, total)
        await ctx.checkpoint(i)
    return out
