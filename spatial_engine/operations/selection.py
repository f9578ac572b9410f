"""Point-in-polygon selection."""

from __future__ import annotations

from typing import TYPE_CHECKING

from shapely.prepared import prep

from spatial_engine.geometry.normalize import is_polygonal, is_puntal, normalize
from spatial_engine.models.outcome import attempt

if TYPE_CHECKING:
    from shapely.prepared import PreparedGeometry

    from spatial_engine.models.feature import Feature, FeatureCollection
    from spatial_engine.operations._support import RunContext


async def point_in_polygon(
    points: FeatureCollection, polygons: FeatureCollection, ctx: RunContext
) -> list[Feature]:
    """Keep every point feature that lies inside (or on) any mask polygon.

    Each point is tested against the mask polygons in order and the test
    stops at the first match.  Points matching no polygon are dropped;
    non-point features are skipped and recorded.
    """
    masks: list[PreparedGeometry] = []
    for j, feature in enumerate(polygons):
        if not is_polygonal(feature):
            ctx.record("mask", j, f"mask feature is {feature.geometry_type}, not polygonal")
            continue
        result = attempt(lambda f: prep(normalize(f).shape()), feature)
        if result.ok:
            masks.append(result.value)  # type: ignore[arg-type]
        else:
            ctx.record("mask", j, result.error)

    out: list[Feature] = []
    total = len(points)
    for i, feature in enumerate(points):
        if not is_puntal(feature):
            ctx.record("point_in_polygon", i, f"{feature.geometry_type} is not a point")
        else:
            shaped = attempt(feature.shape)
            if not shaped.ok:
                ctx.record("point_in_polygon", i, shaped.error)
            else:
                for mask in masks:
                    hit = attempt(mask.covers, shaped.value)
                    if not hit.ok:
                        ctx.record("point_in_polygon", i, hit.error)
                    elif hit.value:
                        out.append(feature)
                        break
        ctx.emit.fraction(i, total - 1)
        await ctx.checkpoint(i)
    return out
