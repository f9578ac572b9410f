"""Per-feature transforms: buffer and simplify.

Both operations map each input feature to at most one output feature and
never look at other features, so a failure on one feature only affects
that feature.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from spatial_engine.geometry.normalize import normalize
from spatial_engine.geometry.projection import buffer_metres
from spatial_engine.models.feature import Feature, FeatureCollection
from spatial_engine.models.outcome import attempt

if TYPE_CHECKING:
    from spatial_engine.operations._support import RunContext


async def buffer(
    features: FeatureCollection, distance_m: float, ctx: RunContext
) -> list[Feature]:
    """Buffer every feature by *distance_m* metres.

    Features whose buffer fails or comes out empty (e.g. a polygon shrunk
    past nothing) are skipped and recorded.
    """
    out: list[Feature] = []
    total = len(features)
    for i, feature in enumerate(features):
        result = attempt(_buffer_feature, feature, distance_m)
        if not result.ok:
            ctx.record("buffer", i, result.error)
        elif result.value is None:
            ctx.record("buffer", i, "buffer produced an empty geometry")
        else:
            out.append(result.value)
        ctx.emit.fraction(i, total - 1)
        await ctx.checkpoint(i)
    return out


def _buffer_feature(feature: Feature, distance_m: float) -> Feature | None:
    buffered = buffer_metres(feature.shape(), distance_m)
    if buffered.is_empty:
        return None
    return normalize(Feature.from_shape(buffered, feature.properties))


async def simplify(
    features: FeatureCollection,
    tolerance: float,
    high_quality: bool,
    ctx: RunContext,
) -> list[Feature]:
    """Reduce vertices of every feature at *tolerance*.

    ``high_quality`` runs the topology-preserving simplifier directly.  The
    fast path runs plain Douglas-Peucker and falls back to the
    topology-preserving simplifier when that result is empty or invalid.
    No feature is removed: if simplification fails or collapses the
    geometry, the original feature is kept.
    """
    out: list[Feature] = []
    total = len(features)
    for i, feature in enumerate(features):
        result = attempt(_simplify_feature, feature, tolerance, high_quality)
        if not result.ok:
            ctx.record("simplify", i, result.error)
            out.append(feature)
        else:
            out.append(result.value)  # type: ignore[arg-type]
        ctx.emit.fraction(i, total - 1)
        await ctx.checkpoint(i)
    return out


def _simplify_feature(feature: Feature, tolerance: float, high_quality: bool) -> Feature:
    geom = feature.shape()
    if high_quality:
        simplified = geom.simplify(tolerance, preserve_topology=True)
    else:
        simplified = geom.simplify(tolerance, preserve_topology=False)
        if simplified.is_empty or not simplified.is_valid:
            simplified = geom.simplify(tolerance, preserve_topology=True)
    if simplified.is_empty:
        return feature
    return Feature.from_shape(simplified, feature.properties)
