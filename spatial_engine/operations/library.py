"""Operation dispatcher.

``run_operation`` is the single entry point into the operation library.
It is used unchanged by both execution strategies: the inline strategy
awaits it on the caller's event loop, the worker process runs it under
``asyncio.run`` with the spatial index enabled.
"""

from __future__ import annotations

import logging
from typing import assert_never

from spatial_engine.core.constants import (
    DEFAULT_MASK_YIELD_EVERY,
    DEFAULT_PROGRESS_MIN_STEP,
    DEFAULT_YIELD_EVERY,
)
from spatial_engine.models.feature import Feature, FeatureCollection
from spatial_engine.models.outcome import OperationOutcome
from spatial_engine.models.requests import (
    BufferRequest,
    ClipRequest,
    DifferenceRequest,
    IntersectionRequest,
    OperationRequest,
    PointInPolygonRequest,
    SimplifyRequest,
    UnionRequest,
)
from spatial_engine.operations._support import RunContext
from spatial_engine.operations.masking import clip, difference
from spatial_engine.operations.overlay import intersection, union
from spatial_engine.operations.progress import ProgressCallback, ProgressEmitter
from spatial_engine.operations.selection import point_in_polygon
from spatial_engine.operations.transform import buffer, simplify

logger = logging.getLogger("spatial_engine.operations.library")


async def run_operation(
    request: OperationRequest,
    *,
    on_progress: ProgressCallback | None = None,
    use_spatial_index: bool = False,
    yield_every: int = DEFAULT_YIELD_EVERY,
    mask_yield_every: int = DEFAULT_MASK_YIELD_EVERY,
    progress_min_step: int = DEFAULT_PROGRESS_MIN_STEP,
) -> OperationOutcome:
    """Execute one operation request.

    Args:
        request: Typed operation request.
        on_progress: Optional callback receiving throttled integer
            percentages; always ends with exactly one ``100``.
        use_spatial_index: Narrow intersection candidates with an STRtree.
        yield_every: Per-feature loops yield every N iterations.
        mask_yield_every: Mask-union construction yields every N features.
        progress_min_step: Minimum forwarded progress advance.

    Returns:
        The output collection plus every skipped sub-step.
    """
    ctx = RunContext(
        emit=ProgressEmitter(on_progress, min_step=progress_min_step),
        use_spatial_index=use_spatial_index,
        yield_every=yield_every,
        mask_yield_every=mask_yield_every,
    )

    features: list[Feature]
    match request:
        case BufferRequest(features=a, distance=distance, units=units):
            features = await buffer(a, units.to_metres(distance), ctx)
        case SimplifyRequest(features=a, tolerance=tolerance, high_quality=high_quality):
            features = await simplify(a, tolerance, high_quality, ctx)
        case PointInPolygonRequest(points=points, polygons=polygons):
            features = await point_in_polygon(points, polygons, ctx)
        case UnionRequest(features=a, other=b):
            features = await union(a, b, ctx)
        case IntersectionRequest(features=a, other=b):
            features = await intersection(a, b, ctx)
        case ClipRequest(features=a, mask=b):
            features = await clip(a, b, ctx)
        case DifferenceRequest(features=a, mask=b):
            features = await difference(a, b, ctx)
        case _:
            assert_never(request)

    ctx.emit.finish()
    logger.debug(
        "Operation finished | op=%s | features=%d | failures=%d | indexed=%s",
        request.kind.value,
        len(features),
        len(ctx.failures),
        use_spatial_index,
    )
    return OperationOutcome(
        collection=FeatureCollection.of(features),
        failures=tuple(ctx.failures),
    )
