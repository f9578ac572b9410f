"""Inline execution strategy.

Runs operations directly on the caller's event loop.  The operation
library yields to the loop every few iterations, so other pending work
keeps running while a large operation is in progress.  Inline calls are
not subject to the isolated-call timeout.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from spatial_engine.core.config import EngineConfig
from spatial_engine.core.constants import HEALTH_ACK
from spatial_engine.execution.base import ExecutionMode, ExecutionStrategy
from spatial_engine.operations.library import run_operation

if TYPE_CHECKING:
    from spatial_engine.models.outcome import OperationOutcome
    from spatial_engine.models.requests import OperationRequest
    from spatial_engine.operations.progress import ProgressCallback


class InlineStrategy(ExecutionStrategy):
    """Cooperative in-process execution without a spatial index."""

    mode = ExecutionMode.INLINE

    def __init__(self, config: EngineConfig | None = None) -> None:
        self._config = config or EngineConfig()

    async def ping(self) -> str:
        return HEALTH_ACK

    async def call(
        self,
        request: OperationRequest,
        on_progress: ProgressCallback | None = None,
    ) -> OperationOutcome:
        return await run_operation(
            request,
            on_progress=on_progress,
            use_spatial_index=False,
            yield_every=self._config.yield_every,
            mask_yield_every=self._config.mask_yield_every,
            progress_min_step=self._config.progress_min_step,
        )
