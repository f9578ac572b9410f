"""Per-run state shared by the operation implementations."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from spatial_engine.core.constants import DEFAULT_MASK_YIELD_EVERY, DEFAULT_YIELD_EVERY
from spatial_engine.models.outcome import StepFailure

if TYPE_CHECKING:
    from spatial_engine.operations.progress import ProgressEmitter

logger = logging.getLogger("spatial_engine.operations")


@dataclass
class RunContext:
    """Mutable state for one operation run.

    Attributes:
        emit: Progress emitter for this run.
        use_spatial_index: Narrow pairwise candidates with an STRtree.
        yield_every: Per-feature loops yield every N iterations.
        mask_yield_every: Mask-union construction yields every N features.
        failures: Sub-steps skipped so far.
    """

    emit: ProgressEmitter
    use_spatial_index: bool = False
    yield_every: int = DEFAULT_YIELD_EVERY
    mask_yield_every: int = DEFAULT_MASK_YIELD_EVERY
    failures: list[StepFailure] = field(default_factory=list)

    def record(self, step: str, index: int | None, reason: str) -> None:
        """Record a skipped sub-step."""
        logger.debug("Step skipped | step=%s | index=%s | reason=%s", step, index, reason)
        self.failures.append(StepFailure(step=step, index=index, reason=reason))

    async def checkpoint(self, index: int, every: int | None = None) -> None:
        """Yield to the event loop every *every* iterations.

        Keeps the host loop responsive while a long operation runs inline.
        """
        if index % (every or self.yield_every) == 0:
            await asyncio.sleep(0)
