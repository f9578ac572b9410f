"""ExecutionStrategy abstract base class.

Defines the contract that both execution strategies implement.  The
execution service interacts exclusively with this interface: it never
knows (or cares) whether an operation runs in a worker process or inline
on the caller's event loop.

Lifecycle:
    1. ``ping()``: lightweight health check, returns ``HEALTH_ACK``.
    2. ``call(request, on_progress)``: run one operation.
    3. ``close()``: release the strategy's resources (best effort).
"""

from __future__ import annotations

import abc
import enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from spatial_engine.models.outcome import OperationOutcome
    from spatial_engine.models.requests import OperationRequest
    from spatial_engine.operations.progress import ProgressCallback


class ExecutionMode(enum.Enum):
    """Which strategy is currently serving calls."""

    ISOLATED = "isolated"
    INLINE = "inline"


class ExecutionStrategy(abc.ABC):
    """Abstract base class for execution strategies."""

    #: Mode served by the concrete strategy.
    mode: ExecutionMode

    @abc.abstractmethod
    async def ping(self) -> str:
        """Round-trip a no-op call.

        Returns:
            ``HEALTH_ACK`` when the strategy is responsive.

        Raises:
            EngineError: If the strategy cannot be reached.
        """

    @abc.abstractmethod
    async def call(
        self,
        request: OperationRequest,
        on_progress: ProgressCallback | None = None,
    ) -> OperationOutcome:
        """Run *request* and return its outcome.

        Args:
            request: Typed operation request.
            on_progress: Optional callback receiving throttled percentages.

        Raises:
            EngineError: On transport failures or errors reported by the
                strategy.  Per-feature geometry errors are never raised;
                they are recorded in the outcome.
        """

    def close(self) -> None:  # noqa: B027 - optional hook
        """Release resources.  Never raises."""
