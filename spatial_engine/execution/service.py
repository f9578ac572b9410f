"""Spatial execution service.

``SpatialService`` owns the execution strategy for one caller context (an
analysis panel, a map session).  It is an explicit object: callers create
it and pass it around; there is no module-level singleton.

State machine::

    Uninitialized --acquire--> IsolatedActive --health/launch failure--> InlineActive
          ^                                                                   |
          +------------------------------ reset() ----------------------------+

- ``acquire()`` runs under an ``asyncio.Lock`` so concurrent first calls
  share one worker.
- An isolated worker is health-checked before every call and replaced by
  the inline strategy when it does not answer in time.  Isolated mode is
  not retried automatically; ``reset()`` (``areset()`` from a coroutine)
  starts over.
- Isolated calls are bounded by ``call_timeout_s``; a timed-out call is
  abandoned, its late result discarded.
- Failover to inline execution is logged at WARNING once per service
  lifetime (until ``reset()``).
- After every successful call an ``OperationReport`` is published to the
  listeners registered with ``subscribe()``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from spatial_engine.core.config import EngineConfig
from spatial_engine.core.constants import HEALTH_ACK
from spatial_engine.core.exceptions import EngineError, InvalidRequestError, OperationTimeoutError
from spatial_engine.execution.base import ExecutionMode, ExecutionStrategy
from spatial_engine.execution.inline import InlineStrategy
from spatial_engine.execution.launchers import (
    LaunchAttempt,
    WorkerLauncher,
    build_launch_chain,
    supports_isolation,
)
from spatial_engine.geometry.measure import Measurement, measure
from spatial_engine.models.feature import FeatureCollection
from spatial_engine.models.outcome import OperationOutcome, StepFailure
from spatial_engine.models.report import OperationReport
from spatial_engine.models.requests import OperationRequest, build_request
from spatial_engine.operations.progress import ProgressCallback

logger = logging.getLogger("spatial_engine.execution.service")

ReportListener = Callable[[OperationReport], object]


class SpatialService:
    """Runs spatial operations in a worker process, or inline as a fallback.

    Args:
        config: Engine configuration; defaults to ``EngineConfig()``.
        launchers: Ordered launcher chain.  Defaults to the chain built
            from ``config.start_methods``.
        probe: Capability probe; defaults to ``supports_isolation``.
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        *,
        launchers: Sequence[WorkerLauncher] | None = None,
        probe: Callable[[], bool] | None = None,
    ) -> None:
        self._config = config or EngineConfig()
        self._launchers = list(launchers) if launchers is not None else None
        self._probe = probe or supports_isolation
        self._strategy: ExecutionStrategy | None = None
        self._init_lock = asyncio.Lock()
        self._warned = False
        self._listeners: list[ReportListener] = []
        self.launch_attempts: tuple[LaunchAttempt, ...] = ()

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def mode(self) -> ExecutionMode | None:
        """Active execution mode, or ``None`` before initialization."""
        return self._strategy.mode if self._strategy is not None else None

    # ------------------------------------------------------------------
    # Strategy lifecycle
    # ------------------------------------------------------------------

    async def acquire(self) -> ExecutionStrategy:
        """Return a healthy strategy, initializing or failing over as needed."""
        async with self._init_lock:
            strategy = self._strategy
            if strategy is not None and strategy.mode is ExecutionMode.ISOLATED:
                if await self._is_healthy(strategy, self._config.health_check_timeout_s):
                    return strategy
                await asyncio.to_thread(strategy.close)
                self._strategy = self._use_inline("Spatial worker did not answer its health check")
            elif strategy is None:
                self._strategy = await self._initialize()
            return self._strategy

    def reset(self) -> None:
        """Tear down the current strategy and return to the uninitialized state.

        Blocks while a worker process is joined; from a coroutine prefer
        ``areset()``.
        """
        strategy = self._detach()
        if strategy is not None:
            strategy.close()
        logger.info("Spatial service reset")

    async def areset(self) -> None:
        """Like ``reset()``, but joins the worker off the event loop."""
        async with self._init_lock:
            strategy = self._detach()
        if strategy is not None:
            await asyncio.to_thread(strategy.close)
        logger.info("Spatial service reset")

    def _detach(self) -> ExecutionStrategy | None:
        strategy, self._strategy = self._strategy, None
        self._warned = False
        self.launch_attempts = ()
        return strategy

    async def _initialize(self) -> ExecutionStrategy:
        if not self._config.isolation_enabled:
            logger.info("Isolated execution disabled by configuration | mode=inline")
            return InlineStrategy(self._config)

        try:
            supported = bool(self._probe())
        except Exception as exc:  # noqa: BLE001 - any probe failure means unsupported
            logger.debug("Isolation probe raised | error=%s", exc)
            supported = False
        if not supported:
            return self._use_inline("Isolated execution is not supported in this environment")

        launchers = self._launchers if self._launchers is not None else build_launch_chain(self._config)
        attempts: list[LaunchAttempt] = []
        for launcher in launchers:
            attempt = await asyncio.to_thread(launcher.launch)
            if attempt.strategy is None:
                logger.debug(
                    "Worker launch failed | launcher=%s | reason=%s", attempt.launcher, attempt.reason
                )
                attempts.append(attempt)
                continue

            strategy = attempt.strategy
            if await self._is_healthy(strategy, self._config.startup_timeout_s):
                attempts.append(attempt)
                self.launch_attempts = tuple(attempts)
                logger.info("Isolated execution active | launcher=%s", attempt.launcher)
                return strategy

            await asyncio.to_thread(strategy.close)
            attempts.append(LaunchAttempt(attempt.launcher, reason="health check failed"))
            logger.debug("Worker failed its first health check | launcher=%s", attempt.launcher)

        self.launch_attempts = tuple(attempts)
        reasons = "; ".join(f"{a.launcher}: {a.reason}" for a in attempts) or "no launchers available"
        return self._use_inline(f"Spatial worker could not be started ({reasons})")

    def _use_inline(self, reason: str) -> InlineStrategy:
        if not self._warned:
            logger.warning("%s; falling back to inline execution", reason)
            self._warned = True
        else:
            logger.debug("%s; falling back to inline execution", reason)
        return InlineStrategy(self._config)

    @staticmethod
    async def _is_healthy(strategy: ExecutionStrategy, timeout: float) -> bool:
        try:
            token = await asyncio.wait_for(strategy.ping(), timeout=timeout)
        except TimeoutError:
            logger.debug("Health check timed out | timeout=%.1fs", timeout)
            return False
        except EngineError as exc:
            logger.debug("Health check failed | error=%s", exc)
            return False
        return token == HEALTH_ACK

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def run(
        self,
        request: OperationRequest,
        on_progress: ProgressCallback | None = None,
    ) -> OperationOutcome:
        """Execute *request* and return the outcome with its failure records.

        Raises:
            InvalidRequestError: If *request* is not a typed request.
            OperationTimeoutError: If an isolated call exceeds its timeout.
            EngineError: On other strategy failures.
        """
        if not isinstance(request, OperationRequest):
            msg = f"Expected an operation request, got {type(request).__name__}"
            raise InvalidRequestError(msg)

        strategy = await self.acquire()
        operation = request.kind.value
        started = time.perf_counter()

        if strategy.mode is ExecutionMode.ISOLATED:
            timeout = self._config.call_timeout_s
            try:
                outcome = await asyncio.wait_for(strategy.call(request, on_progress), timeout=timeout)
            except TimeoutError as exc:
                logger.warning("Operation timed out | op=%s | timeout=%.1fs", operation, timeout)
                msg = f"Spatial operation {operation!r} timed out after {timeout:g} s"
                raise OperationTimeoutError(msg, operation=operation) from exc
        else:
            outcome = await strategy.call(request, on_progress)

        duration = time.perf_counter() - started
        logger.info(
            "Operation complete | op=%s | mode=%s | features=%d | failures=%d | duration=%.3fs",
            operation,
            strategy.mode.value,
            len(outcome.collection),
            outcome.failure_count,
            duration,
        )
        self._publish(_build_report(operation, strategy.mode, outcome, duration))
        return outcome

    async def execute(
        self,
        request: OperationRequest,
        on_progress: ProgressCallback | None = None,
    ) -> FeatureCollection:
        """Execute *request* and return the output collection."""
        outcome = await self.run(request, on_progress)
        return outcome.collection

    async def call(
        self,
        operation: str,
        input_a: FeatureCollection | Mapping[str, Any] | None,
        input_b: FeatureCollection | Mapping[str, Any] | None = None,
        params: Mapping[str, Any] | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> FeatureCollection:
        """Loosely-typed operation call; invalid calls fail before dispatch."""
        request = build_request(operation, input_a, input_b, params)
        return await self.execute(request, on_progress)

    async def ping(self) -> str:
        """Health-check the active strategy."""
        strategy = await self.acquire()
        return await strategy.ping()

    def measure(self, collection: FeatureCollection) -> Measurement:
        """Geodesic length and area of *collection*, computed inline."""
        return measure(collection)

    # ------------------------------------------------------------------
    # Result channel
    # ------------------------------------------------------------------

    def subscribe(self, listener: ReportListener) -> Callable[[], None]:
        """Register *listener* for operation reports.

        Returns:
            A callable that removes the listener.  Calling it twice is a
            no-op.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _publish(self, report: OperationReport) -> None:
        for listener in list(self._listeners):
            try:
                listener(report)
            except Exception:  # noqa: BLE001 - listeners must not fail the call
                logger.exception("Report listener raised | op=%s", report.operation)


def _build_report(
    operation: str,
    mode: ExecutionMode,
    outcome: OperationOutcome,
    duration: float,
) -> OperationReport:
    bbox = outcome.collection.bbox()
    return OperationReport(
        operation=operation,
        mode=mode.value,
        feature_count=len(outcome.collection),
        failure_count=outcome.failure_count,
        failures=[_describe(f) for f in outcome.failures],
        bbox=list(bbox) if bbox is not None else None,
        duration_s=round(duration, 6),
    )


def _describe(failure: StepFailure) -> str:
    where = "" if failure.index is None else f"[{failure.index}]"
    return f"{failure.step}{where}: {failure.reason}"
