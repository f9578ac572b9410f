"""Tests for the spatial execution service state machine.

Uses fake launchers and fake isolated strategies so every transition can be
driven deterministically:
- capability probe failure (unsupported or raising)
- launcher chain fallback and startup health checks
- health-check timeout failover on an established worker
- per-call timeout
- reset, concurrent first calls, the result channel
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any

import pytest

from spatial_engine.core.config import EngineConfig
from spatial_engine.core.constants import HEALTH_ACK
from spatial_engine.core.exceptions import (
    InvalidRequestError,
    OperationTimeoutError,
    WorkerCrashedError,
)
from spatial_engine.execution.base import ExecutionMode, ExecutionStrategy
from spatial_engine.execution.launchers import LaunchAttempt, WorkerLauncher
from spatial_engine.execution.service import SpatialService
from spatial_engine.models.report import OperationReport
from spatial_engine.models.requests import build_request
from spatial_engine.operations.library import run_operation
from tests.builders import collection, line, point, square

SERVICE_LOGGER = "spatial_engine.execution.service"

FAST = EngineConfig(health_check_timeout_s=0.05, startup_timeout_s=0.05, call_timeout_s=5.0)


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeIsolated(ExecutionStrategy):
    """Isolated strategy stand-in running operations in-process."""

    mode = ExecutionMode.ISOLATED

    def __init__(self, *, hang_ping: bool = False, hang_call: bool = False, token: str = HEALTH_ACK) -> None:
        self.hang_ping = hang_ping
        self.hang_call = hang_call
        self.crashed = False
        self.token = token
        self.calls = 0
        self.closed = False

    async def ping(self) -> str:
        if self.hang_ping:
            await asyncio.sleep(3600)
        if self.crashed:
            raise WorkerCrashedError("gone")
        return self.token

    async def call(self, request, on_progress=None):  # noqa: ANN001, ANN201
        self.calls += 1
        if self.hang_call:
            await asyncio.sleep(3600)
        return await run_operation(request, on_progress=on_progress, use_spatial_index=True)

    def close(self) -> None:
        self.closed = True


class FakeLauncher(WorkerLauncher):
    def __init__(self, name: str, strategy: ExecutionStrategy | None = None) -> None:
        self.name = name
        self.strategy = strategy
        self.launches = 0

    def launch(self) -> LaunchAttempt:
        self.launches += 1
        if self.strategy is None:
            return LaunchAttempt(self.name, reason=f"{self.name} unavailable")
        return LaunchAttempt(self.name, strategy=self.strategy)


def _clip_request():  # noqa: ANN202
    features = collection(square(0, 0, 1), line((-2, 0.25), (2, 0.25)), point(0.2, 0.2))
    mask = collection(square(-1, -1, 1.5))
    return build_request("clip", features, mask)


def _warnings(caplog: pytest.LogCaptureFixture) -> list[logging.LogRecord]:
    return [r for r in caplog.records if r.name == SERVICE_LOGGER and r.levelno == logging.WARNING]


# ---------------------------------------------------------------------------
# Initialization
# ---------------------------------------------------------------------------


class TestInitialization:
    def test_uninitialized_mode(self) -> None:
        assert SpatialService(FAST).mode is None

    def test_unsupported_environment_goes_inline(self, caplog) -> None:
        launcher = FakeLauncher("spawn", FakeIsolated())
        service = SpatialService(FAST, launchers=[launcher], probe=lambda: False)

        with caplog.at_level(logging.WARNING, logger=SERVICE_LOGGER):
            asyncio.run(service.execute(_clip_request()))

        assert service.mode is ExecutionMode.INLINE
        assert launcher.launches == 0
        assert len(_warnings(caplog)) == 1

    def test_raising_probe_counts_as_unsupported(self) -> None:
        def probe() -> bool:
            raise OSError("no semaphores")

        service = SpatialService(FAST, launchers=[FakeLauncher("spawn", FakeIsolated())], probe=probe)
        asyncio.run(service.acquire())
        assert service.mode is ExecutionMode.INLINE

    def test_isolation_disabled_by_config(self, caplog) -> None:
        config = EngineConfig(isolation_enabled=False)
        launcher = FakeLauncher("spawn", FakeIsolated())
        service = SpatialService(config, launchers=[launcher], probe=lambda: True)

        with caplog.at_level(logging.WARNING, logger=SERVICE_LOGGER):
            asyncio.run(service.acquire())

        assert service.mode is ExecutionMode.INLINE
        assert launcher.launches == 0
        assert _warnings(caplog) == []

    def test_first_working_launcher_adopted(self) -> None:
        broken = FakeLauncher("spawn")
        worker = FakeIsolated()
        working = FakeLauncher("forkserver", worker)
        unused = FakeLauncher("fork", FakeIsolated())
        service = SpatialService(FAST, launchers=[broken, working, unused], probe=lambda: True)

        strategy = asyncio.run(service.acquire())

        assert strategy is worker
        assert service.mode is ExecutionMode.ISOLATED
        assert (broken.launches, working.launches, unused.launches) == (1, 1, 0)
        assert [a.launcher for a in service.launch_attempts] == ["spawn", "forkserver"]
        assert service.launch_attempts[0].reason == "spawn unavailable"

    def test_failed_startup_health_check_tries_next(self) -> None:
        silent = FakeIsolated(hang_ping=True)
        worker = FakeIsolated()
        service = SpatialService(
            FAST,
            launchers=[FakeLauncher("spawn", silent), FakeLauncher("fork", worker)],
            probe=lambda: True,
        )

        assert asyncio.run(service.acquire()) is worker
        assert silent.closed
        assert service.launch_attempts[0].reason == "health check failed"

    def test_wrong_token_is_unhealthy(self) -> None:
        confused = FakeIsolated(token="pong")
        service = SpatialService(FAST, launchers=[FakeLauncher("spawn", confused)], probe=lambda: True)
        asyncio.run(service.acquire())
        assert service.mode is ExecutionMode.INLINE
        assert confused.closed

    def test_exhausted_chain_goes_inline_with_reasons(self, caplog) -> None:
        service = SpatialService(
            FAST,
            launchers=[FakeLauncher("spawn"), FakeLauncher("fork")],
            probe=lambda: True,
        )

        with caplog.at_level(logging.WARNING, logger=SERVICE_LOGGER):
            asyncio.run(service.acquire())

        assert service.mode is ExecutionMode.INLINE
        [warning] = _warnings(caplog)
        assert "spawn unavailable" in warning.getMessage()
        assert "fork unavailable" in warning.getMessage()

    def test_concurrent_first_calls_share_one_worker(self) -> None:
        worker = FakeIsolated()
        launcher = FakeLauncher("spawn", worker)
        service = SpatialService(FAST, launchers=[launcher], probe=lambda: True)

        async def scenario() -> None:
            await asyncio.gather(*(service.execute(_clip_request()) for _ in range(5)))

        asyncio.run(scenario())
        assert launcher.launches == 1
        assert worker.calls == 5


# ---------------------------------------------------------------------------
# Failover and timeouts
# ---------------------------------------------------------------------------


class TestFailover:
    def test_health_check_timeout_switches_to_inline(self, caplog) -> None:
        worker = FakeIsolated()
        service = SpatialService(FAST, launchers=[FakeLauncher("spawn", worker)], probe=lambda: True)
        request = _clip_request()

        async def scenario() -> tuple[Any, Any, Any]:
            isolated = await service.execute(request)
            worker.hang_ping = True
            after = await service.execute(request)
            again = await service.execute(request)
            return isolated, after, again

        with caplog.at_level(logging.WARNING, logger=SERVICE_LOGGER):
            isolated, after, again = asyncio.run(scenario())

        assert service.mode is ExecutionMode.INLINE
        assert worker.closed
        assert worker.calls == 1
        assert after.to_dict() == isolated.to_dict()
        assert again.to_dict() == isolated.to_dict()
        assert len(_warnings(caplog)) == 1

    def test_crashed_worker_fails_over(self) -> None:
        worker = FakeIsolated()
        service = SpatialService(FAST, launchers=[FakeLauncher("spawn", worker)], probe=lambda: True)

        async def scenario() -> None:
            await service.acquire()
            worker.crashed = True
            await service.execute(_clip_request())

        asyncio.run(scenario())
        assert service.mode is ExecutionMode.INLINE

    def test_call_timeout_raises(self) -> None:
        worker = FakeIsolated(hang_call=True)
        config = EngineConfig(call_timeout_s=0.05)
        service = SpatialService(config, launchers=[FakeLauncher("spawn", worker)], probe=lambda: True)

        with pytest.raises(OperationTimeoutError) as exc_info:
            asyncio.run(service.execute(_clip_request()))

        assert exc_info.value.operation == "clip"
        assert "timed out" in exc_info.value.message
        # A timeout is surfaced, not failed over.
        assert service.mode is ExecutionMode.ISOLATED
        assert not worker.closed

    def test_inline_calls_have_no_timeout(self) -> None:
        config = EngineConfig(isolation_enabled=False, call_timeout_s=0.000001)
        service = SpatialService(config)
        result = asyncio.run(service.execute(_clip_request()))
        assert len(result) > 0


class TestReset:
    def test_reset_tears_down_and_reinitializes(self, caplog) -> None:
        worker = FakeIsolated()
        launcher = FakeLauncher("spawn", worker)
        service = SpatialService(FAST, launchers=[launcher], probe=lambda: True)

        asyncio.run(service.acquire())
        service.reset()

        assert worker.closed
        assert service.mode is None
        asyncio.run(service.acquire())
        assert launcher.launches == 2
        assert service.mode is ExecutionMode.ISOLATED

    def test_areset_closes_worker_off_the_loop(self) -> None:
        worker = FakeIsolated()
        launcher = FakeLauncher("spawn", worker)
        service = SpatialService(FAST, launchers=[launcher], probe=lambda: True)
        closing_threads: list[str] = []

        def close() -> None:
            closing_threads.append(threading.current_thread().name)
            worker.closed = True

        worker.close = close  # type: ignore[method-assign]

        async def scenario() -> None:
            await service.acquire()
            await service.areset()

        asyncio.run(scenario())

        assert worker.closed
        assert service.mode is None
        assert service.launch_attempts == ()
        assert closing_threads and closing_threads[0] != "MainThread"

    def test_reset_clears_warn_once(self, caplog) -> None:
        service = SpatialService(FAST, launchers=[], probe=lambda: False)

        with caplog.at_level(logging.WARNING, logger=SERVICE_LOGGER):
            asyncio.run(service.acquire())
            service.reset()
            asyncio.run(service.acquire())

        assert len(_warnings(caplog)) == 2


# ---------------------------------------------------------------------------
# Call contract and result channel
# ---------------------------------------------------------------------------


class TestCallContract:
    def test_call_with_loose_arguments(self) -> None:
        service = SpatialService(EngineConfig(isolation_enabled=False))
        fc = collection(point(0, 0))
        result = asyncio.run(service.call("buffer", fc.to_dict(), params={"distance": 1}))
        assert result[0].geometry_type == "Polygon"

    def test_invalid_call_rejected_before_dispatch(self) -> None:
        launcher = FakeLauncher("spawn", FakeIsolated())
        service = SpatialService(FAST, launchers=[launcher], probe=lambda: True)

        with pytest.raises(InvalidRequestError):
            asyncio.run(service.call("clip", collection(square(0, 0, 1))))

        assert launcher.launches == 0
        assert service.mode is None

    def test_run_rejects_untyped_request(self) -> None:
        service = SpatialService(EngineConfig(isolation_enabled=False))
        with pytest.raises(InvalidRequestError):
            asyncio.run(service.run({"operation": "clip"}))  # type: ignore[arg-type]

    def test_run_exposes_failures(self) -> None:
        service = SpatialService(EngineConfig(isolation_enabled=False))
        masks = collection(point(0, 0), square(0, 0, 1))
        request = build_request("pip", collection(point(0.5, 0.5)), masks)
        outcome = asyncio.run(service.run(request))
        assert outcome.failure_count == 1

    def test_progress_forwarded(self) -> None:
        service = SpatialService(EngineConfig(isolation_enabled=False))
        seen: list[int] = []
        asyncio.run(service.execute(_clip_request(), on_progress=seen.append))
        assert seen[-1] == 100

    def test_ping(self) -> None:
        service = SpatialService(FAST, launchers=[FakeLauncher("spawn", FakeIsolated())], probe=lambda: True)
        assert asyncio.run(service.ping()) == HEALTH_ACK

    def test_measure(self) -> None:
        service = SpatialService(EngineConfig(isolation_enabled=False))
        result = service.measure(collection(line((0, 0), (1, 0))))
        assert result.length_km == pytest.approx(111.32, rel=1e-3)


class TestResultChannel:
    def test_listener_receives_report(self) -> None:
        service = SpatialService(EngineConfig(isolation_enabled=False))
        reports: list[OperationReport] = []
        service.subscribe(reports.append)

        asyncio.run(service.execute(_clip_request()))

        [report] = reports
        assert report.operation == "clip"
        assert report.mode == "inline"
        assert report.feature_count == 3
        assert report.failure_count == 0
        assert report.bbox is not None
        assert report.bbox[0] == pytest.approx(-1.0)

    def test_unsubscribe(self) -> None:
        service = SpatialService(EngineConfig(isolation_enabled=False))
        reports: list[OperationReport] = []
        unsubscribe = service.subscribe(reports.append)
        unsubscribe()
        unsubscribe()

        asyncio.run(service.execute(_clip_request()))
        assert reports == []

    def test_listener_errors_do_not_fail_call(self) -> None:
        service = SpatialService(EngineConfig(isolation_enabled=False))

        def broken(report: OperationReport) -> None:
            raise RuntimeError("map not mounted")

        reports: list[OperationReport] = []
        service.subscribe(broken)
        service.subscribe(reports.append)

        result = asyncio.run(service.execute(_clip_request()))
        assert len(result) == 3
        assert len(reports) == 1

    def test_empty_result_has_no_bbox(self) -> None:
        service = SpatialService(EngineConfig(isolation_enabled=False))
        reports: list[OperationReport] = []
        service.subscribe(reports.append)
        request = build_request("intersection", collection(square(0, 0, 1)), collection(square(5, 5, 1)))
        asyncio.run(service.execute(request))
        assert reports[0].bbox is None
        assert reports[0].feature_count == 0
