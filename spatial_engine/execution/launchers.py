"""Worker launchers: the ordered fallback chain for isolated execution.

Each launcher knows one way of starting a worker process.  The service
tries the configured chain in order (``spawn``, then ``forkserver``, then
``fork`` by default) and keeps the first worker that starts and answers a
health check.

The launcher registry maps a name to a factory taking the engine config.  The three
multiprocessing start methods are registered on first use; custom or test
launchers are plugged in with ``register_launcher``.

Usage::

    from spatial_engine.execution.launchers import build_launch_chain

    for launcher in build_launch_chain(config):
        attempt = launcher.launch()
        if attempt.ok:
            ...
"""

from __future__ import annotations

import abc
import logging
import multiprocessing
import sys
from dataclasses import dataclass
from typing import TYPE_CHECKING

from spatial_engine.core.config import EngineConfig
from spatial_engine.core.exceptions import IsolationUnavailableError
from spatial_engine.execution.isolated import start_worker

if TYPE_CHECKING:
    from collections.abc import Callable

    from spatial_engine.execution.base import ExecutionStrategy

logger = logging.getLogger("spatial_engine.execution.launchers")

# Platforms without process support.
_UNSUPPORTED_PLATFORMS = frozenset({"emscripten", "wasi"})


@dataclass(frozen=True, slots=True)
class LaunchAttempt:
    """Result of one launcher in the chain: a strategy or a reason."""

    launcher: str
    strategy: ExecutionStrategy | None = None
    reason: str = ""

    @property
    def ok(self) -> bool:
        return self.strategy is not None


class WorkerLauncher(abc.ABC):
    """One way of starting an isolated worker."""

    name: str = ""

    @abc.abstractmethod
    def launch(self) -> LaunchAttempt:
        """Start a worker.  Failures are returned, never raised."""


class ProcessLauncher(WorkerLauncher):
    """Starts a worker with a ``multiprocessing`` start method."""

    def __init__(self, start_method: str, config: EngineConfig | None = None) -> None:
        self.start_method = start_method
        self.name = start_method
        self._config = config or EngineConfig()

    def launch(self) -> LaunchAttempt:
        if self.start_method not in multiprocessing.get_all_start_methods():
            return LaunchAttempt(self.name, reason="start method not available on this platform")
        try:
            strategy = start_worker(self.start_method, self._config)
        except IsolationUnavailableError as exc:
            return LaunchAttempt(self.name, reason=exc.message)
        return LaunchAttempt(self.name, strategy=strategy)

    def __repr__(self) -> str:
        return f"ProcessLauncher({self.start_method!r})"


# ---------------------------------------------------------------------------
# Launcher registry
# ---------------------------------------------------------------------------

_LAUNCHER_REGISTRY: dict[str, Callable[[EngineConfig], WorkerLauncher]] = {}


def _register_builtin_launchers() -> None:
    for method in ("spawn", "forkserver", "fork"):
        _LAUNCHER_REGISTRY[method] = lambda config, method=method: ProcessLauncher(method, config)


def _ensure_registry() -> None:
    if not _LAUNCHER_REGISTRY:
        _register_builtin_launchers()


def register_launcher(name: str, factory: Callable[[EngineConfig], WorkerLauncher]) -> None:
    """Register a custom launcher under *name*.

    Raises:
        ValueError: If the name is empty.
    """
    if not name:
        msg = "Launcher name must be non-empty"
        raise ValueError(msg)
    _ensure_registry()
    _LAUNCHER_REGISTRY[name] = factory
    logger.debug("Registered worker launcher: %s", name)


def list_launchers() -> list[str]:
    """Return the names of all registered launchers."""
    _ensure_registry()
    return sorted(_LAUNCHER_REGISTRY)


def build_launch_chain(config: EngineConfig | None = None) -> list[WorkerLauncher]:
    """Build the ordered launcher chain named by ``config.start_methods``.

    Unknown names are skipped with a warning.
    """
    config = config or EngineConfig()
    _ensure_registry()

    chain: list[WorkerLauncher] = []
    for name in config.start_methods:
        factory = _LAUNCHER_REGISTRY.get(name)
        if factory is None:
            logger.warning("Unknown worker launcher skipped | name=%s | available=%s", name, list_launchers())
            continue
        chain.append(factory(config))
    return chain


def supports_isolation() -> bool:
    """Probe whether this environment can run a worker process at all."""
    if sys.platform in _UNSUPPORTED_PLATFORMS:
        return False
    if not multiprocessing.get_all_start_methods():
        return False
    try:
        reader, writer = multiprocessing.Pipe(duplex=False)
    except OSError as exc:
        logger.debug("Pipe probe failed | error=%s", exc)
        return False
    reader.close()
    writer.close()
    return True
