"""Execution service.

Chooses where operations run:
- ``IsolatedStrategy``: a worker process reached over a duplex pipe
- ``InlineStrategy``: the caller's event loop, with cooperative yielding

``SpatialService`` owns the choice, the launcher fallback chain, health
checks, timeouts and failover.
"""

from spatial_engine.execution.base import ExecutionMode, ExecutionStrategy
from spatial_engine.execution.inline import InlineStrategy
from spatial_engine.execution.isolated import IsolatedStrategy
from spatial_engine.execution.launchers import (
    LaunchAttempt,
    ProcessLauncher,
    WorkerLauncher,
    build_launch_chain,
    register_launcher,
    supports_isolation,
)
from spatial_engine.execution.service import SpatialService

__all__ = [
    "ExecutionMode",
    "ExecutionStrategy",
    "InlineStrategy",
    "IsolatedStrategy",
    "LaunchAttempt",
    "ProcessLauncher",
    "SpatialService",
    "WorkerLauncher",
    "build_launch_chain",
    "register_launcher",
    "supports_isolation",
]
