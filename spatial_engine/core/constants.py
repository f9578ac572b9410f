"""Shared engine constants — single source of truth.

Centralises the health-check token, unit conversion factors, and the
default tuning values that the config layer, the operation library and the
execution service all refer to.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------

HEALTH_ACK: str = "ok"
"""Token returned by a responsive strategy's ``ping()``."""

# ---------------------------------------------------------------------------
# Timeouts (seconds)
# ---------------------------------------------------------------------------

DEFAULT_HEALTH_CHECK_TIMEOUT_S: float = 1.5
DEFAULT_STARTUP_TIMEOUT_S: float = 10.0
DEFAULT_CALL_TIMEOUT_S: float = 45.0

# ---------------------------------------------------------------------------
# Cooperative scheduling and progress
# ---------------------------------------------------------------------------

DEFAULT_YIELD_EVERY: int = 25
"""Per-feature loops yield to the event loop every N iterations."""

DEFAULT_MASK_YIELD_EVERY: int = 5
"""Mask-union construction yields every N mask features."""

DEFAULT_PROGRESS_MIN_STEP: int = 2
"""Minimum percentage advance before a progress update is forwarded."""

# ---------------------------------------------------------------------------
# Isolation
# ---------------------------------------------------------------------------

DEFAULT_START_METHODS: tuple[str, ...] = ("spawn", "forkserver", "fork")
"""Multiprocessing start methods tried in order when launching a worker."""

# ---------------------------------------------------------------------------
# Units
# ---------------------------------------------------------------------------

METRES_PER_UNIT: dict[str, float] = {
    "meters": 1.0,
    "kilometers": 1_000.0,
    "miles": 1_609.344,
}

SQ_METRES_PER_SQ_KM = 1_000_000.0
METRES_PER_KM = 1_000.0

# ---------------------------------------------------------------------------
# Ingestion
# ---------------------------------------------------------------------------

MAX_PROPERTY_STRING_LENGTH = 10_000
"""String properties longer than this are dropped by ``sanitize_properties``."""
