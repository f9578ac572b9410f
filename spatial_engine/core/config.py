"""Engine configuration loaded from environment variables.

All configuration values have sensible defaults, so ``EngineConfig()`` is
usable as-is; ``from_env()`` overlays ``SPATIAL_*`` environment variables.

Fail-fast validation:
    ``from_env()`` raises ``ConfigValidationError`` if any value is out of
    its valid range.  This catches bad configuration when the service is
    constructed instead of on the first operation call.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from spatial_engine.core.constants import (
    DEFAULT_CALL_TIMEOUT_S,
    DEFAULT_HEALTH_CHECK_TIMEOUT_S,
    DEFAULT_MASK_YIELD_EVERY,
    DEFAULT_PROGRESS_MIN_STEP,
    DEFAULT_START_METHODS,
    DEFAULT_STARTUP_TIMEOUT_S,
    DEFAULT_YIELD_EVERY,
)
from spatial_engine.core.exceptions import EngineError

_TRUTHY = frozenset({"1", "true", "yes", "on"})
_FALSY = frozenset({"0", "false", "no", "off"})


class ConfigValidationError(EngineError):
    """Raised when configuration values are out of valid range.

    Attributes:
        key: The configuration key that failed validation.
        value: The invalid value.
        message: Human-readable description of the valid range.
    """

    default_stage = "config"
    default_code = "CONFIG_VALIDATION_FAILED"

    def __init__(self, key: str, value: object, message: str) -> None:
        self.key = key
        self.value = value
        super().__init__(f"Invalid configuration {key}={value!r}: {message}")


@dataclass(frozen=True, slots=True)
class EngineConfig:
    """Immutable engine configuration.

    Attributes:
        isolation_enabled: Whether the service may launch a worker process
            at all.  ``False`` pins the service to inline execution.
        start_methods: Multiprocessing start methods tried in order.
        health_check_timeout_s: Bound on the pre-call health check.
        startup_timeout_s: Bound on the first health check after a launch,
            which also covers worker interpreter start-up.
        call_timeout_s: Hard timeout for every isolated call.
        yield_every: Per-feature loops yield every N iterations.
        mask_yield_every: Mask-union construction yields every N features.
        progress_min_step: Minimum forwarded progress advance (percent).
    """

    isolation_enabled: bool = True
    start_methods: tuple[str, ...] = DEFAULT_START_METHODS
    health_check_timeout_s: float = DEFAULT_HEALTH_CHECK_TIMEOUT_S
    startup_timeout_s: float = DEFAULT_STARTUP_TIMEOUT_S
    call_timeout_s: float = DEFAULT_CALL_TIMEOUT_S
    yield_every: int = DEFAULT_YIELD_EVERY
    mask_yield_every: int = DEFAULT_MASK_YIELD_EVERY
    progress_min_step: int = DEFAULT_PROGRESS_MIN_STEP

    @classmethod
    def from_env(cls) -> EngineConfig:
        """Load and validate configuration from environment variables.

        Raises:
            ConfigValidationError: If a value is out of range or a boolean
                flag is not recognised.
            ValueError: If a numeric environment variable cannot be
                parsed (e.g. ``SPATIAL_CALL_TIMEOUT_S=abc``).
        """
        methods_raw = os.getenv("SPATIAL_START_METHODS", ",".join(DEFAULT_START_METHODS))
        config = cls(
            isolation_enabled=_parse_bool(
                "SPATIAL_ISOLATION_ENABLED", os.getenv("SPATIAL_ISOLATION_ENABLED", "true")
            ),
            start_methods=tuple(m.strip() for m in methods_raw.split(",") if m.strip()),
            health_check_timeout_s=float(
                os.getenv("SPATIAL_HEALTH_CHECK_TIMEOUT_S", str(DEFAULT_HEALTH_CHECK_TIMEOUT_S))
            ),
            startup_timeout_s=float(
                os.getenv("SPATIAL_STARTUP_TIMEOUT_S", str(DEFAULT_STARTUP_TIMEOUT_S))
            ),
            call_timeout_s=float(os.getenv("SPATIAL_CALL_TIMEOUT_S", str(DEFAULT_CALL_TIMEOUT_S))),
            yield_every=int(os.getenv("SPATIAL_YIELD_EVERY", str(DEFAULT_YIELD_EVERY))),
            mask_yield_every=int(
                os.getenv("SPATIAL_MASK_YIELD_EVERY", str(DEFAULT_MASK_YIELD_EVERY))
            ),
            progress_min_step=int(
                os.getenv("SPATIAL_PROGRESS_MIN_STEP", str(DEFAULT_PROGRESS_MIN_STEP))
            ),
        )
        validate_config(config)
        return config


def _parse_bool(key: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUTHY:
        return True
    if value in _FALSY:
        return False
    raise ConfigValidationError(key, raw, "must be a boolean (true/false)")


def validate_config(config: EngineConfig) -> None:
    """Validate configuration ranges.  Raises ``ConfigValidationError``."""
    for key, value in (
        ("SPATIAL_HEALTH_CHECK_TIMEOUT_S", config.health_check_timeout_s),
        ("SPATIAL_STARTUP_TIMEOUT_S", config.startup_timeout_s),
        ("SPATIAL_CALL_TIMEOUT_S", config.call_timeout_s),
    ):
        if value <= 0:
            raise ConfigValidationError(key, value, "must be > 0 (seconds)")

    if config.yield_every < 1:
        raise ConfigValidationError("SPATIAL_YIELD_EVERY", config.yield_every, "must be >= 1")

    if config.mask_yield_every < 1:
        raise ConfigValidationError(
            "SPATIAL_MASK_YIELD_EVERY", config.mask_yield_every, "must be >= 1"
        )

    if not 1 <= config.progress_min_step <= 100:
        raise ConfigValidationError(
            "SPATIAL_PROGRESS_MIN_STEP",
            config.progress_min_step,
            "must be between 1 and 100 (percentage points)",
        )

    if config.isolation_enabled and not config.start_methods:
        raise ConfigValidationError(
            "SPATIAL_START_METHODS",
            config.start_methods,
            "must name at least one start method when isolation is enabled",
        )
