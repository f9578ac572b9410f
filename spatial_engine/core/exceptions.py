"""Unified engine exception taxonomy.

Provides a shared base exception hierarchy for the operation library and
the execution service.  Every domain exception inherits from
``EngineError`` and carries structured context fields that let callers
decide whether to surface, retry, or ignore a failure.

Taxonomy categories
-------------------
- ``ValidationError``   — bad call arguments or malformed input, never retryable.
- ``TransientError``    — timeouts and crashed workers, may succeed if reissued.
- ``PermanentError``    — unrecoverable failures, not retryable.
- ``ContractError``     — malformed messages across the isolation boundary.

Every exception exposes ``to_error_dict()`` for a stable structured
error payload suitable for logging and for crossing the worker boundary.
"""

from __future__ import annotations


class EngineError(Exception):
    """Base exception for all engine-domain errors.

    Attributes:
        message: Human-readable error description.
        stage: Engine stage where the error occurred
            (e.g. ``"request"``, ``"execution"``).
        code: Machine-readable error code (e.g. ``"OPERATION_TIMEOUT"``).
        retryable: Whether reissuing the call may succeed.
        operation: Operation kind the error relates to, if any.
    """

    #: Default stage for subclasses (override via class attribute or kwarg).
    default_stage: str = ""
    #: Default code for subclasses (override via class attribute or kwarg).
    default_code: str = ""

    def __init__(
        self,
        message: str = "",
        *,
        stage: str = "",
        code: str = "",
        retryable: bool = False,
        operation: str = "",
    ) -> None:
        self.message = message
        self.stage = stage or self.default_stage
        self.code = code or self.default_code
        self.retryable = retryable
        self.operation = operation
        super().__init__(message)

    @property
    def category(self) -> str:
        """Return the error category based on concrete class."""
        if isinstance(self, ContractError):
            return "contract"
        if isinstance(self, ValidationError):
            return "validation"
        if isinstance(self, TransientError):
            return "transient"
        if isinstance(self, PermanentError):
            return "permanent"
        return "transient" if self.retryable else "permanent"

    def to_error_dict(self) -> dict[str, object]:
        """Return a structured error payload with stable keys."""
        return {
            "category": self.category,
            "code": self.code,
            "stage": self.stage,
            "message": self.message,
            "retryable": self.retryable,
            "operation": self.operation,
        }


# ---------------------------------------------------------------------------
# Category base classes
# ---------------------------------------------------------------------------


class ValidationError(EngineError):
    """Input or domain-model validation failure. Never retryable."""

    def __init__(self, message: str = "", **kwargs: object) -> None:
        kwargs.setdefault("retryable", False)
        super().__init__(message, **kwargs)  # type: ignore[arg-type]


class TransientError(EngineError):
    """Temporary failure that may succeed if the call is reissued."""

    def __init__(self, message: str = "", **kwargs: object) -> None:
        kwargs.setdefault("retryable", True)
        super().__init__(message, **kwargs)  # type: ignore[arg-type]


class PermanentError(EngineError):
    """Unrecoverable failure. Not retryable."""

    def __init__(self, message: str = "", **kwargs: object) -> None:
        kwargs.setdefault("retryable", False)
        super().__init__(message, **kwargs)  # type: ignore[arg-type]


class ContractError(EngineError):
    """Malformed payload crossing the isolation boundary. Never retryable."""

    def __init__(self, message: str = "", **kwargs: object) -> None:
        kwargs.setdefault("retryable", False)
        super().__init__(message, **kwargs)  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# Concrete errors
# ---------------------------------------------------------------------------


class InvalidRequestError(ValidationError):
    """Raised when an operation call is rejected before dispatch."""

    default_stage = "request"
    default_code = "INVALID_REQUEST"


class FeatureValidationError(ValidationError):
    """Raised when a Feature or FeatureCollection payload is malformed."""

    default_stage = "request"
    default_code = "INVALID_FEATURE"


class OperationTimeoutError(TransientError):
    """Raised when an isolated call exceeds its hard timeout.

    The worker computation is abandoned, not cancelled: it may keep
    running until it finishes or the worker is torn down.
    """

    default_stage = "execution"
    default_code = "OPERATION_TIMEOUT"


class WorkerCrashedError(TransientError):
    """Raised for pending calls when the worker process goes away."""

    default_stage = "execution"
    default_code = "WORKER_CRASHED"


class OperationFailedError(PermanentError):
    """Raised when the worker reports an unexpected error for a call."""

    default_stage = "execution"
    default_code = "OPERATION_FAILED"


class IsolationUnavailableError(PermanentError):
    """Raised by a launcher that cannot start a worker process."""

    default_stage = "launch"
    default_code = "ISOLATION_UNAVAILABLE"


class ProtocolError(ContractError):
    """Raised when a boundary message does not match its contract."""

    default_stage = "transport"
    default_code = "PROTOCOL_ERROR"
