"""Canonical message contracts for the isolation boundary.

Every message exchanged between the execution service and a worker process
is defined here as a ``TypedDict``.  Messages are plain dicts of JSON-
compatible values, so crossing the boundary is a structural copy and never
shares references with the caller.

Design notes:
- Parent → worker: ``PingMessage``, ``CallMessage``, ``ShutdownMessage``.
- Worker → parent: ``PongMessage``, ``ProgressMessage``, ``ResultMessage``,
  ``ErrorMessage``.  Every reply carries the ``id`` of the message it answers
  so the parent can correlate it with the pending call.
"""

from __future__ import annotations

from typing import Any, Literal, TypedDict

# ---------------------------------------------------------------------------
# Request payload (call contract)
# ---------------------------------------------------------------------------


class RequestPayload(TypedDict):
    """Serialised ``OperationRequest``."""

    operation: str
    input_a: dict[str, Any]
    input_b: dict[str, Any] | None
    params: dict[str, Any]


# ---------------------------------------------------------------------------
# Parent → worker
# ---------------------------------------------------------------------------


class PingMessage(TypedDict):
    type: Literal["ping"]
    id: int


class CallMessage(TypedDict):
    type: Literal["call"]
    id: int
    request: RequestPayload


class ShutdownMessage(TypedDict):
    type: Literal["shutdown"]


# ---------------------------------------------------------------------------
# Worker → parent
# ---------------------------------------------------------------------------


class PongMessage(TypedDict):
    type: Literal["pong"]
    id: int
    token: str


class ProgressMessage(TypedDict):
    type: Literal["progress"]
    id: int
    percent: int


class ResultMessage(TypedDict):
    """Successful call; ``outcome`` is ``OperationOutcome.to_dict()``."""

    type: Literal["result"]
    id: int
    outcome: dict[str, Any]


class ErrorMessage(TypedDict):
    """Failed call; ``error`` is ``EngineError.to_error_dict()``-shaped."""

    type: Literal["error"]
    id: int
    error: dict[str, Any]
