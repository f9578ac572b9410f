"""Worker-process main loop.

``serve`` runs inside the isolated process.  The main thread only reads the
connection: it answers health checks immediately and hands operation calls
to a single call thread, which executes them one at a time and sends
throttled progress updates and the final outcome back.  A long-running or
abandoned call therefore never delays a ping.  Every reply carries the id
of the message it answers.
"""

from __future__ import annotations

import asyncio
import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, Any

from spatial_engine.core.constants import (
    DEFAULT_MASK_YIELD_EVERY,
    DEFAULT_PROGRESS_MIN_STEP,
    DEFAULT_YIELD_EVERY,
    HEALTH_ACK,
)
from spatial_engine.core.exceptions import EngineError, OperationFailedError, ProtocolError
from spatial_engine.models.requests import request_from_payload
from spatial_engine.operations.library import run_operation

if TYPE_CHECKING:
    from multiprocessing.connection import Connection

logger = logging.getLogger("spatial_engine.execution.worker")


class _Replier:
    """Serialises sends from the reader thread and the call thread."""

    def __init__(self, conn: Connection) -> None:
        self._conn = conn
        self._lock = threading.Lock()

    def send(self, message: dict[str, Any]) -> None:
        with self._lock:
            self._conn.send(message)


def serve(
    conn: Connection,
    *,
    yield_every: int = DEFAULT_YIELD_EVERY,
    mask_yield_every: int = DEFAULT_MASK_YIELD_EVERY,
    progress_min_step: int = DEFAULT_PROGRESS_MIN_STEP,
) -> None:
    """Serve requests from the parent until shutdown or disconnect."""
    logger.debug("Spatial worker started | pid=%d", os.getpid())
    tuning = {
        "yield_every": yield_every,
        "mask_yield_every": mask_yield_every,
        "progress_min_step": progress_min_step,
    }
    replier = _Replier(conn)
    calls = ThreadPoolExecutor(max_workers=1, thread_name_prefix="spatial-call")
    try:
        while True:
            try:
                message = conn.recv()
            except (EOFError, OSError):
                break

            kind = message.get("type") if isinstance(message, dict) else None
            if kind == "shutdown":
                break
            if kind == "ping":
                replier.send({"type": "pong", "id": message["id"], "token": HEALTH_ACK})
            elif kind == "call":
                calls.submit(_handle_call, replier, message, tuning)
            else:
                error = ProtocolError(f"Unknown message type {kind!r}")
                replier.send(
                    {"type": "error", "id": _message_id(message), "error": error.to_error_dict()}
                )
    finally:
        calls.shutdown(wait=False, cancel_futures=True)
        conn.close()
        logger.debug("Spatial worker stopped | pid=%d", os.getpid())


def _handle_call(replier: _Replier, message: dict[str, Any], tuning: dict[str, int]) -> None:
    call_id = message["id"]

    def send_progress(percent: int) -> None:
        replier.send({"type": "progress", "id": call_id, "percent": percent})

    try:
        request = request_from_payload(message["request"])
        outcome = asyncio.run(
            run_operation(request, on_progress=send_progress, use_spatial_index=True, **tuning)
        )
    except EngineError as exc:
        reply: dict[str, Any] = {"type": "error", "id": call_id, "error": exc.to_error_dict()}
    except Exception as exc:
        # Reported to the caller; the worker keeps serving.
        logger.exception("Spatial worker call failed | id=%s", call_id)
        error = OperationFailedError(f"{type(exc).__name__}: {exc}")
        reply = {"type": "error", "id": call_id, "error": error.to_error_dict()}
    else:
        reply = {"type": "result", "id": call_id, "outcome": outcome.to_dict()}

    try:
        replier.send(reply)
    except (OSError, ValueError) as exc:
        # Parent gone or connection closed during shutdown.
        logger.debug("Reply not delivered | id=%s | error=%s", call_id, exc)


def _message_id(message: object) -> int:
    if isinstance(message, dict) and isinstance(message.get("id"), int):
        return message["id"]
    return -1
