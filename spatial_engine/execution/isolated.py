"""Isolated execution strategy.

Runs operations in a separate worker process so that heavy geometry work
never blocks the caller's event loop.  The parent talks to the worker over
a duplex ``multiprocessing`` pipe:

- every outgoing message carries a call id;
- a daemon reader thread receives replies and resolves the matching
  pending future on the event loop that issued the call;
- progress messages are forwarded to that call's callback;
- replies for calls nobody is waiting on any more are discarded;
- when the pipe reaches EOF every pending call fails with
  ``WorkerCrashedError``.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import multiprocessing
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from spatial_engine.core.config import EngineConfig
from spatial_engine.core.exceptions import (
    EngineError,
    InvalidRequestError,
    IsolationUnavailableError,
    OperationFailedError,
    ProtocolError,
    WorkerCrashedError,
)
from spatial_engine.execution.base import ExecutionMode, ExecutionStrategy
from spatial_engine.execution.worker import serve
from spatial_engine.models.outcome import OperationOutcome
from spatial_engine.models.requests import request_to_payload

if TYPE_CHECKING:
    from multiprocessing.connection import Connection
    from multiprocessing.process import BaseProcess

    from spatial_engine.models.requests import OperationRequest
    from spatial_engine.operations.progress import ProgressCallback

logger = logging.getLogger("spatial_engine.execution.isolated")

# Grace period for the worker to honour a shutdown message.
_SHUTDOWN_GRACE_S = 0.5
_JOIN_TIMEOUT_S = 2.0


@dataclass
class _PendingCall:
    future: asyncio.Future[dict[str, Any]]
    loop: asyncio.AbstractEventLoop
    on_progress: ProgressCallback | None = None


class IsolatedStrategy(ExecutionStrategy):
    """Strategy backed by one long-lived worker process."""

    mode = ExecutionMode.ISOLATED

    def __init__(self, process: BaseProcess, conn: Connection, *, start_method: str) -> None:
        self._process = process
        self._conn = conn
        self.start_method = start_method
        self._ids = itertools.count(1)
        self._pending: dict[int, _PendingCall] = {}
        self._lock = threading.Lock()
        self._send_lock = threading.Lock()
        self._accepting = True
        self._closed = False
        self._reader = threading.Thread(
            target=self._read_loop,
            name=f"spatial-worker-reader-{process.pid}",
            daemon=True,
        )
        self._reader.start()

    @property
    def alive(self) -> bool:
        """Whether the worker process is running and the pipe is open."""
        return self._accepting and self._process.is_alive()

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    # ------------------------------------------------------------------
    # ExecutionStrategy
    # ------------------------------------------------------------------

    async def ping(self) -> str:
        reply = await self._request({"type": "ping"})
        token = reply.get("token")
        if not isinstance(token, str):
            raise ProtocolError(f"Malformed pong from spatial worker: {reply!r}")
        return token

    async def call(
        self,
        request: OperationRequest,
        on_progress: ProgressCallback | None = None,
    ) -> OperationOutcome:
        reply = await self._request(
            {"type": "call", "request": request_to_payload(request)},
            on_progress,
        )
        try:
            return OperationOutcome.from_dict(reply["outcome"])
        except (KeyError, TypeError, ValueError) as exc:
            raise ProtocolError(
                f"Malformed result from spatial worker: {exc}",
                operation=request.kind.value,
            ) from exc

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._accepting = False

        try:
            with self._send_lock:
                self._conn.send({"type": "shutdown"})
        except (OSError, ValueError) as exc:
            logger.debug("Shutdown message not delivered | error=%s", exc)

        self._process.join(timeout=_SHUTDOWN_GRACE_S)
        if self._process.is_alive():
            self._process.terminate()
            self._process.join(timeout=_JOIN_TIMEOUT_S)
        if self._process.is_alive():
            self._process.kill()
            self._process.join(timeout=_JOIN_TIMEOUT_S)

        self._reader.join(timeout=_JOIN_TIMEOUT_S)
        try:
            self._conn.close()
        except OSError as exc:
            logger.debug("Worker pipe close failed | error=%s", exc)
        self._fail_pending(WorkerCrashedError("Spatial worker was shut down"))
        logger.info(
            "Spatial worker stopped | method=%s | exitcode=%s",
            self.start_method,
            self._process.exitcode,
        )

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _request(
        self,
        message: dict[str, Any],
        on_progress: ProgressCallback | None = None,
    ) -> dict[str, Any]:
        loop = asyncio.get_running_loop()
        future: asyncio.Future[dict[str, Any]] = loop.create_future()
        call_id = next(self._ids)

        with self._lock:
            if not self._accepting:
                raise WorkerCrashedError("Spatial worker is not running")
            self._pending[call_id] = _PendingCall(future, loop, on_progress)

        try:
            try:
                with self._send_lock:
                    self._conn.send({**message, "id": call_id})
            except (OSError, ValueError) as exc:
                raise WorkerCrashedError(f"Failed to reach spatial worker: {exc}") from exc
            return await future
        finally:
            # A timed-out or cancelled call is forgotten here; its late
            # reply is then discarded by the reader.
            with self._lock:
                self._pending.pop(call_id, None)

    def _read_loop(self) -> None:
        while True:
            try:
                message = self._conn.recv()
            except (EOFError, OSError):
                break
            except Exception:
                # Undecodable message; the stream can no longer be trusted.
                logger.exception("Worker pipe read failed | method=%s", self.start_method)
                break
            self._dispatch(message)

        with self._lock:
            self._accepting = False
        self._fail_pending(WorkerCrashedError("Spatial worker exited unexpectedly"))

    def _dispatch(self, message: object) -> None:
        if not isinstance(message, dict):
            logger.warning("Ignoring malformed worker message | type=%s", type(message).__name__)
            return

        call_id = message.get("id")
        with self._lock:
            pending = self._pending.get(call_id)  # type: ignore[arg-type]
        if pending is None:
            logger.debug(
                "Discarding reply for abandoned call | id=%s | type=%s", call_id, message.get("type")
            )
            return

        kind = message.get("type")
        if kind == "progress":
            if pending.on_progress is not None:
                _call_soon(pending.loop, _forward_progress, pending.on_progress, message.get("percent"))
        elif kind in ("pong", "result"):
            _call_soon(pending.loop, _resolve, pending.future, message)
        elif kind == "error":
            _call_soon(pending.loop, _reject, pending.future, error_from_payload(message.get("error")))
        else:
            error = ProtocolError(f"Unknown reply type {kind!r} from spatial worker")
            _call_soon(pending.loop, _reject, pending.future, error)

    def _fail_pending(self, exc: EngineError) -> None:
        with self._lock:
            pending = list(self._pending.values())
        for call in pending:
            _call_soon(call.loop, _reject, call.future, exc)


# ---------------------------------------------------------------------------
# Launch
# ---------------------------------------------------------------------------


def start_worker(start_method: str, config: EngineConfig | None = None) -> IsolatedStrategy:
    """Start a worker process with the given multiprocessing start method.

    Raises:
        IsolationUnavailableError: If the start method is unknown or the
            process cannot be started.
    """
    config = config or EngineConfig()
    try:
        context = multiprocessing.get_context(start_method)
        parent_conn, child_conn = context.Pipe(duplex=True)
        process = context.Process(
            target=serve,
            args=(child_conn,),
            kwargs={
                "yield_every": config.yield_every,
                "mask_yield_every": config.mask_yield_every,
                "progress_min_step": config.progress_min_step,
            },
            name="spatial-engine-worker",
            daemon=True,
        )
        process.start()
    except (ValueError, OSError, RuntimeError, ImportError) as exc:
        raise IsolationUnavailableError(
            f"Cannot start spatial worker with {start_method!r}: {exc}"
        ) from exc

    # The child owns its end now.
    child_conn.close()
    logger.info("Spatial worker started | method=%s | pid=%s", start_method, process.pid)
    return IsolatedStrategy(process, parent_conn, start_method=start_method)


def error_from_payload(payload: object) -> EngineError:
    """Rebuild a caller-side exception from a worker error payload."""
    if not isinstance(payload, dict):
        return ProtocolError(f"Malformed error from spatial worker: {payload!r}")

    message = str(payload.get("message", "")) or "Spatial worker reported an error"
    kwargs: dict[str, Any] = {
        "code": str(payload.get("code", "")),
        "stage": str(payload.get("stage", "")),
        "operation": str(payload.get("operation", "")),
    }
    if payload.get("category") == "validation":
        return InvalidRequestError(message, **kwargs)
    return OperationFailedError(message, **kwargs)


# ---------------------------------------------------------------------------
# Event-loop helpers (run on the caller's loop)
# ---------------------------------------------------------------------------


def _call_soon(loop: asyncio.AbstractEventLoop, callback: Any, *args: Any) -> None:
    try:
        loop.call_soon_threadsafe(callback, *args)
    except RuntimeError:
        # Loop already closed; nobody is left to notify.
        logger.debug("Event loop closed before worker reply was delivered")


def _resolve(future: asyncio.Future[dict[str, Any]], message: dict[str, Any]) -> None:
    if not future.done():
        future.set_result(message)


def _reject(future: asyncio.Future[dict[str, Any]], exc: BaseException) -> None:
    if not future.done():
        future.set_exception(exc)


def _forward_progress(callback: ProgressCallback, percent: object) -> None:
    if not isinstance(percent, int):
        return
    try:
        callback(percent)
    except Exception:  # noqa: BLE001 - caller callbacks must not break the transport
        logger.debug("Progress callback raised", exc_info=True)
