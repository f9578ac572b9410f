"""Progress emitter.

Operations report raw percentages as often as they like; the emitter clamps
and rounds them and forwards only meaningful advances to the caller.  In
the isolated strategy every forwarded update crosses the process boundary
as a message, so the throttle keeps that traffic bounded.

Guarantees for one emitter (one operation):
- forwarded values are integers in ``[0, 100]``, strictly increasing;
- 100 is forwarded exactly once, and nothing is forwarded after it;
- an exception raised by the callback never reaches the operation.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from spatial_engine.core.constants import DEFAULT_PROGRESS_MIN_STEP

logger = logging.getLogger("spatial_engine.operations.progress")

ProgressCallback = Callable[[int], object]


class ProgressEmitter:
    """Throttle a raw percentage stream onto a caller callback."""

    def __init__(
        self,
        callback: ProgressCallback | None = None,
        *,
        min_step: int = DEFAULT_PROGRESS_MIN_STEP,
    ) -> None:
        self._callback = callback
        self._min_step = min_step
        self._last = -1

    @property
    def last(self) -> int:
        """Last forwarded value, ``-1`` before the first emission."""
        return self._last

    @property
    def finished(self) -> bool:
        return self._last == 100

    def __call__(self, percent: float) -> None:
        pct = max(0, min(100, round(percent)))
        if self.finished:
            return
        if pct == 100 or pct - self._last >= self._min_step:
            self._last = pct
            self._forward(pct)

    def fraction(self, done: int, total: int) -> None:
        """Emit ``done / total`` as a percentage (``total`` may be 0)."""
        self(done / max(1, total) * 100)

    def finish(self) -> None:
        """Emit the terminal 100 unless it was already forwarded."""
        self(100)

    def _forward(self, pct: int) -> None:
        if self._callback is None:
            return
        try:
            self._callback(pct)
        except Exception:  # noqa: BLE001 - caller-side failures must not abort the operation
            logger.debug("Progress callback raised; ignoring", exc_info=True)
