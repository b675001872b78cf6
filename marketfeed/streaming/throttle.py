"""Throttle/coalesce primitive for display updates."""

from __future__ import annotations

import asyncio
import time
from typing import Any, Callable, Generic, Optional, TypeVar


T = TypeVar("T")

_MISSING = object()


class Throttler(Generic[T]):
    """
    Rate-limits emissions to at most one per `throttle_ms` window.

    An update arriving after the window has elapsed is emitted immediately.
    Otherwise it becomes the pending value (replacing any earlier pending one)
    and a single timer is armed for the rest of the window; when it fires, the
    latest pending value is emitted. The last update of a burst is therefore
    always delivered, and it is never older than what was submitted.

    `clock` returns seconds; `call_later(delay_s, callback)` must return a handle
    with cancel(). Both default to the running asyncio loop.
    """

    def __init__(
        self,
        emit: Callable[[T], None],
        throttle_ms: float,
        clock: Callable[[], float] = time.monotonic,
        call_later: Optional[Callable[[float, Callable[[], None]], Any]] = None,
    ):
        self._emit = emit
        self.throttle_ms = max(0.0, float(throttle_ms))
        self._clock = clock
        self._call_later = call_later
        self._last_emit: float | None = None
        self._pending: Any = _MISSING
        self._timer: Any = None

    @property
    def has_pending(self) -> bool:
        return self._pending is not _MISSING

    def submit(self, value: T) -> None:
        if self.throttle_ms <= 0:
            self._emit(value)
            return

        now = self._clock()
        if self._last_emit is None or (now - self._last_emit) * 1000.0 >= self.throttle_ms:
            self._cancel_timer()
            self._pending = _MISSING
            self._last_emit = now
            self._emit(value)
            return

        self._pending = value
        if self._timer is None:
            remaining_ms = self.throttle_ms - (now - self._last_emit) * 1000.0
            self._timer = self._schedule(max(0.0, remaining_ms) / 1000.0, self._fire)

    def cancel(self) -> None:
        """Drop the pending value and disarm the timer."""
        self._cancel_timer()
        self._pending = _MISSING

    def reset(self) -> None:
        """cancel() and forget the last emission time (next submit emits at once)."""
        self.cancel()
        self._last_emit = None

    def _fire(self) -> None:
        self._timer = None
        if self._pending is _MISSING:
            return
        value = self._pending
        self._pending = _MISSING
        self._last_emit = self._clock()
        self._emit(value)

    def _schedule(self, delay: float, callback: Callable[[], None]) -> Any:
        if self._call_later is not None:
            return self._call_later(delay, callback)
        return asyncio.get_running_loop().call_later(delay, callback)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
