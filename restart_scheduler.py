"""Single-slot, debounced restart timer."""

from __future__ import annotations

import logging
from typing import Callable, Optional

from interfaces import TimerBackend, TimerHandle
from models import RestartRequest

try:
    from PySide6.QtCore import QTimer
except Exception:  # pragma: no cover
    QTimer = None  # type: ignore

log = logging.getLogger(__name__)

RestartAction = Callable[[RestartRequest], None]


class RestartScheduler:
    """Holds at most one pending restart.

    Scheduling while a request is pending cancels it first, which collapses a
    burst of engine errors into a single delayed restart.
    """

    def __init__(self, backend: TimerBackend) -> None:
        self._backend = backend
        self._pending: Optional[RestartRequest] = None
        self._handle: Optional[TimerHandle] = None

    @property
    def pending(self) -> Optional[RestartRequest]:
        return self._pending

    def schedule(self, request: RestartRequest, action: RestartAction) -> None:
        if self._pending is not None:
            log.debug(
                "Replacing restart #%d with #%d", self._pending.request_id, request.request_id
            )
        self.cancel()
        self._pending = request

        def _fire() -> None:
            # A superseded timer that slipped through cancel() must not act.
            if self._pending is not request:
                return
            self._pending = None
            handle = self._handle
            action(request)
            # Keep the fired handle until the action has run.
            if self._handle is handle:
                self._handle = None

        self._handle = self._backend.call_later(request.delay_ms, _fire)

    def cancel(self) -> None:
        handle = self._handle
        self._handle = None
        self._pending = None
        if handle is not None:
            handle.cancel()


class _QtTimerHandle:
    def __init__(self, timer: QTimer, release: Callable[[QTimer], None]) -> None:
        self._timer = timer
        self._release = release

    def cancel(self) -> None:
        self._timer.stop()
        self._release(self._timer)


class QtTimerBackend:
    """Runs callbacks on the Qt event loop with single-shot QTimers.

    Timers are kept referenced here until control is back in the event loop,
    so a timer is never garbage collected from inside its own timeout slot.
    """

    def __init__(self) -> None:
        self._timers: set = set()

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> _QtTimerHandle:
        if QTimer is None:
            raise RuntimeError("PySide6 is not installed")
        timer = QTimer()
        timer.setSingleShot(True)

        def _on_timeout() -> None:
            try:
                callback()
            finally:
                self._release_later(timer)

        timer.timeout.connect(_on_timeout)
        self._timers.add(timer)
        timer.start(delay_ms)
        return _QtTimerHandle(timer, self._release_later)

    def _release_later(self, timer: QTimer) -> None:
        QTimer.singleShot(0, lambda: self._timers.discard(timer))
