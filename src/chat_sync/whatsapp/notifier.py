"""Trailing-edge debounce for "store changed" notifications."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Protocol

logger = logging.getLogger(__name__)


class Cancellable(Protocol):
    def start(self) -> None: ...

    def cancel(self) -> None: ...


TimerFactory = Callable[[float, Callable[[], None]], Cancellable]


def thread_timer(delay: float, callback: Callable[[], None]) -> Cancellable:
    """Default timer: a daemon ``threading.Timer``."""
    timer = threading.Timer(delay, callback)
    timer.daemon = True
    return timer


class ChangeNotifier:
    """Coalesce bursts of ``notify()`` calls into one ``callback()``.

    Each call restarts the quiet window; the callback fires once the
    window elapses with no further calls. A steady stream of calls
    faster than the window never fires.
    """

    def __init__(
        self,
        callback: Callable[[], None],
        window: float = 0.3,
        timer_factory: TimerFactory = thread_timer,
    ):
        self.callback = callback
        self.window = window
        self._timer_factory = timer_factory
        self._timer: Cancellable | None = None
        self._lock = threading.Lock()

    def notify(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            timer = self._timer_factory(self.window, lambda: self._fire(timer))
            self._timer = timer
            timer.start()

    def cancel(self) -> None:
        """Drop any pending notification without firing it."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def _fire(self, timer: Cancellable) -> None:
        with self._lock:
            # A superseded timer may still fire if cancel() raced its expiry.
            if self._timer is not timer:
                return
            self._timer = None
        try:
            self.callback()
        except Exception:
            logger.exception("Change notification callback failed")
