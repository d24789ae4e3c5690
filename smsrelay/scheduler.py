"""Timer-based scheduling for delivery attempts."""
from __future__ import annotations

import logging
import threading
import time
from typing import Callable, List, Protocol

logger = logging.getLogger(__name__)


class ScheduledTask(Protocol):
    def cancel(self) -> None:
        ...


class RetryScheduler(Protocol):
    """Runs ``callback`` once after ``delay`` seconds on its own worker."""

    def schedule(self, delay: float, callback: Callable[[], None]) -> ScheduledTask:
        ...


class ThreadingScheduler:
    """Schedules each callback on a :class:`threading.Timer`.

    Every timer is its own thread, so a waiting retry only occupies the
    delivery it belongs to. Timers are non-daemon and run to completion
    unless cancelled.
    """

    def __init__(self, *, name: str = "smsrelay-delivery") -> None:
        self._name = name
        self._lock = threading.Lock()
        self._pending: List[threading.Timer] = []

    def schedule(self, delay: float, callback: Callable[[], None]) -> threading.Timer:
        timer = threading.Timer(max(0.0, delay), self._run, args=(callback,))
        timer.name = self._name
        with self._lock:
            self._pending.append(timer)
        timer.start()
        return timer

    def _run(self, callback: Callable[[], None]) -> None:
        try:
            callback()
        except Exception:  # noqa: BLE001 - a worker must never take the process down
            logger.exception("Scheduled delivery task failed")
        finally:
            current = threading.current_thread()
            with self._lock:
                self._pending = [timer for timer in self._pending if timer is not current]

    def cancel_all(self) -> None:
        with self._lock:
            pending, self._pending = self._pending, []
        for timer in pending:
            timer.cancel()

    def join(self, timeout: float | None = None) -> None:
        """Wait until all scheduled work, including retries, has finished."""

        while True:
            with self._lock:
                pending = list(self._pending)
            if not pending:
                return
            for timer in pending:
                timer.join(timeout)
            with self._lock:
                self._pending = [timer for timer in self._pending if timer.is_alive()]
            if timeout is not None:
                return


class _Completed:
    def cancel(self) -> None:
        return None


class InlineScheduler:
    """Runs callbacks synchronously in the calling thread.

    Used for one-shot deliveries from the command line and in tests, where
    ``sleep`` can be replaced to observe the backoff delays.
    """

    def __init__(self, *, sleep: Callable[[float], None] = time.sleep) -> None:
        self._sleep = sleep

    def schedule(self, delay: float, callback: Callable[[], None]) -> ScheduledTask:
        if delay > 0:
            self._sleep(delay)
        callback()
        return _Completed()


__all__ = ["InlineScheduler", "RetryScheduler", "ScheduledTask", "ThreadingScheduler"]
