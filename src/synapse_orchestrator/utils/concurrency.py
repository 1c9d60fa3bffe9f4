"""Thread-based concurrency primitives used by the runner and lock heartbeat."""

from __future__ import annotations

import threading
import time
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable


class CancellationToken:
    """Cooperative cancellation token backed by ``threading.Event``."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason: str | None = None

    def cancel(self, reason: str | None = None) -> None:
        if not self._event.is_set():
            self._reason = reason
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def wait(self, timeout_seconds: float | None = None) -> bool:
        return self._event.wait(timeout_seconds)


class PeriodicWorker:
    """Run ``callback`` every ``interval_seconds`` on a daemon thread until stopped.

    ``callback`` returns ``False`` to stop the loop from inside the worker.
    """

    def __init__(
        self,
        callback: Callable[[], bool | None],
        *,
        interval_seconds: float,
        name: str,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        self._callback = callback
        self._interval_seconds = interval_seconds
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._loop, name=name, daemon=True)

    def start(self) -> None:
        self._thread.start()

    def stop(self, *, timeout_seconds: float = 5.0) -> None:
        self._stop.set()
        if self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout_seconds)

    @property
    def is_running(self) -> bool:
        return self._thread.is_alive() and not self._stop.is_set()

    def _loop(self) -> None:
        while not self._stop.wait(self._interval_seconds):
            if self._callback() is False:
                self._stop.set()
                return


def sleep_ms(duration_ms: int, *, stop_event: threading.Event | None = None) -> bool:
    """Sleep for ``duration_ms``; return ``True`` when ``stop_event`` fired first."""

    if duration_ms <= 0:
        return stop_event.is_set() if stop_event is not None else False
    if stop_event is None:
        time.sleep(duration_ms / 1000.0)
        return False
    return stop_event.wait(duration_ms / 1000.0)


__all__ = ["CancellationToken", "PeriodicWorker", "sleep_ms"]
