"""Cancellable one-shot and repeating timers backed by threads."""

from __future__ import annotations

import threading
from typing import Callable


class ThreadTimerHandle:
    def __init__(self, timer: threading.Timer) -> None:
        self._timer = timer

    def cancel(self) -> None:
        self._timer.cancel()


class RepeatingTimerHandle:
    def __init__(self, interval_s: float, callback: Callable[[], None]) -> None:
        self._interval_s = interval_s
        self._callback = callback
        self._stop_event = threading.Event()
        self._thread = threading.Thread(target=self._run, daemon=True)

    def start(self) -> None:
        self._thread.start()

    def cancel(self) -> None:
        self._stop_event.set()

    def _run(self) -> None:
        while not self._stop_event.wait(self._interval_s):
            self._callback()


class ThreadingTimerFactory:
    def call_later(self, delay_s: float, callback: Callable[[], None]) -> ThreadTimerHandle:
        timer = threading.Timer(delay_s, callback)
        timer.daemon = True
        timer.start()
        return ThreadTimerHandle(timer)

    def call_every(self, interval_s: float, callback: Callable[[], None]) -> RepeatingTimerHandle:
        handle = RepeatingTimerHandle(interval_s, callback)
        handle.start()
        return handle
