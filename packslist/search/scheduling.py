# packslist/search/scheduling.py
from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Protocol


class TaskHandle(Protocol):
    def cancel(self) -> None:
        """Prevent the task from running if it has not started yet. Idempotent."""
        ...


class Scheduler(Protocol):
    """
    Minimal "run this later" interface.

    The engine only needs single-shot delayed calls; recurring work (the cache
    sweep) re-arms itself from inside the callback.
    """

    def call_later(self, delay: float, fn: Callable[[], None]) -> TaskHandle: ...


class ThreadingScheduler:
    """Scheduler backed by daemon threading.Timer instances."""

    def call_later(self, delay: float, fn: Callable[[], None]) -> TaskHandle:
        timer = threading.Timer(max(0.0, float(delay)), fn)
        timer.daemon = True
        timer.start()
        return timer


class RecurringTask:
    """
    Re-arming wrapper: runs `fn` every `interval` seconds until cancelled.

    Cancelling from inside `fn` is allowed and stops the next re-arm.
    """

    def __init__(self, scheduler: Scheduler, interval: float, fn: Callable[[], None]) -> None:
        self._scheduler = scheduler
        self._interval = interval
        self._fn = fn
        self._lock = threading.Lock()
        self._cancelled = False
        self._handle: TaskHandle | None = None

    def start(self) -> RecurringTask:
        self._arm()
        return self

    def _arm(self) -> None:
        with self._lock:
            if self._cancelled:
                return
            self._handle = self._scheduler.call_later(self._interval, self._tick)

    def _tick(self) -> None:
        with self._lock:
            if self._cancelled:
                return
        try:
            self._fn()
        finally:
            self._arm()

    def cancel(self) -> None:
        with self._lock:
            self._cancelled = True
            handle, self._handle = self._handle, None
        if handle is not None:
            handle.cancel()

    @property
    def cancelled(self) -> bool:
        return self._cancelled


__all__ = ["TaskHandle", "Scheduler", "ThreadingScheduler", "RecurringTask"]
