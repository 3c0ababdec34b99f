from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Protocol

logger = logging.getLogger(__name__)

Task = Callable[[], None]


class TaskHandle(Protocol):
    @property
    def cancelled(self) -> bool: ...

    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_every(self, interval_s: float, fn: Task, *, name: str = "") -> TaskHandle: ...


def _run_task(name: str, fn: Task) -> None:
    try:
        fn()
    except Exception as exc:
        logger.exception("scheduled task %s failed", name or fn, exc_info=exc)


class ThreadTaskHandle:
    def __init__(self, interval_s: float, fn: Task, name: str):
        self._stop = threading.Event()
        self._interval_s = interval_s
        self._fn = fn
        self._name = name
        self._thread = threading.Thread(target=self._loop, name=name or None, daemon=True)

    def _loop(self) -> None:
        while not self._stop.wait(self._interval_s):
            _run_task(self._name, self._fn)

    def start(self) -> None:
        self._thread.start()

    @property
    def cancelled(self) -> bool:
        return self._stop.is_set()

    def cancel(self) -> None:
        self._stop.set()
        # A task may cancel itself from inside its own callback.
        if self._thread.is_alive() and threading.current_thread() is not self._thread:
            self._thread.join(timeout=self._interval_s + 1)


class ThreadScheduler:
    """Runs each recurring task on its own daemon thread."""

    def __init__(self) -> None:
        self._handles: list[ThreadTaskHandle] = []

    def call_every(self, interval_s: float, fn: Task, *, name: str = "") -> ThreadTaskHandle:
        if interval_s <= 0:
            raise ValueError("interval must be positive")
        handle = ThreadTaskHandle(interval_s, fn, name)
        self._handles = [h for h in self._handles if not h.cancelled]
        self._handles.append(handle)
        handle.start()
        return handle

    def shutdown(self) -> None:
        for handle in self._handles:
            handle.cancel()
        self._handles.clear()


@dataclass
class ManualTaskHandle:
    interval_s: float
    fn: Task
    name: str
    next_due: float
    _cancelled: bool = field(default=False, repr=False)

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True


class ManualScheduler:
    """Scheduler driven by explicit advance() calls.

    For hosts that own their event loop, and for deterministic tests.
    Tasks fire in due-time order; a task cancelled by an earlier task in
    the same advance() never fires again.
    """

    def __init__(self) -> None:
        self.now = 0.0
        self._handles: list[ManualTaskHandle] = []

    def call_every(self, interval_s: float, fn: Task, *, name: str = "") -> ManualTaskHandle:
        if interval_s <= 0:
            raise ValueError("interval must be positive")
        handle = ManualTaskHandle(interval_s, fn, name, next_due=self.now + interval_s)
        self._handles.append(handle)
        return handle

    @property
    def pending(self) -> list[ManualTaskHandle]:
        return [h for h in self._handles if not h.cancelled]

    def advance(self, seconds: float) -> int:
        """Move the clock forward, firing every task that comes due. Returns fire count."""
        target = self.now + seconds
        fired = 0
        while True:
            due = [h for h in self.pending if h.next_due <= target]
            if not due:
                break
            handle = min(due, key=lambda h: h.next_due)
            self.now = handle.next_due
            handle.next_due += handle.interval_s
            _run_task(handle.name, handle.fn)
            fired += 1
        self.now = target
        self._handles = self.pending
        return fired

    def shutdown(self) -> None:
        for handle in self._handles:
            handle.cancel()
        self._handles.clear()
