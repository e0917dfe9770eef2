"""Shared fixtures for the speed reader test suite.

The controller never sleeps in tests: a fake scheduler with a virtual clock
stands in for ThreadingScheduler, so timer expiries happen only when a test
advances time.
"""

from __future__ import annotations

from typing import Callable, List

import pytest

from speedread_engine import ReaderController


class FakeHandle:
    def __init__(self, due: float, delay: float, callback: Callable[[], None]) -> None:
        self.due = due
        self.delay = delay
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    """Virtual-clock scheduler; ``advance(ms)`` fires due timers in order."""

    def __init__(self) -> None:
        self.now = 0.0
        self.handles: List[FakeHandle] = []

    def schedule(self, delay: float, callback: Callable[[], None]) -> FakeHandle:
        handle = FakeHandle(self.now + delay, delay, callback)
        self.handles.append(handle)
        return handle

    @property
    def active(self) -> List[FakeHandle]:
        return [h for h in self.handles if not h.cancelled and not h.fired]

    def advance(self, ms: float) -> None:
        # small tolerance for float delays such as 220.00000000000003
        target = self.now + ms + 1e-6
        while True:
            due = [h for h in self.active if h.due <= target]
            if not due:
                break
            handle = min(due, key=lambda h: h.due)
            handle.fired = True
            self.now = handle.due
            handle.callback()
        self.now = target


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def controller(scheduler):
    return ReaderController(scheduler=scheduler, rate=300)
