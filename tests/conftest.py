"""Shared fixtures for orderlive tests."""

from datetime import datetime, timedelta, timezone

import pytest


class ManualTimer:
    """Timer handle returned by ManualScheduler."""

    def __init__(self, when: float, callback, args):
        self.when = when
        self.callback = callback
        self.args = args
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Deterministic stand-in for an event loop's ``call_later``.

    Time only moves when a test calls ``advance``.
    """

    def __init__(self):
        self.now = 0.0
        self.timers: list[ManualTimer] = []

    def call_later(self, delay, callback, *args):
        timer = ManualTimer(self.now + delay, callback, args)
        self.timers.append(timer)
        return timer

    def pending(self) -> list[ManualTimer]:
        return [t for t in self.timers if not t.cancelled]

    def advance(self, seconds: float) -> None:
        """Run every timer due within ``seconds``, in due order."""
        deadline = self.now + seconds
        while True:
            due = [t for t in self.pending() if t.when <= deadline]
            if not due:
                break
            timer = min(due, key=lambda t: t.when)
            self.timers.remove(timer)
            self.now = timer.when
            timer.callback(*timer.args)
        self.now = deadline


class ManualClock:
    """Wall clock that only moves when told to."""

    def __init__(self, start: datetime = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def tick(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()
