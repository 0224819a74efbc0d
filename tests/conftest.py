# ruff: noqa: E402
# tests/conftest.py
from __future__ import annotations

import sys
from collections.abc import Callable
from pathlib import Path

import pytest

# Ensure project root importable
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from packslist.search.catalog import Catalog, load_catalog


class _ManualTask:
    def __init__(self, due: float, order: int, fn: Callable[[], None]) -> None:
        self.due = due
        self.order = order
        self.fn = fn
        self.cancelled = False
        self.ran = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """
    Deterministic Scheduler: nothing runs until the test calls advance().

    advance(dt) runs every non-cancelled task that falls due within the next
    dt seconds, in due order, including tasks scheduled by other tasks.
    """

    def __init__(self) -> None:
        self.now = 0.0
        self.tasks: list[_ManualTask] = []
        self._order = 0

    def call_later(self, delay: float, fn: Callable[[], None]) -> _ManualTask:
        self._order += 1
        task = _ManualTask(self.now + float(delay), self._order, fn)
        self.tasks.append(task)
        return task

    def pending(self) -> list[_ManualTask]:
        return [t for t in self.tasks if not t.cancelled and not t.ran]

    def advance(self, dt: float) -> None:
        target = self.now + float(dt)
        while True:
            due = [t for t in self.pending() if t.due <= target]
            if not due:
                break
            task = min(due, key=lambda t: (t.due, t.order))
            self.now = max(self.now, task.due)
            task.ran = True
            task.fn()
        self.now = target


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, dt: float) -> None:
        self.now += float(dt)


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def clock(monkeypatch: pytest.MonkeyPatch) -> FakeClock:
    """Freeze the privacy cache's clock; advance() moves it forward."""
    c = FakeClock()
    monkeypatch.setattr("packslist.search.cache._now", c)
    return c


@pytest.fixture
def builtin_catalog(tmp_path: Path) -> Catalog:
    """The built-in fallback catalog, independent of any YAML on disk."""
    return load_catalog(tmp_path / "no-such-catalog.yaml")
