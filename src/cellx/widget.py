"""Widgets — interactive values that feed the graph like ordinary symbols.

A Widget is created by cell code and published under a global name like
any other value. Cells that read that name depend on the defining cell.
When the widget's value changes, the engine treats the defining cell as
changed: everything downstream re-runs, while the defining cell itself is
not re-executed, so the widget object (and its value) survives.

Thread safety: call set_scheduler() once from the main/UI thread. After
that, any .set() from a background thread is marshaled through it.
Main-thread .set() remains synchronous.
"""

from __future__ import annotations

import threading
from typing import Callable, Generic, TypeVar

T = TypeVar("T")

Disposer = Callable[[], None]

# ─── Auto-marshal ────────────────────────────────────────────────────────────
_scheduler: Callable[[Callable[[], None]], None] | None = None
_scheduler_thread: threading.Thread | None = None


def set_scheduler(scheduler: Callable[[Callable[[], None]], None] | None) -> None:
    """Set the global thread scheduler for cross-thread widget updates.

    Call once from the main/UI thread:
        cellx.set_scheduler(app.call_from_thread)

    Passing None turns marshaling off again.
    """
    global _scheduler, _scheduler_thread
    _scheduler = scheduler
    _scheduler_thread = threading.current_thread() if scheduler is not None else None


class Widget(Generic[T]):
    """An observable UI value.

    Usage (cell code):
        threshold = Widget(10, label="Threshold")

    Another cell:
        hits = [x for x in data if x > threshold.value]

    Setting ``threshold.value = 20`` (from the UI) re-runs the second cell.
    """

    __slots__ = ("_value", "_observers", "label", "__weakref__")

    def __init__(self, value: T, *, label: str | None = None) -> None:
        self._value = value
        self._observers: list[Callable[[Widget[T]], None]] = []
        self.label = label

    @property
    def value(self) -> T:
        return self._value

    @value.setter
    def value(self, value: T) -> None:
        self.set(value)

    def get(self) -> T:
        return self._value

    def set(self, value: T) -> None:
        """Write a new value. Auto-marshals from background threads."""
        if _scheduler is not None and threading.current_thread() != _scheduler_thread:
            _scheduler(lambda v=value: self._set_direct(v))
        else:
            self._set_direct(value)

    def _set_direct(self, value: T) -> None:
        old = self._value
        if old is not value and old != value:
            self._value = value
            self._notify()

    def _notify(self) -> None:
        for observer in list(self._observers):
            observer(self)

    def subscribe(self, observer: Callable[[Widget[T]], None]) -> Disposer:
        """Call ``observer(widget)`` after every value change."""
        self._observers.append(observer)

        def _unsubscribe() -> None:
            try:
                self._observers.remove(observer)
            except ValueError:
                pass

        return _unsubscribe

    def __repr__(self) -> str:
        label = f", label={self.label!r}" if self.label else ""
        return f"Widget({self._value!r}{label})"
