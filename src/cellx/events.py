"""Cell events — a push-based stream of cell state changes.

Every state transition a pass makes (running, ok, error, blocked, stale)
is emitted as a CellEvent on ``engine.events``. Displays, loggers and
persistence layers subscribe and derive what they need with
map/filter/debounce. Each operator returns a new stream; dispose() tears
down the chain below it.
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING, Callable, Generic, NamedTuple, TypeVar

if TYPE_CHECKING:
    from cellx._anchor import CellState
    from cellx.errors import CellError

T = TypeVar("T")
U = TypeVar("U")

Disposer = Callable[[], None]


class CellEvent(NamedTuple):
    cell_id: str
    state: CellState
    generation: int
    output: object = None
    error: CellError | None = None


class EventStream(Generic[T]):
    """Push-based event stream with operator chaining."""

    def __init__(self) -> None:
        self._subscribers: list[Callable[[T], None]] = []
        self._children: list[EventStream] = []
        self._disposed = False
        self._parent_disposer: Disposer | None = None

    def emit(self, value: T) -> None:
        if self._disposed:
            return
        for cb in list(self._subscribers):
            cb(value)

    def subscribe(self, callback: Callable[[T], None]) -> Disposer:
        """Register a callback. Returns a function that removes it."""
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            try:
                self._subscribers.remove(callback)
            except ValueError:
                pass  # already removed

        return _unsubscribe

    def map(self, fn: Callable[[T], U]) -> EventStream[U]:
        child: EventStream[U] = self._child()
        self.subscribe(lambda v: child.emit(fn(v)))
        return child

    def filter(self, fn: Callable[[T], bool]) -> EventStream[T]:
        child: EventStream[T] = self._child()
        self.subscribe(lambda v: child.emit(v) if fn(v) else None)
        return child

    def for_cell(self, cell_id: str) -> EventStream[T]:
        """Only events about ``cell_id``."""
        return self.filter(lambda event: event.cell_id == cell_id)

    def debounce(self, seconds: float) -> EventStream[T]:
        """Emit only the last event of a burst, after ``seconds`` of quiet.

        Useful for coalescing the many transitions of a large pass into a
        single redraw. Timers are daemon threads.
        """
        child: EventStream[T] = self._child()
        timer_lock = threading.Lock()
        timer_ref: list[threading.Timer | None] = [None]

        def _on_event(value: T) -> None:
            with timer_lock:
                if timer_ref[0] is not None:
                    timer_ref[0].cancel()
                t = threading.Timer(seconds, child.emit, args=[value])
                t.daemon = True
                timer_ref[0] = t
                t.start()

        self.subscribe(_on_event)
        return child

    def dispose(self) -> None:
        """Tear down this stream and all downstream children."""
        self._disposed = True
        self._subscribers.clear()
        for child in list(self._children):
            child.dispose()
        self._children.clear()
        if self._parent_disposer is not None:
            self._parent_disposer()
            self._parent_disposer = None

    @property
    def disposed(self) -> bool:
        return self._disposed

    def _child(self) -> EventStream:
        child: EventStream = EventStream()
        self._children.append(child)

        def _remove() -> None:
            try:
                self._children.remove(child)
            except ValueError:
                pass

        child._parent_disposer = _remove
        return child
