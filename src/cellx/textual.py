"""Textual integration for cellx. Opt-in — requires textual.

Pushes cell results into Textual widgets. Passes may run on worker
threads and may finish while the app is swapping screens, so every
delivery is guarded here rather than at each call site: skipped while the
app is paused or not running, NoMatches from widget queries ignored, and
cross-thread calls marshaled through ``app.call_from_thread``.
"""

import threading
from contextlib import contextmanager

from textual.css.query import NoMatches

from cellx._anchor import CellState

# Module-owned pause state, keyed by id(app) so multiple apps work in tests.
_paused_apps: set[int] = set()


@contextmanager
def pause(app):
    """Suspend deliveries during widget replacement."""
    key = id(app)
    _paused_apps.add(key)
    try:
        yield
    finally:
        _paused_apps.discard(key)


def is_safe(app) -> bool:
    """Is the widget tree in a queryable state?"""
    return app.is_running and id(app) not in _paused_apps


def _guard(app, fn):
    """Wrap fn so it only runs when safe, on the binding thread, ignoring NoMatches."""
    _main = threading.get_ident()

    def _guarded(value):
        if not is_safe(app):
            return
        if threading.get_ident() != _main:
            app.call_from_thread(_safe, value)
        else:
            _safe(value)

    def _safe(value):
        try:
            fn(value)
        except NoMatches:
            pass

    return _guarded


def bind_events(app, engine, effect_fn, *, cell_id=None):
    """Call ``effect_fn(event)`` for every cell event, or one cell's events.

    Returns a disposer.
    """
    stream = engine.events if cell_id is None else engine.events.for_cell(cell_id)
    unsubscribe = stream.subscribe(_guard(app, effect_fn))
    if stream is engine.events:
        return unsubscribe
    return stream.dispose


def bind_output(app, engine, cell_id, effect_fn, *, on_error=None):
    """Call ``effect_fn(output)`` whenever ``cell_id`` completes successfully.

    If ``on_error`` is given it receives the cell's error whenever the cell
    ends in error or blocked state; hidden errors (cancellation) are not
    delivered. Fires once right away if the cell already has a result.
    Returns a disposer.
    """

    def _on_event(event):
        if event.state is CellState.OK:
            effect_fn(event.output)
        elif on_error is not None and event.state in (CellState.ERROR, CellState.BLOCKED):
            if event.error is not None and event.error.visible:
                on_error(event.error)

    cell = engine.cell(cell_id)
    if cell.state is CellState.OK:
        _guard(app, effect_fn)(cell.output)
    return bind_events(app, engine, _on_event, cell_id=cell_id)
