"""Run tracking — which cell run (if any) the current code is executing in.

Uses a contextvar so cell code, and widgets it touches, can find the pass
and cell it belongs to without any object being passed around.

Batching: engine mutations inside ``with engine.transaction()`` accumulate
changed cells and flush them as one pass when the outermost scope exits.
"""

from __future__ import annotations

import contextvars
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from cellx.scheduler import Pass

# The (pass, node) currently executing cell code, or None.
current_run: contextvars.ContextVar[tuple[Pass, int] | None] = contextvars.ContextVar(
    "current_run", default=None
)


def interrupted() -> bool:
    """True if the running cell has been cancelled or its pass superseded.

    Long-running cell code can poll this to exit early:

        for chunk in chunks:
            if cellx.interrupted():
                break
            process(chunk)

    Outside of a cell run it is always False.
    """
    run = current_run.get()
    if run is None:
        return False
    pass_, node = run
    return pass_.is_cancelled(node) or pass_.superseded


class Batch:
    """Nested batching scope. Changed nodes are held until depth drops to 0.

    ``skip`` holds widget owners: changed, but not to be re-executed.
    """

    __slots__ = ("depth", "pending", "skip")

    def __init__(self) -> None:
        self.depth = 0
        self.pending: set[int] = set()
        self.skip: set[int] = set()

    def begin(self) -> None:
        self.depth += 1

    def add(self, changed: set[int], skip: set[int]) -> None:
        self.pending |= changed
        self.skip = (self.skip | skip) - (changed - skip)

    def end(self) -> tuple[set[int], set[int]] | None:
        """Exit a scope. Returns (pending, skip) when the outermost scope exits."""
        self.depth -= 1
        if self.depth == 0:
            flushed = (self.pending, self.skip)
            self.pending, self.skip = set(), set()
            return flushed
        return None

    @property
    def active(self) -> bool:
        return self.depth > 0
