"""Cell arena — plain Python structures that hold all per-cell data.

Cells are integer nodes handed out by a counter; everything about a cell
lives in dicts keyed by that integer. Graph edges, the scheduler and the
execution context all refer to cells by node, never by object, so a cell
can be re-analyzed or removed without chasing references.

Cell handles (cellx.cell.Cell) are thin views holding a node.
"""

from __future__ import annotations

import enum
import itertools

from cellx.analyzer import Analysis
from cellx.errors import CellError, DuplicateCellError, UnknownCellError
from cellx.guard import MutationWarning


class CellState(str, enum.Enum):
    STALE = "stale"
    RUNNING = "running"
    OK = "ok"
    ERROR = "error"
    BLOCKED = "blocked"


class Arena:
    """Integer-indexed storage for every live cell."""

    def __init__(self) -> None:
        # ID generation: itertools.count is thread-safe (C-level GIL atomic)
        self._counter = itertools.count(1)

        # Identity and document order
        self.nodes: dict[str, int] = {}  # cell_id -> node
        self.ids: dict[int, str] = {}  # node -> cell_id
        self.order: list[int] = []
        self._positions: dict[int, int] | None = None

        # Source and static facts
        self.sources: dict[int, str] = {}
        self.analyses: dict[int, Analysis] = {}
        self.warnings: dict[int, list[MutationWarning]] = {}

        # Runtime state (written by ExecutionContext)
        self.states: dict[int, CellState] = {}
        self.outputs: dict[int, object] = {}
        self.errors: dict[int, CellError | None] = {}
        self.generations: dict[int, int] = {}

    def new(self, cell_id: str, source: str, position: int | None = None) -> int:
        if cell_id in self.nodes:
            raise DuplicateCellError(cell_id)
        node = next(self._counter)
        self.nodes[cell_id] = node
        self.ids[node] = cell_id
        if position is None or position >= len(self.order):
            self.order.append(node)
        else:
            self.order.insert(max(position, 0), node)
        self._positions = None
        self.sources[node] = source
        self.states[node] = CellState.STALE
        self.outputs[node] = None
        self.errors[node] = None
        self.generations[node] = 0
        self.warnings[node] = []
        return node

    def drop(self, node: int) -> None:
        cell_id = self.ids.pop(node)
        del self.nodes[cell_id]
        self.order.remove(node)
        self._positions = None
        for table in (self.sources, self.analyses, self.warnings, self.states,
                      self.outputs, self.errors, self.generations):
            table.pop(node, None)

    def move(self, node: int, position: int) -> None:
        self.order.remove(node)
        self.order.insert(max(0, min(position, len(self.order))), node)
        self._positions = None

    def node(self, cell_id: str) -> int:
        try:
            return self.nodes[cell_id]
        except KeyError:
            raise UnknownCellError(cell_id) from None

    def position(self, node: int) -> int:
        if self._positions is None:
            self._positions = {n: i for i, n in enumerate(self.order)}
        return self._positions[node]

    def sorted(self, nodes) -> list[int]:
        """Nodes in document order."""
        return sorted(nodes, key=self.position)

    def __contains__(self, node: int) -> bool:
        return node in self.ids

    def __len__(self) -> int:
        return len(self.order)
