"""Cell handles — read-only views over arena data.

All state lives in the arena; a Cell holds its node and reads through.
A handle for a deleted cell raises UnknownCellError on access.
"""

from __future__ import annotations

from cellx._anchor import Arena, CellState
from cellx.errors import CellError, UnknownCellError
from cellx.guard import MutationWarning


class Cell:
    __slots__ = ("_arena", "_node")

    def __init__(self, arena: Arena, node: int) -> None:
        self._arena = arena
        self._node = node

    def _get(self, table: dict):
        try:
            return table[self._node]
        except KeyError:
            raise UnknownCellError(self._node) from None

    @property
    def id(self) -> str:
        return self._get(self._arena.ids)

    @property
    def node(self) -> int:
        return self._node

    @property
    def source(self) -> str:
        return self._get(self._arena.sources)

    @property
    def defines(self) -> frozenset[str]:
        return self._get(self._arena.analyses).defines

    @property
    def reads(self) -> frozenset[str]:
        return self._get(self._arena.analyses).reads

    @property
    def locals(self) -> frozenset[str]:
        return self._get(self._arena.analyses).locals

    @property
    def state(self) -> CellState:
        return self._get(self._arena.states)

    @property
    def output(self) -> object:
        return self._get(self._arena.outputs)

    @property
    def error(self) -> CellError | None:
        return self._get(self._arena.errors)

    @property
    def generation(self) -> int:
        return self._get(self._arena.generations)

    @property
    def position(self) -> int:
        if self._node not in self._arena:
            raise UnknownCellError(self._node)
        return self._arena.position(self._node)

    @property
    def warnings(self) -> list[MutationWarning]:
        return list(self._get(self._arena.warnings))

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Cell) and other._arena is self._arena and other._node == self._node

    def __hash__(self) -> int:
        return hash((id(self._arena), self._node))

    def __repr__(self) -> str:
        if self._node not in self._arena:
            return f"Cell(<deleted {self._node}>)"
        return f"Cell({self.id!r}, {self.state.value})"
