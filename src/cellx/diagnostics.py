"""Diagnostics — read-only queries over the engine's graph.

External checkers and linters use this instead of re-deriving ownership
or cycles themselves. Everything is reported by cell id, in document
order, so output is stable across runs.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from cellx.errors import ConflictError, CycleError, ParseError
from cellx.graph import DependencyEdge
from cellx.guard import MutationWarning

if TYPE_CHECKING:
    from cellx.engine import Engine


class Diagnostics:
    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def parse_errors(self) -> list[ParseError]:
        arena = self._engine._arena
        with self._engine._lock:
            return [
                arena.analyses[n].error
                for n in arena.order
                if arena.analyses[n].error is not None
            ]

    def conflicts(self) -> list[ConflictError]:
        """One ConflictError per (name, claimant)."""
        engine = self._engine
        arena, graph = engine._arena, engine._graph
        errors = []
        with engine._lock:
            for name, claimants in graph.conflicts().items():
                nodes = arena.sorted(claimants)
                cells = tuple(arena.ids[n] for n in nodes)
                errors.extend(ConflictError(arena.ids[n], name, cells) for n in nodes)
        return errors

    def cycles(self) -> list[tuple[str, ...]]:
        """Cycle memberships, each as a tuple of cell ids."""
        engine = self._engine
        arena = engine._arena
        with engine._lock:
            return sorted(
                (tuple(arena.ids[n] for n in arena.sorted(cycle)) for cycle in engine._graph.cycles()),
                key=lambda ids: arena.position(arena.nodes[ids[0]]),
            )

    def cycle_errors(self) -> list[CycleError]:
        return [CycleError(cell_id, cycle) for cycle in self.cycles() for cell_id in cycle]

    def mutation_warnings(self) -> list[MutationWarning]:
        arena = self._engine._arena
        with self._engine._lock:
            return [w for n in arena.order for w in arena.warnings[n]]

    def edges(self) -> list[DependencyEdge]:
        """(producer id, consumer id, symbol) for every edge."""
        engine = self._engine
        arena = engine._arena
        with engine._lock:
            edges = sorted(
                engine._graph.edges(),
                key=lambda e: (arena.position(e.producer), arena.position(e.consumer), e.symbol),
            )
            return [DependencyEdge(arena.ids[e.producer], arena.ids[e.consumer], e.symbol) for e in edges]

    def external_reads(self) -> dict[str, frozenset[str]]:
        """Names each cell reads that no cell defines (builtins included)."""
        engine = self._engine
        arena = engine._arena
        with engine._lock:
            return {
                arena.ids[n]: reads
                for n in arena.order
                if (reads := engine._graph.external_reads(n))
            }
