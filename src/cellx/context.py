"""Execution context — the shared namespace and its single writer.

Cells never write to the namespace directly. Each run gets a private scope
holding only the names it reads; on success its defined names are copied
back by ``publish``, which holds the lock and refuses results from a
generation that is no longer current. That keeps two guarantees:

- at most one completed cell result mutates the namespace at a time;
- a superseded run can never overwrite what a newer pass published.
"""

from __future__ import annotations

import builtins
import logging
import threading
from types import MappingProxyType
from typing import Iterable, Mapping

from cellx._anchor import Arena, CellState
from cellx.errors import CellError, StaleSymbolError

logger = logging.getLogger("cellx.context")


class ExecutionContext:
    """Namespace, generation counter and per-cell runtime state."""

    def __init__(self, arena: Arena, namespace: Mapping[str, object] | None = None) -> None:
        self._arena = arena
        self._namespace: dict[str, object] = dict(namespace or {})
        self._publisher: dict[str, int] = {}  # name -> node that published it
        self._published: dict[int, frozenset[str]] = {}  # node -> names it published
        self._stale: dict[str, int] = {}  # invalidated name -> node that owned it
        self._generation = 0
        self.lock = threading.RLock()

    # --- Generations ---

    @property
    def generation(self) -> int:
        return self._generation

    def begin_pass(self) -> int:
        with self.lock:
            self._generation += 1
            return self._generation

    def is_current(self, generation: int) -> bool:
        return generation == self._generation

    # --- Namespace ---

    @property
    def namespace(self) -> Mapping[str, object]:
        """Read-only live view of the namespace."""
        return MappingProxyType(self._namespace)

    def lookup(self, name: str) -> object:
        """Read a global. Raises StaleSymbolError if its producer failed."""
        with self.lock:
            if name in self._stale:
                node = self._stale[name]
                raise StaleSymbolError(name, self._arena.ids.get(node))
            return self._namespace[name]

    def is_stale(self, name: str) -> bool:
        return name in self._stale

    def publisher(self, name: str) -> int | None:
        return self._publisher.get(name)

    def provide(self, name: str, value: object) -> None:
        """Supply an external value that no cell owns."""
        with self.lock:
            self._namespace[name] = value
            self._stale.pop(name, None)

    def scope_for(self, reads: Iterable[str]) -> dict[str, object]:
        """Private scope for one cell run: the names it reads, plus builtins."""
        with self.lock:
            scope = {name: self._namespace[name] for name in reads if name in self._namespace}
        scope["__builtins__"] = builtins
        return scope

    def publish(self, node: int, generation: int, scope: Mapping[str, object], defines: Iterable[str]) -> bool:
        """Copy the cell's defined names from its scope into the namespace.

        Returns False, publishing nothing, if ``generation`` is stale.
        """
        with self.lock:
            if not self.is_current(generation):
                return False
            values = {name: scope[name] for name in defines if name in scope}
            # Names the cell used to define but no longer produces disappear.
            for name in self._published.get(node, frozenset()) - values.keys():
                self._forget(name, node)
            for name, value in values.items():
                self._namespace[name] = value
                self._publisher[name] = node
                self._stale.pop(name, None)
            self._published[node] = frozenset(values)
            return True

    def invalidate(self, node: int) -> frozenset[str]:
        """Remove a cell's published names, marking them stale."""
        with self.lock:
            names = self._published.pop(node, frozenset())
            for name in names:
                if self._forget(name, node):
                    self._stale[name] = node
            return names

    def discard(self, node: int) -> frozenset[str]:
        """Remove a deleted cell's names without marking them stale."""
        with self.lock:
            names = self._published.pop(node, frozenset())
            for name in names:
                self._forget(name, node)
            for name, owner in list(self._stale.items()):
                if owner == node:
                    del self._stale[name]
            return names

    def _forget(self, name: str, node: int) -> bool:
        if self._publisher.get(name) != node:
            return False
        del self._publisher[name]
        self._namespace.pop(name, None)
        return True

    def published(self, node: int) -> frozenset[str]:
        return self._published.get(node, frozenset())

    # --- Cell state ---

    def set_state(
        self,
        node: int,
        state: CellState,
        *,
        error: CellError | None = None,
        output: object = None,
        generation: int | None = None,
    ) -> None:
        arena = self._arena
        if node not in arena:
            return
        arena.states[node] = state
        arena.errors[node] = error
        if state is not CellState.RUNNING:
            arena.outputs[node] = output
        if generation is not None:
            arena.generations[node] = generation
        logger.debug("%s -> %s", arena.ids[node], state.value)
