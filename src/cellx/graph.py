"""Dependency graph — producer→consumer edges between cells.

Nodes are arena integers. An edge ``p -> c`` carries the set of names
``c`` reads that ``p`` defines. The graph is maintained incrementally:
``add``/``update``/``remove`` touch only the edges of the affected node,
and the result is always identical to ``Graph.from_cells`` over the same
cells, because an edge depends only on the current define/read sets of
its two endpoints.

Ownership is strict: a name claimed by more than one cell is a conflict,
never resolved by letting the last writer win. Readers of a conflicted
name get an edge from every claimant.
"""

from __future__ import annotations

from typing import Callable, Iterable, NamedTuple

import networkx as nx


class DependencyEdge(NamedTuple):
    producer: object
    consumer: object
    symbol: str


class Graph:
    """Incremental cell dependency graph with conflict and cycle detection."""

    def __init__(self) -> None:
        self._g = nx.DiGraph()
        self._defines: dict[int, frozenset[str]] = {}
        self._reads: dict[int, frozenset[str]] = {}
        self._claims: dict[str, set[int]] = {}  # name -> cells defining it
        self._readers: dict[str, set[int]] = {}  # name -> cells reading it
        self._cycles: list[frozenset[int]] | None = None

    @classmethod
    def from_cells(cls, cells: Iterable[tuple[int, Iterable[str], Iterable[str]]]) -> Graph:
        """Full rebuild from (node, defines, reads) triples."""
        graph = cls()
        for node, defines, reads in cells:
            graph.add(node, defines, reads)
        return graph

    # --- Mutation ---

    def add(self, node: int, defines: Iterable[str], reads: Iterable[str]) -> None:
        defines = frozenset(defines)
        reads = frozenset(reads) - defines
        self._g.add_node(node)
        self._defines[node] = defines
        self._reads[node] = reads
        for name in defines:
            self._claims.setdefault(name, set()).add(node)
            for reader in self._readers.get(name, ()):
                if reader != node:
                    self._link(node, reader, name)
        for name in reads:
            self._readers.setdefault(name, set()).add(node)
            for owner in self._claims.get(name, ()):
                if owner != node:
                    self._link(owner, node, name)
        self._cycles = None

    def remove(self, node: int) -> None:
        for name in self._defines.pop(node, ()):
            self._discard(self._claims, name, node)
        for name in self._reads.pop(node, ()):
            self._discard(self._readers, name, node)
        if self._g.has_node(node):
            self._g.remove_node(node)
        self._cycles = None

    def update(self, node: int, defines: Iterable[str], reads: Iterable[str]) -> None:
        """Replace a node's symbol sets, re-deriving only its own edges."""
        self.remove(node)
        self.add(node, defines, reads)

    def _link(self, producer: int, consumer: int, name: str) -> None:
        if self._g.has_edge(producer, consumer):
            self._g[producer][consumer]["names"].add(name)
        else:
            self._g.add_edge(producer, consumer, names={name})

    @staticmethod
    def _discard(index: dict[str, set[int]], name: str, node: int) -> None:
        members = index.get(name)
        if members is not None:
            members.discard(node)
            if not members:
                del index[name]

    # --- Symbols ---

    def defines(self, node: int) -> frozenset[str]:
        return self._defines.get(node, frozenset())

    def reads(self, node: int) -> frozenset[str]:
        return self._reads.get(node, frozenset())

    def owner(self, name: str) -> int | None:
        """The single cell defining ``name``, or None if unowned or conflicted."""
        claims = self._claims.get(name)
        if claims is not None and len(claims) == 1:
            return next(iter(claims))
        return None

    def claimants(self, name: str) -> frozenset[int]:
        return frozenset(self._claims.get(name, ()))

    def external_reads(self, node: int) -> frozenset[str]:
        """Names ``node`` reads that no cell defines."""
        return frozenset(n for n in self.reads(node) if n not in self._claims)

    def conflicts(self) -> dict[str, frozenset[int]]:
        """Names claimed by more than one cell."""
        return {
            name: frozenset(cells)
            for name, cells in sorted(self._claims.items())
            if len(cells) > 1
        }

    def conflicting_names(self, node: int) -> list[str]:
        return sorted(n for n in self.defines(node) if len(self._claims.get(n, ())) > 1)

    # --- Structure ---

    def __contains__(self, node: int) -> bool:
        return self._g.has_node(node)

    def producers(self, node: int) -> set[int]:
        return set(self._g.predecessors(node)) if node in self else set()

    def consumers(self, node: int) -> set[int]:
        return set(self._g.successors(node)) if node in self else set()

    def edge_symbols(self, producer: int, consumer: int) -> frozenset[str]:
        if not self._g.has_edge(producer, consumer):
            return frozenset()
        return frozenset(self._g[producer][consumer]["names"])

    def edges(self) -> list[DependencyEdge]:
        return sorted(
            DependencyEdge(p, c, name)
            for p, c, names in self._g.edges(data="names")
            for name in names
        )

    def descendants(self, nodes: Iterable[int]) -> set[int]:
        """All transitive consumers of ``nodes`` (excluding ``nodes`` themselves)."""
        nodes = [n for n in nodes if n in self]
        found: set[int] = set()
        for node in nodes:
            if node not in found:
                found |= nx.descendants(self._g, node)
        return found - set(nodes)

    def ancestors(self, nodes: Iterable[int]) -> set[int]:
        nodes = [n for n in nodes if n in self]
        found: set[int] = set()
        for node in nodes:
            found |= nx.ancestors(self._g, node)
        return found - set(nodes)

    def cycles(self) -> list[frozenset[int]]:
        """Strongly connected components with more than one member."""
        if self._cycles is None:
            self._cycles = sorted(
                (frozenset(c) for c in nx.strongly_connected_components(self._g) if len(c) > 1),
                key=min,
            )
        return self._cycles

    def cycle_of(self, node: int) -> frozenset[int] | None:
        for cycle in self.cycles():
            if node in cycle:
                return cycle
        return None

    def topological_order(self, nodes: Iterable[int], key: Callable[[int], int]) -> list[int]:
        """Order ``nodes`` producers-first, breaking ties by ``key``.

        ``nodes`` must not contain a cycle.
        """
        sub = self._g.subgraph(nodes)
        return list(nx.lexicographical_topological_sort(sub, key=key))

    def structure(self) -> tuple:
        """Comparable snapshot: edges, conflicts and cycles."""
        return (
            frozenset(self.edges()),
            tuple(self.conflicts().items()),
            tuple(self.cycles()),
        )

    def __repr__(self) -> str:
        return f"Graph({self._g.number_of_nodes()} cells, {self._g.number_of_edges()} edges)"
