"""Tests for the incremental dependency graph."""

import itertools

from cellx import DependencyEdge, Graph


def _position(node):
    return node


class TestEdges:
    def test_producer_to_consumer(self):
        g = Graph.from_cells([(1, {"a"}, set()), (2, {"b"}, {"a"})])
        assert g.edges() == [DependencyEdge(1, 2, "a")]
        assert g.producers(2) == {1}
        assert g.consumers(1) == {2}

    def test_unowned_reads_are_external(self):
        g = Graph.from_cells([(1, {"b"}, {"a", "print"})])
        assert g.edges() == []
        assert g.external_reads(1) == {"a", "print"}

    def test_edge_carries_every_symbol(self):
        g = Graph.from_cells([(1, {"a", "b"}, set()), (2, set(), {"a", "b"})])
        assert g.edge_symbols(1, 2) == {"a", "b"}

    def test_reader_added_before_owner(self):
        g = Graph()
        g.add(2, {"b"}, {"a"})
        assert g.producers(2) == set()
        g.add(1, {"a"}, set())
        assert g.producers(2) == {1}


class TestIncremental:
    def test_update_replaces_edges(self):
        g = Graph.from_cells([(1, {"a"}, set()), (2, {"b"}, {"a"}), (3, {"c"}, {"b"})])
        g.update(2, {"b"}, set())
        assert g.producers(2) == set()
        assert g.producers(3) == {2}

    def test_remove_makes_symbol_unowned(self):
        g = Graph.from_cells([(1, {"x"}, set()), (2, {"y"}, {"x"})])
        g.remove(1)
        assert g.owner("x") is None
        assert g.producers(2) == set()
        assert g.external_reads(2) == {"x"}

    def test_converges_to_full_rebuild(self):
        """Any sequence of incremental edits ends in the same structure as a rebuild."""
        final = {
            1: ({"a"}, set()),
            2: ({"b"}, {"a"}),
            3: ({"c", "a"}, {"b"}),
            4: ({"d"}, {"c", "zz"}),
            5: ({"e"}, {"d"}),
            6: ({"c2"}, {"e"}),
        }
        for order in itertools.permutations(final, 4):
            g = Graph()
            # Start from deliberately wrong sets, then correct them.
            for node in final:
                g.add(node, {f"tmp{node}"}, {"a"})
            for node in order:
                g.update(node, *final[node])
            for node in set(final) - set(order):
                g.update(node, *final[node])
            rebuilt = Graph.from_cells((n, d, r) for n, (d, r) in final.items())
            assert g.structure() == rebuilt.structure()


class TestConflicts:
    def test_two_owners_conflict(self):
        g = Graph.from_cells([(1, {"x"}, set()), (2, {"x"}, set()), (3, {"y"}, set())])
        assert g.conflicts() == {"x": frozenset({1, 2})}
        assert g.owner("x") is None
        assert g.conflicting_names(3) == []

    def test_conflict_independent_of_creation_order(self):
        g1 = Graph.from_cells([(1, {"x"}, set()), (2, {"x"}, set())])
        g2 = Graph.from_cells([(2, {"x"}, set()), (1, {"x"}, set())])
        assert g1.conflicts() == g2.conflicts()

    def test_resolved_by_removal(self):
        g = Graph.from_cells([(1, {"x"}, set()), (2, {"x"}, set())])
        g.remove(2)
        assert g.conflicts() == {}
        assert g.owner("x") == 1

    def test_readers_depend_on_every_claimant(self):
        g = Graph.from_cells([(1, {"x"}, set()), (2, {"x"}, set()), (3, set(), {"x"})])
        assert g.producers(3) == {1, 2}


class TestCycles:
    def test_cycle_detected(self):
        g = Graph.from_cells([(1, {"a"}, {"b"}), (2, {"b"}, {"a"}), (3, {"c"}, set())])
        assert g.cycles() == [frozenset({1, 2})]
        assert g.cycle_of(1) == frozenset({1, 2})
        assert g.cycle_of(3) is None

    def test_three_cell_cycle(self):
        g = Graph.from_cells([(1, {"a"}, {"c"}), (2, {"b"}, {"a"}), (3, {"c"}, {"b"})])
        assert g.cycles() == [frozenset({1, 2, 3})]

    def test_cycle_broken_by_update(self):
        g = Graph.from_cells([(1, {"a"}, {"b"}), (2, {"b"}, {"a"})])
        g.update(1, {"a"}, set())
        assert g.cycles() == []

    def test_cell_downstream_of_cycle_is_not_a_member(self):
        g = Graph.from_cells([(1, {"a"}, {"b"}), (2, {"b"}, {"a"}), (3, {"d"}, {"a"})])
        assert g.cycle_of(3) is None
        assert 3 in g.descendants([1])


class TestOrdering:
    def test_topological_order_respects_edges(self):
        g = Graph.from_cells([(3, {"c"}, {"b"}), (1, {"a"}, set()), (2, {"b"}, {"a"})])
        assert g.topological_order({1, 2, 3}, key=_position) == [1, 2, 3]

    def test_ties_broken_by_position(self):
        g = Graph.from_cells([(1, {"a"}, set()), (2, {"z"}, set()), (3, {"b"}, {"a"})])
        positions = {1: 2, 2: 0, 3: 1}
        # 1 must precede 3; 2 is free and comes first by position.
        assert g.topological_order({1, 2, 3}, key=positions.get) == [2, 1, 3]

    def test_descendants_and_ancestors(self):
        g = Graph.from_cells([(1, {"a"}, set()), (2, {"b"}, {"a"}), (3, {"c"}, {"b"}), (4, {"d"}, set())])
        assert g.descendants([1]) == {2, 3}
        assert g.ancestors([3]) == {1, 2}
        assert g.descendants([4]) == set()
