"""Tests for cellgraph dependency graph: edges, reachability, cycles, ordering."""

from __future__ import annotations

import pytest

from cellgraph._graph import DEPENDENTS, CircularReferenceError, DependencyGraph


def _chain(*cells: str) -> DependencyGraph:
    """Each cell reads the next one: cells[0] -> cells[1] -> ..."""
    g = DependencyGraph()
    for a, b in zip(cells, cells[1:]):
        g.add_dependency(a, b)
    return g


class TestEdges:
    def test_edge_recorded_both_ways(self) -> None:
        g = DependencyGraph()
        g.add_dependency("Sheet1!A1", "Sheet1!B1", "=Sheet1!B1")
        assert "Sheet1!B1" in g.get_dependencies("Sheet1!A1")
        assert "Sheet1!A1" in g.get_affected_cells("Sheet1!B1")
        assert g.nodes["Sheet1!A1"].dependencies == {"Sheet1!B1"}
        assert g.nodes["Sheet1!B1"].dependents == {"Sheet1!A1"}

    def test_formula_only_on_source(self) -> None:
        g = DependencyGraph()
        g.add_dependency("A1", "B1", "=B1*2")
        assert g.get_formula("A1") == "=B1*2"
        assert g.get_formula("B1") is None

    def test_formula_overwritten(self) -> None:
        g = DependencyGraph()
        g.add_dependency("A1", "B1", "=B1")
        g.add_dependency("A1", "C1", "=B1+C1")
        assert g.get_formula("A1") == "=B1+C1"

    def test_add_is_idempotent(self) -> None:
        g = DependencyGraph()
        g.add_dependency("A1", "B1")
        g.add_dependency("A1", "B1")
        assert g.get_stats().total_dependencies == 1

    def test_remove_dependency(self) -> None:
        g = _chain("A1", "B1")
        g.remove_dependency("A1", "B1")
        assert g.get_dependencies("A1") == []
        assert g.get_affected_cells("B1") == []

    def test_remove_missing_dependency_is_noop(self) -> None:
        g = _chain("A1", "B1")
        g.remove_dependency("B1", "A1")
        g.remove_dependency("X1", "Y1")
        assert g.get_dependencies("A1") == ["B1"]

    def test_remove_cell_severs_edges(self) -> None:
        g = _chain("A1", "B1", "C1")
        g.remove_cell("B1")
        assert "B1" not in g
        assert g.get_dependencies("B1") == []
        assert g.get_affected_cells("B1") == []
        for node in g.nodes.values():
            assert "B1" not in node.dependencies
            assert "B1" not in node.dependents

    def test_remove_unknown_cell(self) -> None:
        g = _chain("A1", "B1")
        g.remove_cell("Z99")
        assert len(g) == 2

    def test_clear(self) -> None:
        g = _chain("A1", "B1")
        g.topological_sort()
        g.clear()
        assert len(g) == 0
        assert g.topological_sort() == []


class TestReachability:
    def test_chain_affected_in_discovery_order(self) -> None:
        g = _chain("A1", "B1", "C1")
        assert g.get_affected_cells("C1") == ["B1", "A1"]
        assert g.get_dependencies("A1") == ["B1", "C1"]

    def test_start_cell_excluded(self) -> None:
        g = _chain("A1", "B1", "A1")
        assert g.get_affected_cells("A1") == ["B1"]
        assert g.get_dependencies("A1") == ["B1"]

    def test_diamond_visits_once(self) -> None:
        g = DependencyGraph()
        g.add_dependency("D1", "B1")
        g.add_dependency("D1", "C1")
        g.add_dependency("B1", "A1")
        g.add_dependency("C1", "A1")
        assert g.get_affected_cells("A1") == ["B1", "C1", "D1"]

    def test_unknown_cell(self) -> None:
        g = _chain("A1", "B1")
        assert g.get_affected_cells("Z99") == []
        assert g.get_dependencies("Z99") == []
        assert g.get_direct_dependents("Z99") == []

    def test_direct_layers(self) -> None:
        g = _chain("A1", "B1", "C1")
        assert g.get_direct_dependents("C1") == ["B1"]
        assert g.get_direct_dependencies("A1") == ["B1"]


class TestDetectCycles:
    def test_acyclic(self) -> None:
        assert _chain("A", "B", "C").detect_cycles() == []

    def test_three_cycle(self) -> None:
        g = _chain("A", "B", "C", "A")
        cycles = g.detect_cycles()
        assert len(cycles) == 1
        assert set(cycles[0].cycle) == {"A", "B", "C"}
        assert cycles[0].chain == "A -> B -> C -> A"
        assert cycles[0].severity == "error"

    def test_self_reference(self) -> None:
        g = _chain("A", "A")
        (cycle,) = g.detect_cycles()
        assert cycle.cycle == ("A",)

    def test_cycle_below_root(self) -> None:
        g = _chain("X", "A", "B", "A")
        (cycle,) = g.detect_cycles()
        assert cycle.cycle == ("A", "B")

    def test_independent_cycles(self) -> None:
        g = _chain("A", "B", "A")
        g.add_dependency("C", "D")
        g.add_dependency("D", "C")
        assert len(g.detect_cycles()) == 2

    def test_does_not_raise_where_sort_does(self) -> None:
        g = _chain("A", "B", "A")
        assert g.detect_cycles()
        with pytest.raises(CircularReferenceError):
            g.topological_sort()


class TestTopologicalSort:
    def test_empty(self) -> None:
        assert DependencyGraph().topological_sort() == []

    def test_dependencies_first(self) -> None:
        g = DependencyGraph()
        g.add_dependency("D1", "B1")
        g.add_dependency("D1", "C1")
        g.add_dependency("B1", "A1")
        g.add_dependency("C1", "A1")
        g.add_dependency("E1", "D1")
        order = g.topological_sort()
        assert sorted(order) == sorted(g.nodes)
        for cell, node in g.nodes.items():
            for dep in node.dependencies:
                assert order.index(dep) < order.index(cell)

    def test_cached_until_mutation(self) -> None:
        g = _chain("A1", "B1", "C1")
        first = g.topological_sort()
        assert g.topological_sort() == first
        g.add_dependency("C1", "D1")
        assert g.topological_sort() == ["D1", "C1", "B1", "A1"]

    def test_returned_list_is_a_copy(self) -> None:
        g = _chain("A1", "B1")
        g.topological_sort().clear()
        assert g.topological_sort() == ["B1", "A1"]

    def test_cycle_raises_with_cell(self) -> None:
        g = _chain("A1", "B1", "A1")
        with pytest.raises(CircularReferenceError, match="Circular dependency") as exc:
            g.topological_sort()
        assert exc.value.cell in {"A1", "B1"}
        assert isinstance(exc.value, ValueError)

    def test_deep_chain(self) -> None:
        cells = [f"S!A{i}" for i in range(1, 20001)]
        g = _chain(*cells)
        order = g.topological_sort()
        assert order[0] == cells[-1]
        assert order[-1] == cells[0]
        assert g.longest_chain(cells[0]) == len(cells) - 1


class TestLongestChain:
    def test_linear(self) -> None:
        g = _chain("D1", "C1", "B1", "A1")
        assert g.longest_chain("A1", DEPENDENTS) == 3
        assert g.longest_chain("D1") == 3

    def test_diamond(self) -> None:
        g = DependencyGraph()
        g.add_dependency("D1", "B1")
        g.add_dependency("D1", "C1")
        g.add_dependency("B1", "A1")
        g.add_dependency("C1", "A1")
        assert g.longest_chain("A1", DEPENDENTS) == 2

    def test_leaf_and_unknown(self) -> None:
        g = _chain("B1", "A1")
        assert g.longest_chain("B1", DEPENDENTS) == 0
        assert g.longest_chain("Z1") == 0

    def test_cycle_terminates(self) -> None:
        g = _chain("A", "B", "A")
        assert g.longest_chain("A") == 2

    def test_diamond_in_cyclic_graph(self) -> None:
        g = DependencyGraph()
        g.add_dependency("D", "B")
        g.add_dependency("D", "C")
        g.add_dependency("B", "A")
        g.add_dependency("C", "A")
        g.add_dependency("X", "Y")
        g.add_dependency("Y", "X")
        assert g.longest_chain("D") == 2
        assert g.longest_chain("A", DEPENDENTS) == 2

    def test_bad_direction(self) -> None:
        g = _chain("A", "B")
        with pytest.raises(ValueError, match="Unknown direction"):
            g.longest_chain("A", "sideways")


class TestStats:
    def test_counts(self) -> None:
        g = DependencyGraph()
        g.add_dependency("A1", "B1", "=B1+C1")
        g.add_dependency("A1", "C1", "=B1+C1")
        g.add_dependency("B1", "C1", "=C1")
        stats = g.get_stats()
        assert stats.total_cells == 3
        assert stats.formula_cells == 2
        assert stats.total_dependencies == 3
        assert stats.max_depth == 2
        assert [(c.cell, c.count) for c in stats.most_complex_cells] == [("A1", 2), ("B1", 1)]
        assert [(c.cell, c.count) for c in stats.most_influential_cells] == [
            ("C1", 2),
            ("B1", 1),
        ]

    def test_top_lists_capped(self) -> None:
        g = DependencyGraph()
        for i in range(12):
            g.add_dependency(f"A{i}", "X1", "=X1")
        stats = g.get_stats()
        assert len(stats.most_complex_cells) == 10
        assert [(c.cell, c.count) for c in stats.most_influential_cells] == [("X1", 12)]

    def test_cyclic_graph_depth(self) -> None:
        stats = _chain("A", "B", "C", "A").get_stats()
        assert stats.max_depth == 3

    def test_empty(self) -> None:
        stats = DependencyGraph().get_stats()
        assert stats.total_cells == 0
        assert stats.max_depth == 0
        assert stats.to_dict()["most_complex_cells"] == []


class TestToDot:
    def test_nodes_and_edges(self) -> None:
        g = DependencyGraph()
        g.add_dependency("Sheet1!A1", "Sheet1!B1", "=B1")
        dot = g.to_dot()
        assert dot.startswith("digraph Dependencies {")
        assert '"Sheet1!A1" [style=filled, fillcolor=lightblue];' in dot
        assert '  "Sheet1!B1";' in dot
        assert '"Sheet1!A1" -> "Sheet1!B1";' in dot

    def test_deterministic(self) -> None:
        g1 = DependencyGraph()
        g1.add_dependency("A1", "B1")
        g1.add_dependency("C1", "B1")
        g2 = DependencyGraph()
        g2.add_dependency("C1", "B1")
        g2.add_dependency("A1", "B1")
        assert g1.to_dot() == g2.to_dot()

    def test_quotes_escaped(self) -> None:
        g = DependencyGraph()
        g.add_dependency('Say "hi"!A1', "B1")
        assert '"Say \\"hi\\"!A1" -> "B1";' in g.to_dot()
