"""Dependency graph for formula cells: cycles, ordering, reachability."""

from __future__ import annotations

from collections import deque
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field

from cellgraph._protocol import CellComplexity, CircularDependency, GraphStats

TOP_N = 10

DEPENDENCIES = "dependencies"
DEPENDENTS = "dependents"


class CircularReferenceError(ValueError):
    """Raised by ``topological_sort`` when the graph is not a DAG."""

    def __init__(self, cell: str) -> None:
        super().__init__(f"Circular dependency detected at {cell}")
        self.cell = cell


@dataclass
class GraphNode:
    cell: str
    dependencies: set[str] = field(default_factory=set)  # cells this one reads
    dependents: set[str] = field(default_factory=set)  # cells that read this one
    formula: str | None = None


class DependencyGraph:
    """Directed graph of cell references.

    An edge ``A -> B`` means A's formula reads B. All cell references use the
    canonical "SheetName!A1" form; callers normalise before calling in.
    Cycles are allowed and only surfaced on demand. Not thread-safe.
    """

    __slots__ = ("nodes", "_order", "_depths")

    def __init__(self) -> None:
        self.nodes: dict[str, GraphNode] = {}
        self._order: list[str] | None = None
        # direction -> cell -> longest chain, valid only for acyclic graphs
        self._depths: dict[str, dict[str, int]] = {}

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def _node(self, cell: str) -> GraphNode:
        node = self.nodes.get(cell)
        if node is None:
            node = self.nodes[cell] = GraphNode(cell)
        return node

    def _invalidate(self) -> None:
        self._order = None
        self._depths.clear()

    def _link(self, from_cell: str, to_cell: str) -> None:
        self._node(from_cell).dependencies.add(to_cell)
        self._node(to_cell).dependents.add(from_cell)

    def _unlink(self, from_cell: str, to_cell: str) -> None:
        source = self.nodes.get(from_cell)
        target = self.nodes.get(to_cell)
        if source is not None:
            source.dependencies.discard(to_cell)
        if target is not None:
            target.dependents.discard(from_cell)

    def add_dependency(self, from_cell: str, to_cell: str, formula: str | None = None) -> None:
        """Record that ``from_cell`` reads ``to_cell``."""
        self._link(from_cell, to_cell)
        if formula is not None:
            self.nodes[from_cell].formula = formula
        self._invalidate()

    def remove_dependency(self, from_cell: str, to_cell: str) -> None:
        self._unlink(from_cell, to_cell)
        self._invalidate()

    def remove_cell(self, cell: str) -> None:
        """Drop a cell and every edge touching it. Unknown cells are ignored."""
        node = self.nodes.get(cell)
        if node is None:
            return
        for dep in list(node.dependencies):
            self._unlink(cell, dep)
        for dependent in list(node.dependents):
            self._unlink(dependent, cell)
        del self.nodes[cell]
        self._invalidate()

    def clear(self) -> None:
        self.nodes.clear()
        self._invalidate()

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self.nodes)

    def __contains__(self, cell: object) -> bool:
        return cell in self.nodes

    def get_formula(self, cell: str) -> str | None:
        node = self.nodes.get(cell)
        return node.formula if node is not None else None

    def get_direct_dependencies(self, cell: str) -> list[str]:
        node = self.nodes.get(cell)
        return sorted(node.dependencies) if node is not None else []

    def get_direct_dependents(self, cell: str) -> list[str]:
        node = self.nodes.get(cell)
        return sorted(node.dependents) if node is not None else []

    def _edges(self, direction: str) -> Callable[[str], list[str]]:
        if direction == DEPENDENCIES:
            return self.get_direct_dependencies
        if direction == DEPENDENTS:
            return self.get_direct_dependents
        raise ValueError(f"Unknown direction: {direction!r}")

    # ------------------------------------------------------------------
    # Reachability
    # ------------------------------------------------------------------

    def _bfs(self, start: str, direction: str) -> list[str]:
        if start not in self.nodes:
            return []
        edges = self._edges(direction)
        visited: set[str] = {start}
        queue: deque[str] = deque([start])
        found: list[str] = []

        while queue:
            cell = queue.popleft()
            for nxt in edges(cell):
                if nxt not in visited:
                    visited.add(nxt)
                    found.append(nxt)
                    queue.append(nxt)

        return found

    def get_affected_cells(self, cell: str) -> list[str]:
        """Every cell that transitively reads ``cell``, in BFS discovery order.

        Discovery order is not a recalculation order; use ``topological_sort``
        for that.
        """
        return self._bfs(cell, DEPENDENTS)

    def get_dependencies(self, cell: str) -> list[str]:
        """Every cell ``cell`` transitively reads, in BFS discovery order."""
        return self._bfs(cell, DEPENDENCIES)

    # ------------------------------------------------------------------
    # Cycles and ordering
    # ------------------------------------------------------------------

    def _first_cycle_from(self, root: str, visited: set[str]) -> list[str] | None:
        path: list[str] = [root]
        on_path: set[str] = {root}
        stack: list[Iterator[str]] = [iter(self.get_direct_dependencies(root))]
        visited.add(root)

        while stack:
            nxt = next(stack[-1], None)
            if nxt is None:
                stack.pop()
                on_path.discard(path.pop())
                continue
            if nxt in on_path:
                return path[path.index(nxt) :]
            if nxt in visited:
                continue
            visited.add(nxt)
            path.append(nxt)
            on_path.add(nxt)
            stack.append(iter(self.get_direct_dependencies(nxt)))

        return None

    def detect_cycles(self) -> list[CircularDependency]:
        """Find circular references.

        Each unvisited node roots one depth-first search, which stops at the
        first cycle it meets. Never raises; an acyclic graph gives ``[]``.
        """
        visited: set[str] = set()
        cycles: list[CircularDependency] = []
        for root in list(self.nodes):
            if root in visited:
                continue
            cycle = self._first_cycle_from(root, visited)
            if cycle:
                cycles.append(CircularDependency.from_cycle(cycle))
        return cycles

    def topological_sort(self) -> list[str]:
        """All cells, dependencies before dependents.

        Raises CircularReferenceError on the first cycle found. The result is
        cached until the next mutation.
        """
        if self._order is not None:
            return list(self._order)

        order: list[str] = []
        done: set[str] = set()

        for root in self.nodes:
            if root in done:
                continue
            on_path: set[str] = {root}
            stack: list[tuple[str, Iterator[str]]] = [
                (root, iter(self.get_direct_dependencies(root)))
            ]
            while stack:
                cell, deps = stack[-1]
                nxt = next(deps, None)
                if nxt is None:
                    stack.pop()
                    on_path.discard(cell)
                    done.add(cell)
                    order.append(cell)
                    continue
                if nxt in on_path:
                    raise CircularReferenceError(nxt)
                if nxt in done:
                    continue
                on_path.add(nxt)
                stack.append((nxt, iter(self.get_direct_dependencies(nxt))))

        self._order = order
        return list(order)

    # ------------------------------------------------------------------
    # Depth
    # ------------------------------------------------------------------

    def _branch_depth(self, start: str, edges: Callable[[str], list[str]]) -> int:
        """Longest chain from ``start``, each branch tracking its own path.

        A cell already on the current branch counts as depth 0, so cycles and
        diamonds terminate. Enumerates paths, so only used on cyclic graphs.
        """
        on_path: set[str] = {start}
        # frame: [cell, remaining edges, best depth so far]
        stack: list[list] = [[start, iter(edges(start)), 0]]
        depth = 0

        while stack:
            frame = stack[-1]
            nxt = next(frame[1], None)
            if nxt is None:
                stack.pop()
                on_path.discard(frame[0])
                if stack:
                    stack[-1][2] = max(stack[-1][2], frame[2] + 1)
                else:
                    depth = frame[2]
                continue
            if nxt in on_path:
                frame[2] = max(frame[2], 1)
                continue
            on_path.add(nxt)
            stack.append([nxt, iter(edges(nxt)), 0])

        return depth

    def _acyclic_depths(self, direction: str) -> dict[str, int] | None:
        depths = self._depths.get(direction)
        if depths is not None:
            return depths
        try:
            order = self.topological_sort()
        except CircularReferenceError:
            return None

        edges = self._edges(direction)
        if direction == DEPENDENTS:
            order.reverse()
        depths = {}
        for cell in order:
            depths[cell] = max((depths[n] + 1 for n in edges(cell)), default=0)
        self._depths[direction] = depths
        return depths

    def longest_chain(self, cell: str, direction: str = DEPENDENCIES) -> int:
        """Length of the longest edge chain leaving ``cell`` in ``direction``."""
        if cell not in self.nodes:
            return 0
        depths = self._acyclic_depths(direction)
        if depths is not None:
            return depths[cell]
        return self._branch_depth(cell, self._edges(direction))

    # ------------------------------------------------------------------
    # Stats and export
    # ------------------------------------------------------------------

    def get_stats(self) -> GraphStats:
        formula_cells = 0
        total_dependencies = 0
        complexity: list[CellComplexity] = []
        influence: list[CellComplexity] = []

        for cell, node in self.nodes.items():
            if node.formula is not None:
                formula_cells += 1
            total_dependencies += len(node.dependencies)
            if node.dependencies:
                complexity.append(CellComplexity(cell, len(node.dependencies)))
            if node.dependents:
                influence.append(CellComplexity(cell, len(node.dependents)))

        complexity.sort(key=lambda c: (-c.count, c.cell))
        influence.sort(key=lambda c: (-c.count, c.cell))

        max_depth = max((self.longest_chain(cell) for cell in self.nodes), default=0)

        return GraphStats(
            total_cells=len(self.nodes),
            formula_cells=formula_cells,
            total_dependencies=total_dependencies,
            max_depth=max_depth,
            most_complex_cells=tuple(complexity[:TOP_N]),
            most_influential_cells=tuple(influence[:TOP_N]),
        )

    def to_dot(self) -> str:
        """Graphviz DOT text; formula cells are filled. Sorted, so diffable."""

        def _quote(value: str) -> str:
            return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'

        lines = [
            "digraph Dependencies {",
            "  rankdir=LR;",
            "  node [shape=box];",
            "",
        ]
        for cell in sorted(self.nodes):
            if self.nodes[cell].formula is not None:
                lines.append(f"  {_quote(cell)} [style=filled, fillcolor=lightblue];")
            else:
                lines.append(f"  {_quote(cell)};")
        lines.append("")
        for cell in sorted(self.nodes):
            for dep in self.get_direct_dependencies(cell):
                lines.append(f"  {_quote(cell)} -> {_quote(dep)};")
        lines.append("}")
        return "\n".join(lines) + "\n"
