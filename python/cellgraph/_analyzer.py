"""ImpactAnalyzer: builds a DependencyGraph from a workbook and answers
"what happens if this cell changes" queries.

Sheet grids are fetched concurrently, a batch at a time, but the graph is
only ever mutated from the calling task once a whole batch has arrived.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from cellgraph._graph import DEPENDENTS, DependencyGraph
from cellgraph._parser import normalize_reference, parse_formula, referenced_cells, sheet_of
from cellgraph._protocol import (
    BuildSummary,
    CellDataSource,
    CellValue,
    CircularDependency,
    GraphStats,
    ImpactAnalysis,
    ProgressSink,
    RecalculationCost,
)
from cellgraph._utils import rowcol_to_a1

logger = logging.getLogger(__name__)

FORMULA_PREFIX = "="


@dataclass(frozen=True)
class AnalyzerConfig:
    """Tuning knobs for ImpactAnalyzer.

    ``time_buckets`` maps an affected-cell count to a latency label: the first
    bucket whose limit exceeds the count wins, else ``slowest_bucket``. These
    are calibration guesses, not measurements.
    """

    batch_size: int = 5
    direct_dependents_limit: int = 10
    max_range_cells: int = 1000
    complexity_scale: float = 10.0
    max_complexity: int = 100
    time_buckets: tuple[tuple[int, str], ...] = (
        (10, "instant"),
        (50, "fast"),
        (200, "moderate"),
        (1000, "slow"),
    )
    slowest_bucket: str = "very_slow"

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {self.batch_size}")
        if self.direct_dependents_limit < 0:
            raise ValueError("direct_dependents_limit must be >= 0")
        limits = [limit for limit, _ in self.time_buckets]
        if limits != sorted(limits):
            raise ValueError("time_buckets must be sorted by limit")

    def time_estimate(self, cell_count: int) -> str:
        for limit, label in self.time_buckets:
            if cell_count < limit:
                return label
        return self.slowest_bucket


def is_formula(value: CellValue) -> bool:
    return isinstance(value, str) and value.startswith(FORMULA_PREFIX)


async def _fetch_batch(
    source: CellDataSource, workbook_id: str, names: Sequence[str]
) -> list[Sequence[Sequence[CellValue]]]:
    """Fetch several sheets at once; on the first failure cancel the rest."""
    tasks = [asyncio.ensure_future(source.sheet_values(workbook_id, name)) for name in names]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


class ImpactAnalyzer:
    """Owns one DependencyGraph plus the formula text behind it.

    One instance per workbook; the caller decides when to discard it.
    """

    def __init__(
        self,
        config: AnalyzerConfig | None = None,
        graph: DependencyGraph | None = None,
    ) -> None:
        self.config = config or AnalyzerConfig()
        self.graph = graph if graph is not None else DependencyGraph()
        self._formulas: dict[str, str] = {}

    # ------------------------------------------------------------------
    # Building
    # ------------------------------------------------------------------

    async def build_from_spreadsheet(
        self,
        source: CellDataSource,
        workbook_id: str,
        sheet_names: Sequence[str] | None = None,
        progress: ProgressSink | None = None,
    ) -> BuildSummary:
        """Scan every sheet's formulas into the graph.

        The first fetch failure propagates and the graph keeps whatever the
        earlier batches added; discard the analyzer and rebuild in that case.
        """
        if sheet_names is None:
            sheet_names = await source.sheet_names(workbook_id)
        sheets = list(sheet_names)
        total = len(sheets)
        size = self.config.batch_size
        logger.debug("Building dependency graph for %s (%d sheets)", workbook_id, total)

        formula_count = 0
        for start in range(0, total, size):
            batch = sheets[start : start + size]
            grids = await _fetch_batch(source, workbook_id, batch)
            for name, grid in zip(batch, grids):
                formula_count += self._apply_grid(name, grid)

            done = min(start + size, total)
            if progress is not None:
                progress(done, total, f"Processed {done}/{total} sheets")

        summary = BuildSummary(
            workbook_id=workbook_id,
            sheet_count=total,
            cell_count=len(self.graph),
            formula_count=formula_count,
            dependency_count=sum(len(n.dependencies) for n in self.graph.nodes.values()),
        )
        logger.debug("Built dependency graph: %s", summary)
        return summary

    def _apply_grid(self, sheet_name: str, grid: Sequence[Sequence[CellValue]]) -> int:
        count = 0
        for r, row in enumerate(grid, start=1):
            for c, value in enumerate(row, start=1):
                if not is_formula(value):
                    continue
                self.add_formula(f"{sheet_name}!{rowcol_to_a1(r, c)}", value)
                count += 1
        return count

    def add_formula(self, cell: str, formula: str) -> None:
        """Register (or replace) one cell's formula and its references.

        References without a sheet resolve against ``cell``'s sheet. Edges from
        an earlier formula for the same cell are dropped first.
        """
        cell = normalize_reference(cell)
        sheet = sheet_of(cell)

        if cell in self.graph:
            for old in self.graph.get_direct_dependencies(cell):
                self.graph.remove_dependency(cell, old)
            self.graph.nodes[cell].formula = formula

        self._formulas[cell] = formula
        for ref in referenced_cells(formula, sheet, self.config.max_range_cells):
            self.graph.add_dependency(cell, ref, formula)

    def remove_cell(self, cell: str) -> None:
        cell = normalize_reference(cell)
        self._formulas.pop(cell, None)
        self.graph.remove_cell(cell)

    def get_formula(self, cell: str) -> str | None:
        return self._formulas.get(normalize_reference(cell))

    def clear(self) -> None:
        self._formulas.clear()
        self.graph.clear()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_dependencies(self, cell: str) -> list[str]:
        return self.graph.get_dependencies(normalize_reference(cell))

    def get_dependents(self, cell: str) -> list[str]:
        return self.graph.get_affected_cells(normalize_reference(cell))

    def detect_cycles(self) -> list[CircularDependency]:
        return self.graph.detect_cycles()

    def get_stats(self) -> GraphStats:
        return self.graph.get_stats()

    def to_dot(self) -> str:
        return self.graph.to_dot()

    def analyze_impact(self, cell: str) -> ImpactAnalysis:
        """Blast radius and recalculation cost of changing ``cell``.

        ``direct_dependents`` is the head of the BFS list, which approximates
        the first layer; ``circular_dependencies`` covers the whole graph.
        """
        target = normalize_reference(cell)
        affected = self.graph.get_affected_cells(target)

        return ImpactAnalysis(
            target_cell=target,
            direct_dependents=tuple(affected[: self.config.direct_dependents_limit]),
            all_affected_cells=tuple(affected),
            dependencies=tuple(self.graph.get_dependencies(target)),
            max_depth=self.graph.longest_chain(target, DEPENDENTS),
            recalculation_cost=self.estimate_recalculation_cost(affected),
            circular_dependencies=tuple(self.graph.detect_cycles()),
        )

    def estimate_recalculation_cost(self, cells: Iterable[str]) -> RecalculationCost:
        """Heuristic cost of recomputing ``cells``.

        Each known formula scores two points per function plus one per
        reference; the mean is scaled and clamped into 0-100.
        """
        cells = list(cells)
        total = 0
        for cell in cells:
            formula = self._formulas.get(cell)
            if formula is None:
                formula = self.graph.get_formula(cell)
            if formula is None:
                continue
            parsed = parse_formula(formula)
            total += len(parsed.functions) * 2 + len(parsed.references)

        score = 0
        if cells:
            scaled = total / len(cells) * self.config.complexity_scale
            score = max(0, min(self.config.max_complexity, round(scaled)))

        return RecalculationCost(
            cell_count=len(cells),
            complexity_score=score,
            time_estimate=self.config.time_estimate(len(cells)),
        )
