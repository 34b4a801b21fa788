"""Result dataclasses and collaborator protocols."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import asdict, dataclass, field
from typing import Any, Protocol, runtime_checkable

CellValue = Any  # whatever the source yields; only formula strings are read


@dataclass(frozen=True)
class CircularDependency:
    """A cycle of cells, in dependency order."""

    cycle: tuple[str, ...]
    chain: str
    severity: str = "error"

    @classmethod
    def from_cycle(cls, cells: Sequence[str]) -> CircularDependency:
        cycle = tuple(cells)
        chain = " -> ".join((*cycle, cycle[0])) if cycle else ""
        return cls(cycle=cycle, chain=chain)

    def to_dict(self) -> dict[str, Any]:
        return {"cycle": list(self.cycle), "chain": self.chain, "severity": self.severity}


@dataclass(frozen=True)
class RecalculationCost:
    cell_count: int
    complexity_score: int  # 0-100
    time_estimate: str  # instant | fast | moderate | slow | very_slow

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ImpactAnalysis:
    """What changes if ``target_cell`` changes."""

    target_cell: str
    direct_dependents: tuple[str, ...]
    all_affected_cells: tuple[str, ...]
    dependencies: tuple[str, ...]
    max_depth: int
    recalculation_cost: RecalculationCost
    circular_dependencies: tuple[CircularDependency, ...] = ()

    @property
    def has_cycles(self) -> bool:
        return bool(self.circular_dependencies)

    def to_dict(self) -> dict[str, Any]:
        return {
            "target_cell": self.target_cell,
            "direct_dependents": list(self.direct_dependents),
            "all_affected_cells": list(self.all_affected_cells),
            "dependencies": list(self.dependencies),
            "max_depth": self.max_depth,
            "recalculation_cost": self.recalculation_cost.to_dict(),
            "circular_dependencies": [c.to_dict() for c in self.circular_dependencies],
        }


@dataclass(frozen=True)
class CellComplexity:
    cell: str
    count: int


@dataclass(frozen=True)
class GraphStats:
    total_cells: int
    formula_cells: int
    total_dependencies: int
    max_depth: int
    most_complex_cells: tuple[CellComplexity, ...] = field(default_factory=tuple)
    most_influential_cells: tuple[CellComplexity, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["most_complex_cells"] = [asdict(c) for c in self.most_complex_cells]
        data["most_influential_cells"] = [asdict(c) for c in self.most_influential_cells]
        return data


@dataclass(frozen=True)
class BuildSummary:
    """Outcome of a bulk graph build."""

    workbook_id: str
    sheet_count: int
    cell_count: int
    formula_count: int
    dependency_count: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@runtime_checkable
class CellDataSource(Protocol):
    """Where formula text comes from."""

    async def sheet_names(self, workbook_id: str) -> list[str]:
        """Return the workbook's sheet names in display order."""
        ...

    async def sheet_values(self, workbook_id: str, sheet_name: str) -> Sequence[Sequence[CellValue]]:
        """Return a sheet's grid, starting at A1, with formula cells as formula text."""
        ...


class ProgressSink(Protocol):
    def __call__(self, completed: int, total: int, message: str) -> None: ...
