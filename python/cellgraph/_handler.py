"""Tool-facing dispatcher: one request dict in, one response dict out.

Analyzers are kept per workbook in an ``AnalyzerRegistry`` owned by the
handler. Query actions build the graph on first use.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from cellgraph._analyzer import AnalyzerConfig, ImpactAnalyzer
from cellgraph._protocol import BuildSummary, CellDataSource, ProgressSink

logger = logging.getLogger(__name__)

INVALID_PARAMS = "INVALID_PARAMS"
INTERNAL_ERROR = "INTERNAL_ERROR"


class InvalidParamsError(ValueError):
    """A request is missing a field or names an unknown action."""


class AnalyzerRegistry:
    """Per-workbook analyzers plus the locks that serialise their builds."""

    def __init__(self, config: AnalyzerConfig | None = None) -> None:
        self.config = config or AnalyzerConfig()
        self._analyzers: dict[str, ImpactAnalyzer] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def __contains__(self, workbook_id: object) -> bool:
        return workbook_id in self._analyzers

    def __len__(self) -> int:
        return len(self._analyzers)

    def get(self, workbook_id: str) -> ImpactAnalyzer | None:
        return self._analyzers.get(workbook_id)

    def lock(self, workbook_id: str) -> asyncio.Lock:
        if workbook_id not in self._locks:
            self._locks[workbook_id] = asyncio.Lock()
        return self._locks[workbook_id]

    def store(self, workbook_id: str, analyzer: ImpactAnalyzer) -> None:
        self._analyzers[workbook_id] = analyzer

    def discard(self, workbook_id: str) -> None:
        self._analyzers.pop(workbook_id, None)

    def clear(self) -> None:
        """Forget every analyzer and lock. Call only with no build in flight."""
        self._analyzers.clear()
        self._locks.clear()


def _ok(data: dict[str, Any]) -> dict[str, Any]:
    return {"success": True, "data": data}


def _error(code: str, message: str) -> dict[str, Any]:
    return {"success": False, "error": {"code": code, "message": message}}


def _require(request: dict[str, Any], key: str) -> Any:
    value = request.get(key)
    if value is None or value == "":
        raise InvalidParamsError(f"Missing required field: {key}")
    return value


class DependencyHandler:
    """Handles dependency-analysis actions against one cell-data source.

    Actions: build, analyze_impact, detect_cycles, get_dependencies,
    get_dependents, get_stats, export_dot.
    """

    def __init__(
        self,
        source: CellDataSource,
        registry: AnalyzerRegistry | None = None,
        progress: ProgressSink | None = None,
    ) -> None:
        self.source = source
        self.registry = registry if registry is not None else AnalyzerRegistry()
        self.progress = progress
        self._actions: dict[str, Callable[[dict[str, Any]], Awaitable[dict[str, Any]]]] = {
            "build": self._build,
            "analyze_impact": self._analyze_impact,
            "detect_cycles": self._detect_cycles,
            "get_dependencies": self._get_dependencies,
            "get_dependents": self._get_dependents,
            "get_stats": self._get_stats,
            "export_dot": self._export_dot,
        }

    @property
    def actions(self) -> list[str]:
        return list(self._actions)

    async def handle(self, request: dict[str, Any]) -> dict[str, Any]:
        action = request.get("action")
        handler = self._actions.get(action) if isinstance(action, str) else None
        if handler is None:
            return _error(INVALID_PARAMS, f"Unknown action: {action!r}")
        try:
            return _ok(await handler(request))
        except InvalidParamsError as exc:
            return _error(INVALID_PARAMS, str(exc))
        except Exception as exc:
            logger.exception("Dependency action %s failed", action)
            return _error(INTERNAL_ERROR, f"Internal server error: {exc}")

    # ------------------------------------------------------------------
    # Graph lifecycle
    # ------------------------------------------------------------------

    async def _build_analyzer(
        self, workbook_id: str, sheet_names: list[str] | None
    ) -> tuple[ImpactAnalyzer, BuildSummary]:
        # Caller holds the workbook lock. A failed build leaves no analyzer behind.
        self.registry.discard(workbook_id)
        analyzer = ImpactAnalyzer(self.registry.config)
        summary = await analyzer.build_from_spreadsheet(
            self.source, workbook_id, sheet_names, self.progress
        )
        self.registry.store(workbook_id, analyzer)
        return analyzer, summary

    async def _rebuild(self, workbook_id: str, sheet_names: list[str] | None) -> BuildSummary:
        async with self.registry.lock(workbook_id):
            _, summary = await self._build_analyzer(workbook_id, sheet_names)
            return summary

    async def _analyzer_for(self, request: dict[str, Any]) -> ImpactAnalyzer:
        workbook_id = _require(request, "spreadsheet_id")
        async with self.registry.lock(workbook_id):
            analyzer = self.registry.get(workbook_id)
            if analyzer is None:
                analyzer, _ = await self._build_analyzer(workbook_id, request.get("sheet_names"))
            return analyzer

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    async def _build(self, request: dict[str, Any]) -> dict[str, Any]:
        workbook_id = _require(request, "spreadsheet_id")
        summary = await self._rebuild(workbook_id, request.get("sheet_names"))
        data = summary.to_dict()
        data["spreadsheet_id"] = data.pop("workbook_id")
        data["message"] = f"Built dependency graph with {summary.cell_count} cells"
        return data

    async def _analyze_impact(self, request: dict[str, Any]) -> dict[str, Any]:
        cell = _require(request, "cell")
        analyzer = await self._analyzer_for(request)
        return analyzer.analyze_impact(cell).to_dict()

    async def _detect_cycles(self, request: dict[str, Any]) -> dict[str, Any]:
        analyzer = await self._analyzer_for(request)
        cycles = analyzer.detect_cycles()
        return {
            "circular_dependencies": [c.to_dict() for c in cycles],
            "count": len(cycles),
        }

    async def _get_dependencies(self, request: dict[str, Any]) -> dict[str, Any]:
        cell = _require(request, "cell")
        analyzer = await self._analyzer_for(request)
        return {"cell": cell, "dependencies": analyzer.get_dependencies(cell)}

    async def _get_dependents(self, request: dict[str, Any]) -> dict[str, Any]:
        cell = _require(request, "cell")
        analyzer = await self._analyzer_for(request)
        return {"cell": cell, "dependents": analyzer.get_dependents(cell)}

    async def _get_stats(self, request: dict[str, Any]) -> dict[str, Any]:
        analyzer = await self._analyzer_for(request)
        return analyzer.get_stats().to_dict()

    async def _export_dot(self, request: dict[str, Any]) -> dict[str, Any]:
        analyzer = await self._analyzer_for(request)
        return {"dot": analyzer.to_dot()}
