"""cellgraph - formula dependency graph and impact analysis for spreadsheets.

Usage::

    from cellgraph import ImpactAnalyzer, OpenpyxlSource

    analyzer = ImpactAnalyzer()
    await analyzer.build_from_spreadsheet(OpenpyxlSource(), "model.xlsx")
    report = analyzer.analyze_impact("Inputs!B2")
    print(report.all_affected_cells, report.recalculation_cost.time_estimate)
"""

from cellgraph._analyzer import AnalyzerConfig, ImpactAnalyzer
from cellgraph._graph import CircularReferenceError, DependencyGraph, GraphNode
from cellgraph._handler import AnalyzerRegistry, DependencyHandler
from cellgraph._parser import (
    ParsedFormula,
    Reference,
    expand_range,
    normalize_reference,
    parse_formula,
    referenced_cells,
)
from cellgraph._protocol import (
    BuildSummary,
    CellComplexity,
    CellDataSource,
    CircularDependency,
    GraphStats,
    ImpactAnalysis,
    ProgressSink,
    RecalculationCost,
)
from cellgraph._sources import InMemorySource, OpenpyxlSource

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "AnalyzerConfig",
    "AnalyzerRegistry",
    "BuildSummary",
    "CellComplexity",
    "CellDataSource",
    "CircularDependency",
    "CircularReferenceError",
    "DependencyGraph",
    "DependencyHandler",
    "GraphNode",
    "GraphStats",
    "ImpactAnalysis",
    "ImpactAnalyzer",
    "InMemorySource",
    "OpenpyxlSource",
    "ParsedFormula",
    "ProgressSink",
    "RecalculationCost",
    "Reference",
    "expand_range",
    "normalize_reference",
    "parse_formula",
    "referenced_cells",
]
