"""Formula parser: regex-based reference and function extraction.

The parser never evaluates a formula. It reports which cells, ranges, whole
columns and whole rows a formula reads, and which functions it calls.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache

from cellgraph._utils import a1_to_rowcol, rowcol_to_a1

# ---------------------------------------------------------------------------
# Regex patterns for reference extraction
# ---------------------------------------------------------------------------

# Sheet prefix: Sheet1!, Données!, 'Sheet Name'! (\w is Unicode-aware)
_SHEET_PREFIX = r"(?:'(?P<qsheet>(?:[^']|'')+)'!|(?P<sheet>[\w.]+)!)"
_CELL = r"\$?[A-Z]{1,3}\$?\d{1,7}"
_COLUMN = r"\$?[A-Z]{1,3}"
_ROW = r"\$?\d{1,7}"

# One alternation so ranges win over the single cells they contain.
_REF_RE = re.compile(
    rf"(?<![\w.$'!]){_SHEET_PREFIX}?(?:"
    rf"(?P<range>{_CELL}\s*:\s*{_CELL})"
    rf"|(?P<column>{_COLUMN}\s*:\s*{_COLUMN})"
    rf"|(?P<row>{_ROW}\s*:\s*{_ROW})"
    rf"|(?P<cell>{_CELL})"
    r")(?![\w(!])",
    re.IGNORECASE,
)

# Function names: SUM(...), VLOOKUP(...)
_FUNC_RE = re.compile(r"(?<![A-Za-z0-9_.])([A-Z_][A-Z0-9_.]*)\s*\(", re.IGNORECASE)

# Strings in formulas (to skip refs inside string literals)
_STRING_RE = re.compile(r'"(?:[^"]|"")*"')

REFERENCE_KINDS = ("cell", "range", "column", "row")


@dataclass(frozen=True)
class Reference:
    """A reference token found in a formula."""

    kind: str  # one of REFERENCE_KINDS
    raw: str  # token as written, including any sheet prefix
    sheet: str | None
    start: str
    end: str | None = None

    @property
    def is_range(self) -> bool:
        return self.kind != "cell"


@dataclass(frozen=True)
class ParsedFormula:
    formula: str  # without the leading "="
    references: tuple[Reference, ...]
    functions: tuple[str, ...]


def _strip_strings(formula: str) -> str:
    """Blank out string literals so refs inside quotes aren't matched."""
    return _STRING_RE.sub(lambda m: " " * len(m.group(0)), formula)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


@lru_cache(maxsize=500)
def parse_formula(formula: str) -> ParsedFormula:
    """Extract reference tokens and function names from a formula.

    Accepts the formula with or without its leading ``=``. Results are
    memoised since the same formula text tends to repeat down a column.
    """
    body = formula[1:] if formula.startswith("=") else formula
    clean = _strip_strings(body)

    functions: list[str] = []
    for m in _FUNC_RE.finditer(clean):
        name = m.group(1).upper()
        if name not in functions:
            functions.append(name)

    references: list[Reference] = []
    for m in _REF_RE.finditer(clean):
        sheet = m.group("qsheet")
        if sheet is not None:
            sheet = sheet.replace("''", "'")
        else:
            sheet = m.group("sheet")

        kind = next(k for k in ("range", "column", "row", "cell") if m.group(k))
        token = re.sub(r"\s+", "", m.group(kind))
        start, _, end = token.partition(":")
        references.append(
            Reference(
                kind=kind,
                raw=m.group(0),
                sheet=sheet,
                start=start,
                end=end or None,
            )
        )

    return ParsedFormula(
        formula=body,
        references=tuple(references),
        functions=tuple(functions),
    )


def clear_parse_cache() -> None:
    parse_formula.cache_clear()


# ---------------------------------------------------------------------------
# Normalisation
# ---------------------------------------------------------------------------


def split_address(address: str) -> tuple[str | None, str]:
    """Split "Sheet1!A1" into ``("Sheet1", "A1")``; unqualified -> ``(None, "A1")``."""
    if "!" not in address:
        return None, address
    sheet, ref = address.rsplit("!", 1)
    return sheet, ref


def sheet_of(address: str) -> str | None:
    return split_address(address)[0]


def normalize_reference(ref: str, current_sheet: str | None = None) -> str:
    """Return the canonical "SheetName!A1" form of a reference token.

    Dollar signs and whitespace are dropped, the sheet name is unquoted and
    the A1 part is upper-cased. Unqualified tokens take ``current_sheet``;
    with no sheet at all the bare A1 part is returned.
    """
    sheet, part = split_address(ref.strip())
    if sheet is not None:
        sheet = sheet.strip()
        if len(sheet) >= 2 and sheet.startswith("'") and sheet.endswith("'"):
            sheet = sheet[1:-1].replace("''", "'")
    part = re.sub(r"[\s$]", "", part).upper()
    sheet = sheet or current_sheet
    return f"{sheet}!{part}" if sheet else part


# ---------------------------------------------------------------------------
# Range expansion
# ---------------------------------------------------------------------------


def _range_bounds(range_ref: str) -> tuple[str | None, int, int, int, int]:
    sheet, ref_part = split_address(range_ref)
    parts = ref_part.split(":")
    if len(parts) != 2:
        raise ValueError(f"Invalid range: {range_ref!r}")

    start_row, start_col = a1_to_rowcol(parts[0])
    end_row, end_col = a1_to_rowcol(parts[1])
    r_min, r_max = min(start_row, end_row), max(start_row, end_row)
    c_min, c_max = min(start_col, end_col), max(start_col, end_col)
    return sheet, r_min, c_min, r_max, c_max


def range_size(range_ref: str) -> int:
    """Number of cells in a bounded range like "A1:C10"."""
    _, r_min, c_min, r_max, c_max = _range_bounds(range_ref)
    return (r_max - r_min + 1) * (c_max - c_min + 1)


def expand_range(range_ref: str) -> list[str]:
    """Expand "A1:B2" into ["A1", "B1", "A2", "B2"] (row-major).

    A sheet prefix on the input is carried onto every output ref.
    """
    sheet, r_min, c_min, r_max, c_max = _range_bounds(range_ref)

    cells: list[str] = []
    for r in range(r_min, r_max + 1):
        for c in range(c_min, c_max + 1):
            ref = rowcol_to_a1(r, c)
            cells.append(f"{sheet}!{ref}" if sheet is not None else ref)
    return cells


def referenced_cells(
    formula: str,
    current_sheet: str | None = None,
    max_cells: int = 1000,
) -> list[str]:
    """Canonical addresses a formula reads, in first-seen order.

    Bounded ranges up to ``max_cells`` cells are expanded into their cells;
    larger ranges and whole-row/column references stay as a single address.
    """
    refs: list[str] = []
    seen: set[str] = set()

    def _add(address: str) -> None:
        if address not in seen:
            seen.add(address)
            refs.append(address)

    for ref in parse_formula(formula).references:
        address = normalize_reference(ref.raw, current_sheet)
        if ref.kind == "range" and range_size(address) <= max_cells:
            for cell in expand_range(address):
                _add(cell)
        else:
            _add(address)

    return refs
