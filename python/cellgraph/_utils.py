"""A1 notation helpers."""

from __future__ import annotations

import re

_A1_RE = re.compile(r"^\$?([A-Za-z]{1,3})\$?(\d+)$")


def column_to_index(letters: str) -> int:
    """Convert column letters to a 1-based index (A=1, Z=26, AA=27)."""
    index = 0
    for ch in letters.upper():
        index = index * 26 + (ord(ch) - 64)
    return index


def index_to_column(index: int) -> str:
    """Convert a 1-based column index to letters (1=A, 27=AA)."""
    if index < 1:
        raise ValueError(f"Column index must be >= 1, got {index}")
    letters = ""
    while index > 0:
        index, remainder = divmod(index - 1, 26)
        letters = chr(65 + remainder) + letters
    return letters


def a1_to_rowcol(ref: str) -> tuple[int, int]:
    """Parse "B3" (or "$B$3") into 1-based ``(row, col)``."""
    m = _A1_RE.match(ref.strip())
    if not m:
        raise ValueError(f"Invalid A1 reference: {ref!r}")
    return int(m.group(2)), column_to_index(m.group(1))


def rowcol_to_a1(row: int, col: int) -> str:
    """Format 1-based ``(row, col)`` as "B3"."""
    if row < 1:
        raise ValueError(f"Row must be >= 1, got {row}")
    return f"{index_to_column(col)}{row}"
