"""Cell-data sources: where ImpactAnalyzer gets formula text from."""

from __future__ import annotations

import asyncio
import os
import threading
from collections.abc import Mapping, Sequence
from typing import Any

from cellgraph._protocol import CellValue


class InMemorySource:
    """Serves fixed grids, keyed by workbook id then sheet name.

    A single-workbook mapping of ``sheet -> grid`` is also accepted and
    answers for any workbook id.
    """

    def __init__(
        self,
        sheets: Mapping[str, Sequence[Sequence[CellValue]]] | None = None,
        workbooks: Mapping[str, Mapping[str, Sequence[Sequence[CellValue]]]] | None = None,
    ) -> None:
        self._default = dict(sheets or {})
        self._workbooks = {k: dict(v) for k, v in (workbooks or {}).items()}

    def _book(self, workbook_id: str) -> dict[str, Sequence[Sequence[CellValue]]]:
        if workbook_id in self._workbooks:
            return self._workbooks[workbook_id]
        if self._default:
            return self._default
        raise KeyError(f"Workbook '{workbook_id}' does not exist")

    async def sheet_names(self, workbook_id: str) -> list[str]:
        return list(self._book(workbook_id))

    async def sheet_values(self, workbook_id: str, sheet_name: str) -> Sequence[Sequence[CellValue]]:
        book = self._book(workbook_id)
        if sheet_name not in book:
            raise KeyError(f"Worksheet '{sheet_name}' does not exist")
        return book[sheet_name]


class OpenpyxlSource:
    """Reads formula text from local .xlsx files with openpyxl.

    The workbook id is the file path, relative to ``root`` when one is given.
    Workbooks are loaded with ``data_only=False`` so formula cells yield their
    formula rather than the cached result. Loading runs in a worker thread.
    """

    def __init__(self, root: str | os.PathLike[str] | None = None) -> None:
        self._root = os.fspath(root) if root is not None else None
        self._books: dict[str, Any] = {}
        self._lock = threading.Lock()

    def _path(self, workbook_id: str) -> str:
        if self._root is None:
            return workbook_id
        return os.path.join(self._root, workbook_id)

    def _load(self, workbook_id: str) -> Any:
        from openpyxl import load_workbook

        with self._lock:
            wb = self._books.get(workbook_id)
            if wb is None:
                wb = load_workbook(self._path(workbook_id), data_only=False)
                self._books[workbook_id] = wb
            return wb

    def _read_sheet(self, workbook_id: str, sheet_name: str) -> list[list[CellValue]]:
        wb = self._load(workbook_id)
        if sheet_name not in wb.sheetnames:
            raise KeyError(f"Worksheet '{sheet_name}' does not exist")
        ws = wb[sheet_name]
        grid: list[list[CellValue]] = []
        for row in ws.iter_rows(min_row=1, min_col=1, values_only=True):
            # Array formulas come back as ArrayFormula objects carrying .text
            grid.append([getattr(value, "text", value) for value in row])
        return grid

    async def sheet_names(self, workbook_id: str) -> list[str]:
        wb = await asyncio.to_thread(self._load, workbook_id)
        return list(wb.sheetnames)

    async def sheet_values(self, workbook_id: str, sheet_name: str) -> list[list[CellValue]]:
        return await asyncio.to_thread(self._read_sheet, workbook_id, sheet_name)

    def close(self) -> None:
        """Forget loaded workbooks so the next read hits the disk again."""
        with self._lock:
            for wb in self._books.values():
                wb.close()
            self._books.clear()
