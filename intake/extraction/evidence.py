"""
EvidenceCollector: builds the order's Evidence Cell list while stages run.

Each cell is recorded once; callers keep the returned id.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from openpyxl.worksheet.worksheet import Worksheet

from intake.extraction.data_cleaner import DataCleaner
from intake.ir import EvidenceCell


def evidence_id(sheet: str, cell: str) -> str:
    return f"{sheet}!{cell}"


class EvidenceCollector:
    """Ordered, de-duplicated store of Evidence Cells for one extraction."""

    def __init__(self) -> None:
        self._cells: Dict[str, EvidenceCell] = {}

    def add(
        self,
        sheet: str,
        cell: str,
        raw_value: Any,
        number_format: Optional[str] = None,
        display_value: Optional[str] = None,
    ) -> str:
        eid = evidence_id(sheet, cell)
        if eid not in self._cells:
            fmt = number_format if number_format and number_format != "General" else None
            self._cells[eid] = EvidenceCell(
                id=eid,
                sheet=sheet,
                cell=cell,
                raw_value=DataCleaner.json_safe(raw_value),
                display_value=display_value if display_value is not None else DataCleaner.cell_to_str(raw_value),
                number_format=fmt,
            )
        return eid

    def add_cell(self, ws: Worksheet, row: int, column: int) -> str:
        """Record the worksheet cell at 1-based (*row*, *column*)."""
        cell = ws.cell(row=row, column=column)
        return self.add(ws.title, cell.coordinate, cell.value, cell.number_format)

    def get(self, eid: str) -> Optional[EvidenceCell]:
        return self._cells.get(eid)

    def cells(self) -> List[EvidenceCell]:
        return list(self._cells.values())
