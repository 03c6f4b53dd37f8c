"""
WorkbookScanner: workbook loading, formula rejection and sheet selection.

Encapsulates:
- Size and readability guards on the uploaded bytes
- Formula detection across every sheet (hidden ones included)
- Visible-sheet scoring and best-sheet selection
"""

from __future__ import annotations

import io
import zipfile
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd
from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException
from openpyxl.workbook.workbook import Workbook
from openpyxl.worksheet.worksheet import Worksheet

from intake.extraction.config import ParserConfig, DEFAULT_PARSER_CONFIG
from intake.extraction.data_cleaner import DataCleaner
from intake.ir import SheetScore
from intake.logger import get_logger

logger = get_logger(__name__)


class WorkbookLoadError(Exception):
    """The uploaded bytes are not a readable ``.xlsx`` workbook."""


@dataclass
class FormulaCell:
    sheet: str
    cell: str
    formula: str
    number_format: Optional[str] = None


@dataclass
class FormulaReport:
    has_formulas: bool
    cells: List[FormulaCell] = field(default_factory=list)


@dataclass
class SheetSelection:
    """
    Outcome of sheet scoring.

    ``status`` is ``selected``, ``ambiguous`` (another viable sheet within
    the minimum gap) or ``none``.
    """
    status: str
    selected: Optional[str]
    confidence: float
    scores: List[SheetScore]
    contenders: List[str] = field(default_factory=list)


def sheet_frame(ws: Worksheet) -> pd.DataFrame:
    """
    Load a worksheet into an object-dtype DataFrame anchored at A1.

    Frame position ``(i, j)`` is Excel row ``i + 1``, column ``j + 1``.
    """
    max_row = ws.max_row or 0
    max_col = ws.max_column or 0
    if max_row == 0 or max_col == 0:
        return pd.DataFrame(dtype=object)
    rows = list(ws.iter_rows(min_row=1, max_row=max_row, min_col=1, max_col=max_col, values_only=True))
    return pd.DataFrame(rows, dtype=object)


class WorkbookScanner:
    """
    Load a workbook and decide whether, and where, extraction can proceed.
    """

    def __init__(self, cfg: ParserConfig = DEFAULT_PARSER_CONFIG):
        self._cfg = cfg

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    @staticmethod
    def load(data: bytes) -> Workbook:
        """
        Open workbook bytes with formulas preserved (``data_only=False``).

        Raises :class:`WorkbookLoadError` for anything openpyxl cannot read.
        """
        # Malformed part XML surfaces as a SyntaxError subclass (ElementTree and lxml).
        try:
            return load_workbook(io.BytesIO(data), data_only=False)
        except (InvalidFileException, zipfile.BadZipFile, KeyError, ValueError, OSError, SyntaxError) as exc:
            raise WorkbookLoadError(str(exc)) from exc

    # ------------------------------------------------------------------
    # Formula detection
    # ------------------------------------------------------------------

    @staticmethod
    def detect_formulas(wb: Workbook) -> FormulaReport:
        """Scan every cell of every sheet, visible or not."""
        cells: List[FormulaCell] = []
        for ws in wb.worksheets:
            for row in ws.iter_rows():
                for cell in row:
                    value = cell.value
                    if value is None:
                        continue
                    is_formula = cell.data_type == "f" or (
                        isinstance(value, str) and value.startswith("=")
                    )
                    if not is_formula:
                        continue
                    text = getattr(value, "text", None)
                    cells.append(FormulaCell(
                        sheet=ws.title,
                        cell=cell.coordinate,
                        formula=text if isinstance(text, str) else str(value),
                        number_format=cell.number_format,
                    ))
        if cells:
            logger.info("Formula scan: %d formula cell(s), first at %s!%s", len(cells), cells[0].sheet, cells[0].cell)
        return FormulaReport(has_formulas=bool(cells), cells=cells)

    # ------------------------------------------------------------------
    # Sheet scoring
    # ------------------------------------------------------------------

    @staticmethod
    def _column_profile(values: List[Any]) -> Tuple[bool, bool]:
        """Return ``(numeric_looking, text_looking)`` for one column."""
        numeric = sum(1 for v in values if DataCleaner.is_numeric_value(v))
        text = sum(1 for v in values if DataCleaner.is_text_value(v))
        non_empty = sum(1 for v in values if not DataCleaner.is_empty(v))
        numeric_looking = numeric >= 1 and numeric * 2 >= non_empty
        text_looking = text > numeric
        return numeric_looking, text_looking

    def score_sheet(self, df: pd.DataFrame, name: str, index: int) -> SheetScore:
        """Score one sheet on density, row and column plausibility and column mix."""
        if df.empty:
            return SheetScore(name=name, index=index, score=0.0, reason="empty")
        mask = df.apply(lambda col: col.map(lambda v: not DataCleaner.is_empty(v))).astype(bool)
        row_has = mask.any(axis=1)
        col_has = mask.any(axis=0)
        rows = int(row_has.sum())
        cols = int(col_has.sum())
        if rows == 0 or cols == 0:
            return SheetScore(name=name, index=index, score=0.0, reason="empty")

        region = df.loc[row_has, col_has]
        density = float(mask.loc[row_has, col_has].to_numpy().sum()) / float(rows * cols)

        score = 0.1
        reasons: List[str] = []
        if density > 0.5:
            score += density * 0.3
            reasons.append(f"density={density:.2f}")
        if 2 <= rows <= 1000:
            score += 0.2
            reasons.append(f"rows={rows}")
        elif rows > 1000:
            score += 0.1
            reasons.append(f"rows={rows}(large)")
        if 3 <= cols <= 20:
            score += 0.1
            reasons.append(f"cols={cols}")

        has_numeric = has_text = False
        for col in region.columns:
            numeric_looking, text_looking = self._column_profile(region[col].tolist())
            has_numeric = has_numeric or numeric_looking
            has_text = has_text or text_looking
        if has_numeric:
            score += 0.2
            reasons.append("numeric_column")
        if has_text:
            score += 0.1
            reasons.append("text_column")

        return SheetScore(
            name=name,
            index=index,
            score=round(min(score, 1.0), 6),
            rows=rows,
            columns=cols,
            density=round(density, 6),
            reason=",".join(reasons),
        )

    def select_sheet(self, wb: Workbook) -> SheetSelection:
        """
        Score every visible sheet and pick the best one.

        Ties are broken by sheet order. Below ``sheet_selection_threshold``
        nothing is selected.
        """
        scores: List[SheetScore] = []
        for idx, ws in enumerate(wb.worksheets):
            if ws.sheet_state != "visible":
                logger.debug("Sheet selection: skipping %s sheet %s", ws.sheet_state, ws.title)
                continue
            scores.append(self.score_sheet(sheet_frame(ws), ws.title, idx))

        if not scores:
            return SheetSelection(status="none", selected=None, confidence=0.0, scores=[])

        ranked = sorted(scores, key=lambda s: (-s.score, s.index))
        best = ranked[0]
        if best.score < self._cfg.sheet_selection_threshold:
            logger.info("Sheet selection: no sheet above threshold (best=%s score=%.3f)", best.name, best.score)
            return SheetSelection(status="none", selected=None, confidence=best.score, scores=scores)

        contenders = [
            s.name for s in ranked[1:]
            if s.score >= self._cfg.sheet_selection_threshold
            and best.score - s.score < self._cfg.sheet_selection_min_gap
        ]
        status = "ambiguous" if contenders else "selected"
        logger.info(
            "Sheet selection: %s | selected=%s | score=%.3f | contenders=%s",
            status, best.name, best.score, contenders,
        )
        return SheetSelection(
            status=status,
            selected=best.name,
            confidence=best.score,
            scores=scores,
            contenders=contenders,
        )

