"""
RowExtractor: walk the data rows below the header and build line items.

Handles blank rows, total/subtotal/tax rows, merged cells, the customer
name and per-column numeric conventions. Every retained value is recorded
as an Evidence Cell.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd
from openpyxl.utils import column_index_from_string, get_column_letter
from openpyxl.worksheet.worksheet import Worksheet

from intake.extraction.config import (
    CUSTOMER_KEYWORDS,
    SUBTOTAL_LABELS,
    TAX_LABELS,
    TOTAL_KEYWORDS,
    ParserConfig,
    DEFAULT_PARSER_CONFIG,
)
from intake.extraction.data_cleaner import DataCleaner
from intake.extraction.evidence import EvidenceCollector
from intake.extraction.normalizer import Normalizer
from intake.extraction.synonyms import AMOUNT_FIELDS, IDENTIFIER_FIELDS
from intake.ir import ColumnMapping, Customer, Issue, LineItem, NumberConvention, Totals
from intake.logger import get_logger

logger = get_logger(__name__)

ITEM_FIELDS = ("sku", "gtin", "product_name", "quantity", "unit_price", "line_total")
NUMERIC_FIELDS = ("quantity", "unit_price", "line_total", "subtotal", "tax", "total")

_TOTAL_KW = tuple(sorted({DataCleaner.normalize_header(k) for k in TOTAL_KEYWORDS}, key=len, reverse=True))
_SUBTOTAL_KW = tuple(DataCleaner.normalize_header(k) for k in SUBTOTAL_LABELS)
_TAX_KW = tuple(DataCleaner.normalize_header(k) for k in TAX_LABELS)
_CUSTOMER_KW = tuple(DataCleaner.normalize_header(k) for k in CUSTOMER_KEYWORDS)


def _starts_with_keyword(norm: str, keywords: Tuple[str, ...]) -> bool:
    return any(norm == kw or norm.startswith(kw + " ") for kw in keywords)


@dataclass
class CellRead:
    value: Any
    row: int
    column: int
    number_format: Optional[str] = None
    flags: List[str] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return DataCleaner.is_empty(self.value)


@dataclass
class RowExtraction:
    line_items: List[LineItem]
    customer: Customer
    totals: Optional[Totals]
    number_conventions: Dict[str, NumberConvention]
    issues: List[Issue] = field(default_factory=list)
    rows_scanned: int = 0


class RowExtractor:
    """
    Typical call sequence::

        extractor = RowExtractor()
        rows = extractor.extract(ws, df, header_row, mappings, evidence)
    """

    def __init__(self, cfg: ParserConfig = DEFAULT_PARSER_CONFIG):
        self._cfg = cfg

    # ------------------------------------------------------------------
    # Cell access
    # ------------------------------------------------------------------

    @staticmethod
    def merge_map(ws: Worksheet) -> Dict[Tuple[int, int], Tuple[int, int, bool]]:
        """``(row, col)`` of each non-master merged cell -> ``(master_row, master_col, multi_row)``."""
        out: Dict[Tuple[int, int], Tuple[int, int, bool]] = {}
        for rng in ws.merged_cells.ranges:
            multi_row = rng.max_row > rng.min_row
            for r in range(rng.min_row, rng.max_row + 1):
                for c in range(rng.min_col, rng.max_col + 1):
                    if (r, c) != (rng.min_row, rng.min_col):
                        out[(r, c)] = (rng.min_row, rng.min_col, multi_row)
        return out

    @staticmethod
    def _read(ws: Worksheet, df: pd.DataFrame, merged: Dict, row: int, column: int) -> CellRead:
        flags: List[str] = []
        if (row, column) in merged:
            row, column, multi_row = merged[(row, column)]
            flags.append("MERGED_CELL_VALUE")
            if multi_row:
                flags.append("MULTI_ROW_MERGE")
        if row - 1 >= len(df) or column - 1 >= df.shape[1]:
            return CellRead(value=None, row=row, column=column, flags=flags)
        return CellRead(
            value=df.iat[row - 1, column - 1],
            row=row,
            column=column,
            number_format=ws.cell(row=row, column=column).number_format,
            flags=flags,
        )

    # ------------------------------------------------------------------
    # Conventions
    # ------------------------------------------------------------------

    @staticmethod
    def column_conventions(
        df: pd.DataFrame,
        header_row: int,
        mappings: Dict[str, ColumnMapping],
    ) -> Dict[str, NumberConvention]:
        out: Dict[str, NumberConvention] = {}
        for field_name in NUMERIC_FIELDS:
            mapping = mappings.get(field_name)
            if mapping is None or mapping.column_id in out:
                continue
            col = column_index_from_string(mapping.column_id) - 1
            if col >= df.shape[1]:
                continue
            values = df.iloc[header_row:, col].tolist()
            out[mapping.column_id] = Normalizer.detect_convention(values)
        return out

    # ------------------------------------------------------------------
    # Total rows
    # ------------------------------------------------------------------

    @staticmethod
    def _row_texts(df: pd.DataFrame, row: int) -> List[str]:
        return [
            DataCleaner.normalize_header(v)
            for v in df.iloc[row - 1].tolist()
            if DataCleaner.is_text_value(v)
        ]

    def is_total_row(self, texts: List[str], cells: Dict[str, CellRead]) -> bool:
        has_id = any(f in cells and not cells[f].empty for f in IDENTIFIER_FIELDS)
        for norm in texts:
            if norm in _TOTAL_KW:
                return True
            if not has_id and _starts_with_keyword(norm, _TOTAL_KW):
                return True
        no_item = all(
            f not in cells or cells[f].empty
            for f in ("sku", "gtin", "product_name")
        )
        if no_item:
            for f in AMOUNT_FIELDS:
                if f in cells and not cells[f].empty and DataCleaner.is_numeric_value(cells[f].value):
                    return True
        return False

    @staticmethod
    def total_kind(texts: List[str]) -> Optional[str]:
        """``subtotal``, ``tax`` or ``total`` from the row's label, or None."""
        for norm in texts:
            if _starts_with_keyword(norm, _SUBTOTAL_KW) or any(kw in norm for kw in _SUBTOTAL_KW):
                return "subtotal"
        for norm in texts:
            if _starts_with_keyword(norm, _TAX_KW):
                return "tax"
        for norm in texts:
            if _starts_with_keyword(norm, _TOTAL_KW):
                return "total"
        return None

    def _apply_total_row(
        self,
        ws: Worksheet,
        df: pd.DataFrame,
        merged: Dict,
        row: int,
        texts: List[str],
        cells: Dict[str, CellRead],
        conventions: Dict[str, NumberConvention],
        totals: Dict[str, Tuple[float, str, Optional[str]]],
        evidence: EvidenceCollector,
        issues: List[Issue],
    ) -> None:
        kind = self.total_kind(texts)
        slots: List[Tuple[str, CellRead]] = []
        if kind is not None:
            for f in ("line_total", "total", "subtotal", "tax", "unit_price"):
                if f in cells and not cells[f].empty:
                    slots.append((kind, cells[f]))
                    break
            else:
                # No mapped amount: last numeric cell in the row.
                for col in range(df.shape[1], 0, -1):
                    read = self._read(ws, df, merged, row, col)
                    if not read.empty and DataCleaner.is_numeric_value(read.value):
                        slots.append((kind, read))
                        break
        else:
            column_kind = {"line_total": "total", "total": "total", "subtotal": "subtotal", "tax": "tax"}
            for f, k in column_kind.items():
                if f in cells and not cells[f].empty:
                    slots.append((k, cells[f]))

        for slot, read in slots:
            if slot in totals:
                continue
            eid = evidence.add(ws.title, f"{get_column_letter(read.column)}{read.row}", read.value, read.number_format)
            column_id = get_column_letter(read.column)
            number, ok = Normalizer.parse_number(read.value, conventions.get(column_id))
            if not ok:
                issues.append(Issue(
                    code="INVALID_NUMBER",
                    severity="error",
                    message=f"Could not parse {slot} amount '{DataCleaner.cell_to_str(read.value)}'",
                    evidence_refs=[eid],
                ))
                continue
            if number is None:
                continue
            totals[slot] = (number, eid, Normalizer.detect_currency(read.value, read.number_format))

    # ------------------------------------------------------------------
    # Customer
    # ------------------------------------------------------------------

    def customer_above_header(
        self,
        ws: Worksheet,
        df: pd.DataFrame,
        header_row: int,
        evidence: EvidenceCollector,
    ) -> Optional[Customer]:
        """Look for ``Customer: X`` style labels above the header row."""
        for r in range(1, header_row):
            for c in range(1, df.shape[1] + 1):
                raw = df.iat[r - 1, c - 1]
                if not DataCleaner.is_text_value(raw):
                    continue
                text = DataCleaner.cell_to_str(raw)
                label, _, rest = text.partition(":")
                if not _starts_with_keyword(DataCleaner.normalize_header(label), _CUSTOMER_KW):
                    continue
                if rest.strip():
                    eid = evidence.add_cell(ws, r, c)
                    return Customer(input_name=rest.strip(), resolution_status="unresolved", evidence_refs=[eid])
                for rr, cc in ((r, c + 1), (r + 1, c)):
                    if rr >= header_row or cc > df.shape[1]:
                        continue
                    value = df.iat[rr - 1, cc - 1]
                    if not DataCleaner.is_empty(value):
                        eid = evidence.add_cell(ws, rr, cc)
                        return Customer(
                            input_name=Normalizer.normalize_text(value),
                            resolution_status="unresolved",
                            evidence_refs=[eid],
                        )
        return None

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def extract(
        self,
        ws: Worksheet,
        df: pd.DataFrame,
        header_row: int,
        mappings: Dict[str, ColumnMapping],
        evidence: EvidenceCollector,
    ) -> RowExtraction:
        merged = self.merge_map(ws)
        field_cols = {f: column_index_from_string(m.column_id) for f, m in mappings.items()}
        conventions = self.column_conventions(df, header_row, mappings)
        issues: List[Issue] = []
        items: List[LineItem] = []
        totals: Dict[str, Tuple[float, str, Optional[str]]] = {}
        customer: Optional[Customer] = None
        scanned = 0

        for row in range(header_row + 1, len(df) + 1):
            cells = {f: self._read(ws, df, merged, row, c) for f, c in field_cols.items()}
            if all(read.empty for f, read in cells.items() if f != "customer"):
                if customer is None and "customer" in cells and not cells["customer"].empty:
                    customer = self._customer_from(ws, cells["customer"], evidence)
                continue
            if scanned >= self._cfg.max_data_rows:
                issues.append(Issue(
                    code="ROW_LIMIT_REACHED",
                    severity="warning",
                    message=f"Stopped after {self._cfg.max_data_rows} data rows; row {row} and below were not read",
                ))
                break
            scanned += 1

            texts = self._row_texts(df, row)
            if self.is_total_row(texts, cells):
                self._apply_total_row(
                    ws, df, merged, row, texts, cells, conventions, totals, evidence, issues,
                )
                continue

            if customer is None and "customer" in cells and not cells["customer"].empty:
                customer = self._customer_from(ws, cells["customer"], evidence)
            items.append(self._build_item(ws, row, len(items), cells, conventions, evidence, issues))

        if customer is None:
            customer = self.customer_above_header(ws, df, header_row, evidence) or Customer()

        logger.info(
            "Row extraction | sheet=%s | rows_scanned=%d | items=%d | totals=%s | customer=%s",
            ws.title, scanned, len(items), sorted(totals), customer.input_name,
        )
        return RowExtraction(
            line_items=items,
            customer=customer,
            totals=self._build_totals(totals),
            number_conventions=conventions,
            issues=issues,
            rows_scanned=scanned,
        )

    # ------------------------------------------------------------------
    # Builders
    # ------------------------------------------------------------------

    @staticmethod
    def _cell_eid(ws: Worksheet, read: CellRead, evidence: EvidenceCollector) -> str:
        return evidence.add(ws.title, f"{get_column_letter(read.column)}{read.row}", read.value, read.number_format)

    def _customer_from(self, ws: Worksheet, read: CellRead, evidence: EvidenceCollector) -> Customer:
        return Customer(
            input_name=Normalizer.normalize_text(read.value),
            resolution_status="unresolved",
            evidence_refs=[self._cell_eid(ws, read, evidence)],
        )

    def _build_item(
        self,
        ws: Worksheet,
        row: int,
        index: int,
        cells: Dict[str, CellRead],
        conventions: Dict[str, NumberConvention],
        evidence: EvidenceCollector,
        issues: List[Issue],
    ) -> LineItem:
        item = LineItem(row=index, source_row_number=row)
        for f, read in cells.items():
            if f not in ITEM_FIELDS or read.empty:
                continue
            for flag in read.flags:
                if flag not in item.flags:
                    item.flags.append(flag)
            eid = self._cell_eid(ws, read, evidence)

            if f == "sku":
                item.sku = Normalizer.normalize_sku(read.value)
            elif f == "gtin":
                item.gtin, gtin_flags = Normalizer.normalize_gtin(read.value)
                item.flags.extend(fl for fl in gtin_flags if fl not in item.flags)
                if "GTIN_CHECKSUM_FAILED" in gtin_flags:
                    issues.append(Issue(
                        code="INVALID_GTIN_CHECKSUM",
                        severity="warning",
                        message=f"Row {row}: GTIN {item.gtin} fails its check digit",
                        evidence_refs=[eid],
                    ))
            elif f == "product_name":
                item.product_name = Normalizer.normalize_text(read.value)
            elif f in ("quantity", "unit_price", "line_total"):
                column_id = get_column_letter(read.column)
                number, ok = Normalizer.parse_number(read.value, conventions.get(column_id))
                if not ok:
                    issues.append(Issue(
                        code="INVALID_NUMBER",
                        severity="error",
                        message=f"Row {row}: could not parse {f} '{DataCleaner.cell_to_str(read.value)}'",
                        evidence_refs=[eid],
                    ))
                    continue
                if f == "quantity":
                    item.quantity = number
                elif f == "unit_price":
                    item.unit_price_source = number
                else:
                    item.line_total_source = number
                if f != "quantity" and item.currency is None:
                    item.currency = Normalizer.detect_currency(read.value, read.number_format)
            key = {"unit_price": "unit_price_source", "line_total": "line_total_source"}.get(f, f)
            if getattr(item, key) is not None:
                item.evidence[key] = eid
        return item

    @staticmethod
    def _build_totals(found: Dict[str, Tuple[float, str, Optional[str]]]) -> Optional[Totals]:
        if not found:
            return None
        totals = Totals()
        attr = {"subtotal": "subtotal_source", "tax": "tax_total_source", "total": "total_source"}
        for slot, (number, eid, currency) in found.items():
            setattr(totals, attr[slot], number)
            totals.evidence[attr[slot]] = eid
            if totals.currency is None and currency:
                totals.currency = currency
        return totals
