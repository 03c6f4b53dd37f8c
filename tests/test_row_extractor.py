"""
Tests for row extraction: blank rows, totals, merged cells, customer lookup.
"""
import pytest

from intake.extraction.config import ParserConfig, DEFAULT_PARSER_CONFIG
from intake.extraction.evidence import EvidenceCollector
from intake.extraction.row_extractor import CellRead, RowExtractor
from intake.extraction.schema_inferencer import SchemaInferencer
from intake.extraction.workbook_scanner import sheet_frame


def run_rows(make_sheet, rows, header_row=1, cfg=DEFAULT_PARSER_CONFIG, setup=None):
    _, ws = make_sheet(rows)
    if setup is not None:
        setup(ws)
    df = sheet_frame(ws)
    evidence = EvidenceCollector()
    inferencer = SchemaInferencer(cfg)
    candidates = inferencer.build_candidates(ws, df, header_row, evidence)
    mappings = inferencer.infer(candidates).mappings
    return RowExtractor(cfg).extract(ws, df, header_row, mappings, evidence), evidence


TOTALS_SHEET = [
    ["SKU", "Description", "Qty", "Unit Price", "Amount"],
    ["A-1", "Widget", 2, 10.0, 20.0],
    ["A-2", "Gadget", 1, 5.0, 5.0],
    [None, "Subtotal", None, None, 25.0],
    [None, "Tax", None, None, 2.5],
    [None, "Grand Total", None, None, 27.5],
]


class TestTotalRows:
    def test_total_rows_are_not_line_items(self, make_sheet):
        result, _ = run_rows(make_sheet, TOTALS_SHEET)
        assert [item.sku for item in result.line_items] == ["A-1", "A-2"]

    def test_total_rows_feed_totals(self, make_sheet):
        result, evidence = run_rows(make_sheet, TOTALS_SHEET)
        totals = result.totals
        assert totals.subtotal_source == pytest.approx(25.0)
        assert totals.tax_total_source == pytest.approx(2.5)
        assert totals.total_source == pytest.approx(27.5)
        assert totals.evidence["subtotal_source"] == "Order!E4"
        assert evidence.get("Order!E6").raw_value == 27.5

    def test_keyword_classification(self):
        assert RowExtractor.total_kind(["sub total"]) == "subtotal"
        assert RowExtractor.total_kind(["vat 9"]) == "tax"
        assert RowExtractor.total_kind(["جمع کل"]) == "total"
        assert RowExtractor.total_kind(["widget"]) is None

    def test_is_total_row(self):
        extractor = RowExtractor()
        with_sku = {"sku": CellRead(value="A-1", row=2, column=1)}
        no_ids = {"sku": CellRead(value=None, row=2, column=1), "line_total": CellRead(value=12.0, row=2, column=5)}
        assert extractor.is_total_row(["total"], with_sku) is True
        assert extractor.is_total_row(["total widgets"], with_sku) is False
        assert extractor.is_total_row(["total widgets"], {}) is True
        assert extractor.is_total_row([], no_ids) is True


class TestRows:
    def test_blank_rows_are_skipped(self, make_sheet):
        result, _ = run_rows(make_sheet, [
            ["SKU", "Qty"],
            ["A-1", 1],
            [None, None],
            ["A-2", 2],
        ])
        assert [(i.row, i.source_row_number) for i in result.line_items] == [(0, 2), (1, 4)]

    def test_merged_cells_use_master_value(self, make_sheet):
        def merge(ws):
            ws.merge_cells("B2:B3")

        result, _ = run_rows(make_sheet, [
            ["SKU", "Description", "Qty"],
            ["A-1", "Widget", 2],
            ["A-2", None, 3],
        ], setup=merge)
        first, second = result.line_items
        assert second.product_name == "Widget"
        assert second.evidence["product_name"] == "Order!B2"
        assert "MERGED_CELL_VALUE" in second.flags
        assert "MULTI_ROW_MERGE" in second.flags
        assert first.flags == []

    def test_invalid_number_is_none_with_error(self, make_sheet):
        result, _ = run_rows(make_sheet, [
            ["SKU", "Qty"],
            ["A-1", "two"],
            ["A-2", 3],
        ])
        assert result.line_items[0].quantity is None
        issue = next(i for i in result.issues if i.code == "INVALID_NUMBER")
        assert issue.severity == "error"
        assert issue.evidence_refs == ["Order!B2"]

    def test_row_limit(self, make_sheet):
        result, _ = run_rows(make_sheet, [
            ["SKU", "Qty"],
            ["A-1", 1],
            ["A-2", 2],
            ["A-3", 3],
        ], cfg=ParserConfig(max_data_rows=2))
        assert len(result.line_items) == 2
        assert [i.code for i in result.issues] == ["ROW_LIMIT_REACHED"]
        assert result.issues[0].severity == "warning"

    def test_gtin_checksum_warning(self, make_sheet):
        result, _ = run_rows(make_sheet, [
            ["EAN", "Qty"],
            ["4006381333932", 1],
        ])
        item = result.line_items[0]
        assert item.gtin == "4006381333932"
        assert "GTIN_CHECKSUM_FAILED" in item.flags
        assert [(i.code, i.severity) for i in result.issues] == [("INVALID_GTIN_CHECKSUM", "warning")]

    def test_every_value_has_evidence(self, make_sheet):
        result, evidence = run_rows(make_sheet, TOTALS_SHEET)
        for item in result.line_items:
            for key, eid in item.evidence.items():
                assert evidence.get(eid) is not None, key
            assert set(item.evidence) == {
                "sku", "product_name", "quantity", "unit_price_source", "line_total_source",
            }


class TestCustomer:
    def test_customer_column(self, make_sheet):
        result, _ = run_rows(make_sheet, [
            ["Customer", "SKU", "Qty"],
            ["Acme", None, None],
            [None, "A-1", 2],
        ])
        assert result.customer.input_name == "Acme"
        assert result.customer.evidence_refs == ["Order!A2"]
        assert len(result.line_items) == 1

    def test_customer_label_above_header(self, make_sheet):
        result, _ = run_rows(make_sheet, [
            ["Customer: Acme Corp", None, None],
            [None, None, None],
            ["SKU", "Description", "Qty"],
            ["A-1", "Widget", 2],
        ], header_row=3)
        assert result.customer.input_name == "Acme Corp"
        assert result.customer.evidence_refs == ["Order!A1"]

    def test_customer_value_right_of_label(self, make_sheet):
        result, _ = run_rows(make_sheet, [
            ["Buyer", "Beta Ltd", None],
            [None, None, None],
            ["SKU", "Description", "Qty"],
            ["A-1", "Widget", 2],
        ], header_row=3)
        assert result.customer.input_name == "Beta Ltd"
        assert result.customer.evidence_refs == ["Order!B1"]

    def test_no_customer(self, make_sheet):
        result, _ = run_rows(make_sheet, [["SKU", "Qty"], ["A-1", 1]])
        assert result.customer.input_name is None
