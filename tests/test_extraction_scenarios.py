"""
End-to-end extraction scenarios over real workbook bytes.
"""
import hashlib
import io
import zipfile

import pytest

from intake.extraction.config import ParserConfig
from intake.extraction.extractor import FORMULA_ACTION, OrderExtractor
from intake.extraction.normalizer import Normalizer

from conftest import FIXED_RECEIVED_AT, SCENARIO_A_ROWS


def replace_part(data, name, content):
    """Rewrite one part of an .xlsx package, keeping the others."""
    out = io.BytesIO()
    with zipfile.ZipFile(io.BytesIO(data)) as src, zipfile.ZipFile(out, "w") as dst:
        for info in src.infolist():
            dst.writestr(info, content if info.filename == name else src.read(info.filename))
    return out.getvalue()


def all_evidence_refs(order):
    refs = []
    for item in order.line_items:
        refs.extend(item.evidence.values())
    refs.extend(order.customer.evidence_refs)
    if order.totals is not None:
        refs.extend(order.totals.evidence.values())
    for issue in order.issues:
        refs.extend(issue.evidence_refs)
    for cand in order.schema_inference.candidates:
        refs.extend(cand.sample_evidence_ids)
        if cand.header_evidence_id:
            refs.append(cand.header_evidence_id)
    return refs


class TestScenarioA:
    def test_single_line_order(self, extractor, scenario_a_bytes, case_meta):
        order = extractor.extract(scenario_a_bytes, case_meta()).order
        assert len(order.line_items) == 1
        line = order.line_items[0]
        assert line.sku == "ABC-001"
        assert line.quantity == 10
        assert line.unit_price_source == pytest.approx(25.00)
        assert line.line_total_source == pytest.approx(250.00)
        assert order.customer.input_name == "Acme Corp"
        assert order.issues == []
        assert order.confidence.overall >= 0.8

    def test_meta_and_stages(self, extractor, scenario_a_bytes, case_meta):
        order = extractor.extract(scenario_a_bytes, case_meta(), received_at=FIXED_RECEIVED_AT).order
        assert order.order_id == "case-1:r1"
        assert order.meta.file_sha256 == hashlib.sha256(scenario_a_bytes).hexdigest()
        assert order.meta.received_at == FIXED_RECEIVED_AT
        assert order.meta.language_hint == "en"
        assert order.meta.parsing.sheets_processed == ["Order"]
        assert set(order.confidence.by_stage) == {"sheet_selection", "header_detection", "column_mapping"}
        assert order.schema_inference.header_row == 1
        assert order.schema_inference.selected_sheet == "Order"

    def test_line_evidence_points_at_source_cells(self, extractor, scenario_a_bytes, case_meta):
        order = extractor.extract(scenario_a_bytes, case_meta()).order
        line = order.line_items[0]
        by_id = order.evidence_by_id()
        assert line.evidence["quantity"] == "Order!C2"
        assert by_id["Order!C2"].raw_value == 10
        assert by_id[line.evidence["line_total_source"]].cell == "E2"


class TestProperties:
    def test_determinism(self, extractor, scenario_a_bytes, case_meta):
        first = extractor.extract(scenario_a_bytes, case_meta(), received_at=FIXED_RECEIVED_AT)
        second = OrderExtractor(max_upload_bytes=5 * 1024 * 1024).extract(
            scenario_a_bytes, case_meta(), received_at=FIXED_RECEIVED_AT,
        )
        assert first.order.to_dict() == second.order.to_dict()
        assert first.ambiguous_fields == second.ambiguous_fields

    def test_evidence_completeness(self, extractor, make_workbook, case_meta):
        data = make_workbook([
            ["SKU", "GTIN", "Description", "Qty", "Unit Price", "Amount"],
            ["A-1", "4006381333931", "Widget", 2, 10.0, 21.0],
            ["A-2", "12345", "Gadget", "three", 5.0, 5.0],
            [None, None, "Subtotal", None, None, 26.0],
        ])
        order = extractor.extract(data, case_meta()).order
        known = set(order.evidence_by_id())
        refs = all_evidence_refs(order)
        assert refs
        assert set(refs) <= known

        by_id = order.evidence_by_id()
        normalize = {
            "sku": Normalizer.normalize_sku,
            "gtin": lambda raw: Normalizer.normalize_gtin(raw)[0],
            "product_name": Normalizer.normalize_text,
            "quantity": lambda raw: Normalizer.parse_number(raw)[0],
            "unit_price_source": lambda raw: Normalizer.parse_number(raw)[0],
            "line_total_source": lambda raw: Normalizer.parse_number(raw)[0],
        }
        first, second = order.line_items
        assert set(first.evidence) == set(normalize)
        assert set(second.evidence) == set(normalize) - {"quantity"}
        for item in order.line_items:
            for field_name, eid in item.evidence.items():
                assert normalize[field_name](by_id[eid].raw_value) == getattr(item, field_name)

    def test_zero_quantity_raises_no_issue(self, extractor, make_workbook, case_meta):
        data = make_workbook([
            ["Customer", "SKU", "Qty", "Unit Price", "Total"],
            ["Acme Corp", "ABC-001", 0, 25.00, 0.00],
        ])
        order = extractor.extract(data, case_meta()).order
        assert order.line_items[0].quantity == 0
        assert order.issues == []


class TestBlockers:
    def test_formula_blocker(self, extractor, make_workbook, case_meta):
        def add_formula(wb):
            wb["Order"]["E2"] = "=C2*D2"

        order = extractor.extract(make_workbook(SCENARIO_A_ROWS, setup=add_formula), case_meta()).order
        assert len(order.issues) == 1
        issue = order.issues[0]
        assert (issue.code, issue.severity) == ("FORMULAS_BLOCKED", "blocker")
        assert issue.evidence_refs == ["Order!E2"]
        assert issue.suggested_action == FORMULA_ACTION
        assert order.line_items == []
        assert order.meta.parsing.contains_formulas is True
        assert order.confidence.overall == 0.0
        assert order.has_blockers()

    def test_formula_evidence_is_capped(self, make_workbook, case_meta):
        def add_formulas(wb):
            for r in range(2, 14):
                wb["Order"][f"F{r}"] = f"=C{r}*D{r}"

        cfg = ParserConfig(max_formula_evidence=10)
        order = OrderExtractor(cfg, max_upload_bytes=10 ** 7).extract(
            make_workbook(SCENARIO_A_ROWS, setup=add_formulas), case_meta(),
        ).order
        assert len(order.issues[0].evidence_refs) == 10
        assert "12 formula cell(s)" in order.issues[0].message

    def test_file_too_large(self, scenario_a_bytes, case_meta):
        order = OrderExtractor(max_upload_bytes=10).extract(scenario_a_bytes, case_meta()).order
        assert [i.code for i in order.issues] == ["FILE_TOO_LARGE"]

    def test_hash_mismatch(self, extractor, scenario_a_bytes, case_meta):
        order = extractor.extract(scenario_a_bytes, case_meta(file_sha256="0" * 64)).order
        assert [i.code for i in order.issues] == ["SOURCE_HASH_MISMATCH"]

    def test_matching_hash_is_accepted(self, extractor, scenario_a_bytes, case_meta):
        digest = hashlib.sha256(scenario_a_bytes).hexdigest().upper()
        order = extractor.extract(scenario_a_bytes, case_meta(file_sha256=digest)).order
        assert not order.has_blockers()

    def test_invalid_workbook(self, extractor, case_meta):
        order = extractor.extract(b"definitely not xlsx", case_meta()).order
        assert [i.code for i in order.issues] == ["INVALID_WORKBOOK"]
        assert order.meta.file_sha256 == hashlib.sha256(b"definitely not xlsx").hexdigest()

    def test_truncated_sheet_xml_is_invalid_workbook(self, extractor, scenario_a_bytes, case_meta):
        data = replace_part(scenario_a_bytes, "xl/worksheets/sheet1.xml", b"<worksheet><sheetData><row")
        order = extractor.extract(data, case_meta()).order
        assert [(i.code, i.severity) for i in order.issues] == [("INVALID_WORKBOOK", "blocker")]
        assert order.line_items == []

    def test_no_suitable_sheet(self, extractor, make_workbook, case_meta):
        order = extractor.extract(make_workbook([]), case_meta()).order
        assert [i.code for i in order.issues] == ["NO_SUITABLE_SHEET"]


class TestErrors:
    def test_no_header_row_is_error_not_blocker(self, extractor, make_workbook, case_meta):
        order = extractor.extract(make_workbook([[1, 2, 3], [4, 5, 6]]), case_meta()).order
        assert [(i.code, i.severity) for i in order.issues] == [("NO_HEADER_ROW", "error")]
        assert order.line_items == []
        assert not order.has_blockers()

    def test_missing_quantity_column(self, extractor, make_workbook, case_meta):
        order = extractor.extract(make_workbook([
            ["SKU", "Colour"],
            ["A-1", "red"],
            ["A-2", "blue"],
        ]), case_meta()).order
        codes = [i.code for i in order.issues]
        assert "MISSING_QUANTITY_COLUMN" in codes
        assert "MISSING_QUANTITY" not in codes
        assert len(order.line_items) == 2

    def test_persian_order(self, extractor, make_workbook, case_meta):
        order = extractor.extract(make_workbook([
            ["مشتری", "کد کالا", "تعداد"],
            ["شرکت آلفا", "A-1", "۱۲"],
        ]), case_meta()).order
        assert order.meta.language_hint == "fa"
        assert order.customer.input_name == "شرکت آلفا"
        assert order.line_items[0].quantity == 12
        assert order.schema_inference.number_conventions["C"].digit_script == "persian"

    def test_language_hint_from_caller(self, extractor, scenario_a_bytes, case_meta):
        order = extractor.extract(scenario_a_bytes, case_meta(language_hint="de")).order
        assert order.meta.language_hint == "de"
