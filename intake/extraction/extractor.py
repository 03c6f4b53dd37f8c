"""
OrderExtractor: workbook bytes -> Canonical Order.

Orchestrates the extraction stages:
1. Intake guards (size, digest, readability)
2. Formula rejection
3. Sheet selection
4. Header detection
5. Schema inference
6. Row extraction + normalisation
7. Validation and confidence scoring

Problems with the submitted file become Issues on the order. A blocker
stops the pipeline and returns an order with no line items.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

from intake.config import get_settings
from intake.extraction.config import PARSER_VERSION, ParserConfig, DEFAULT_PARSER_CONFIG
from intake.extraction.evidence import EvidenceCollector
from intake.extraction.header_locator import HeaderLocator
from intake.extraction.normalizer import Normalizer
from intake.extraction.row_extractor import RowExtractor
from intake.extraction.schema_inferencer import SchemaInferencer
from intake.extraction.synonyms import IDENTIFIER_FIELDS
from intake.extraction.validator import issue_counts, validate_order
from intake.extraction.workbook_scanner import WorkbookLoadError, WorkbookScanner, sheet_frame
from intake.ir import (
    CandidateColumn,
    CanonicalOrder,
    CaseMetadata,
    Confidence,
    FieldCandidate,
    Issue,
    OrderMeta,
    ParsingInfo,
    SchemaInference,
)
from intake.logger import get_logger

logger = get_logger(__name__)

FORMULA_ACTION = "Export the spreadsheet with values only (no formulas) and upload again"


@dataclass
class ExtractionResult:
    order: CanonicalOrder
    candidates: List[CandidateColumn] = field(default_factory=list)
    field_candidates: Dict[str, List[FieldCandidate]] = field(default_factory=dict)
    ambiguous_fields: List[str] = field(default_factory=list)


class OrderExtractor:
    """
    Deterministic extraction engine.

    ``extract`` is a pure function of its inputs apart from
    ``meta.received_at``, which can be pinned with the *received_at* argument.
    """

    def __init__(self, cfg: ParserConfig = DEFAULT_PARSER_CONFIG, max_upload_bytes: Optional[int] = None):
        self._cfg = cfg
        self._max_upload_bytes = max_upload_bytes if max_upload_bytes is not None else get_settings().MAX_UPLOAD_BYTES
        self._scanner = WorkbookScanner(cfg)
        self._headers = HeaderLocator(cfg)
        self._schema = SchemaInferencer(cfg)
        self._rows = RowExtractor(cfg)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _meta(
        self,
        meta: CaseMetadata,
        digest: str,
        received_at: Optional[str],
        revision: int,
        derived_from: Optional[str],
        contains_formulas: bool = False,
        sheets: Optional[List[str]] = None,
        language: Optional[str] = None,
    ) -> OrderMeta:
        return OrderMeta(
            case_id=meta.case_id,
            revision=revision,
            derived_from=derived_from,
            received_at=received_at or datetime.now(timezone.utc).isoformat(),
            source_filename=meta.filename,
            file_sha256=digest,
            language_hint=language if language is not None else meta.language_hint,
            parsing=ParsingInfo(
                parser_version=PARSER_VERSION,
                contains_formulas=contains_formulas,
                sheets_processed=sheets or [],
            ),
        )

    @staticmethod
    def _blocked(order_meta: OrderMeta, issue: Issue, evidence=None, schema=None) -> ExtractionResult:
        logger.warning("Extraction blocked | case_id=%s | code=%s | %s", order_meta.case_id, issue.code, issue.message)
        order = CanonicalOrder(
            meta=order_meta,
            issues=[issue],
            evidence=evidence or [],
            schema_inference=schema or SchemaInference(),
            confidence=Confidence(overall=0.0, by_stage={}),
        )
        return ExtractionResult(order=order)

    def _confidence(self, sheet: float, header: float, mapping: float) -> Confidence:
        overall = (
            self._cfg.sheet_stage_weight * sheet
            + self._cfg.header_stage_weight * header
            + self._cfg.mapping_stage_weight * mapping
        )
        return Confidence(
            overall=round(overall, 6),
            by_stage={
                "sheet_selection": round(sheet, 6),
                "header_detection": round(header, 6),
                "column_mapping": round(mapping, 6),
            },
        )

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def extract(
        self,
        data: bytes,
        meta: CaseMetadata,
        overrides: Optional[Dict[str, Optional[str]]] = None,
        revision: int = 1,
        derived_from: Optional[str] = None,
        received_at: Optional[str] = None,
    ) -> ExtractionResult:
        digest = hashlib.sha256(data).hexdigest()
        base_meta = self._meta(meta, digest, received_at, revision, derived_from)
        logger.info("Extracting case | case_id=%s | file=%s | bytes=%d | revision=%d",
                    meta.case_id, meta.filename, len(data), revision)

        # 1. intake guards
        if len(data) > self._max_upload_bytes:
            return self._blocked(base_meta, Issue(
                code="FILE_TOO_LARGE",
                severity="blocker",
                message=f"Upload is {len(data)} bytes; the limit is {self._max_upload_bytes}",
                suggested_action="Split the order into smaller spreadsheets and upload again",
            ))
        if meta.file_sha256 and meta.file_sha256.lower() != digest:
            return self._blocked(base_meta, Issue(
                code="SOURCE_HASH_MISMATCH",
                severity="blocker",
                message=f"Declared sha256 {meta.file_sha256} does not match computed {digest}",
                suggested_action="Upload the file again",
            ))
        try:
            wb = self._scanner.load(data)
        except WorkbookLoadError as exc:
            return self._blocked(base_meta, Issue(
                code="INVALID_WORKBOOK",
                severity="blocker",
                message=f"File could not be read as an .xlsx workbook: {exc}",
                suggested_action="Save the file as an Excel workbook (.xlsx) and upload again",
            ))

        evidence = EvidenceCollector()

        # 2. formulas
        report = self._scanner.detect_formulas(wb)
        if report.has_formulas:
            refs = [
                evidence.add(fc.sheet, fc.cell, fc.formula, fc.number_format)
                for fc in report.cells[: self._cfg.max_formula_evidence]
            ]
            formula_meta = self._meta(meta, digest, received_at, revision, derived_from, contains_formulas=True)
            return self._blocked(formula_meta, Issue(
                code="FORMULAS_BLOCKED",
                severity="blocker",
                message=f"Workbook contains {len(report.cells)} formula cell(s); formulas are not evaluated",
                evidence_refs=refs,
                suggested_action=FORMULA_ACTION,
            ), evidence=evidence.cells())

        # 3. sheet selection
        issues: List[Issue] = []
        selection = self._scanner.select_sheet(wb)
        if selection.status == "none" or selection.selected is None:
            schema = SchemaInference(sheet_scores=selection.scores)
            return self._blocked(base_meta, Issue(
                code="NO_SUITABLE_SHEET",
                severity="blocker",
                message="No visible sheet looks like an order table",
                suggested_action="Put the order lines on a visible sheet with a header row",
            ), schema=schema)
        if selection.status == "ambiguous":
            issues.append(Issue(
                code="MULTIPLE_SHEET_CANDIDATES",
                severity="warning",
                message=f"Selected sheet '{selection.selected}'; similar candidates: {', '.join(selection.contenders)}",
            ))
        ws = wb[selection.selected]
        df = sheet_frame(ws)

        # 4. header
        detection = self._headers.locate(df)
        schema = SchemaInference(
            selected_sheet=selection.selected,
            header_row=detection.row,
            sheet_scores=selection.scores,
        )
        if detection.row is None:
            issues.append(Issue(
                code="NO_HEADER_ROW",
                severity="error",
                message=f"No header row found in the first {self._cfg.max_header_search_rows} rows",
                suggested_action="Add a header row naming the columns (e.g. SKU, Quantity)",
            ))
            order = CanonicalOrder(
                meta=self._meta(meta, digest, received_at, revision, derived_from, sheets=[ws.title]),
                schema_inference=schema,
                confidence=self._confidence(selection.confidence, 0.0, 0.0),
                issues=issues,
                evidence=evidence.cells(),
            )
            return ExtractionResult(order=order)

        # 5. schema
        candidates = self._schema.build_candidates(ws, df, detection.row, evidence)
        inference = self._schema.infer(candidates, overrides)
        mappings = inference.mappings
        header_refs = [c.header_evidence_id for c in candidates if c.header_evidence_id]
        if "quantity" not in mappings:
            issues.append(Issue(
                code="MISSING_QUANTITY_COLUMN",
                severity="error",
                message="No column could be mapped to quantity",
                evidence_refs=header_refs,
            ))
        if not any(f in mappings for f in IDENTIFIER_FIELDS):
            issues.append(Issue(
                code="MISSING_IDENTIFIER_COLUMN",
                severity="error",
                message="No column could be mapped to SKU or GTIN",
                evidence_refs=header_refs,
            ))

        # 6. rows
        rows = self._rows.extract(ws, df, detection.row, mappings, evidence)
        issues.extend(rows.issues)
        schema.candidates = candidates
        schema.column_mappings = inference.ordered_mappings()
        schema.number_conventions = rows.number_conventions

        # 7. validation
        issues.extend(validate_order(rows.customer, rows.line_items, rows.totals, mappings.keys(), self._cfg))

        texts = [c.header for c in candidates] + [i.product_name for i in rows.line_items if i.product_name]
        language = Normalizer.detect_language(texts, meta.language_hint, self._cfg.persian_text_ratio)

        order = CanonicalOrder(
            meta=self._meta(meta, digest, received_at, revision, derived_from, sheets=[ws.title], language=language),
            customer=rows.customer,
            line_items=rows.line_items,
            totals=rows.totals,
            schema_inference=schema,
            confidence=self._confidence(selection.confidence, detection.confidence, inference.mapping_confidence),
            issues=issues,
            evidence=evidence.cells(),
        )
        logger.info(
            "Extraction done | case_id=%s | items=%d | confidence=%.3f | issues=%s | ambiguous=%s",
            meta.case_id, len(order.line_items), order.confidence.overall, issue_counts(issues),
            inference.ambiguous_fields,
        )
        return ExtractionResult(
            order=order,
            candidates=candidates,
            field_candidates=inference.field_candidates,
            ambiguous_fields=inference.ambiguous_fields,
        )
