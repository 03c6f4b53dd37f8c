"""
Intermediate Representation Module
==================================

Pydantic models for the Canonical Order and its provenance records.

Evidence is stored once, in ``CanonicalOrder.evidence``; line items,
customer, totals and issues refer to it by evidence id. The order never
holds nested cell objects, so it stays serialisable and diffable.
"""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

Severity = Literal["blocker", "error", "warning", "info"]
ResolutionStatus = Literal["unresolved", "resolved", "ambiguous", "not_found"]
ColumnType = Literal["integer", "number", "currency", "date", "text", "mixed", "empty"]
MappingMethod = Literal["exact", "substring", "fuzzy", "override"]

SEVERITY_RANK: Dict[str, int] = {"info": 0, "warning": 1, "error": 2, "blocker": 3}


class CaseMetadata(BaseModel):
    """Caller-supplied facts about an upload."""
    case_id: str
    filename: str = "upload.xlsx"
    file_sha256: Optional[str] = None
    language_hint: Optional[str] = None


class EvidenceCell(BaseModel):
    """
    A value together with its exact source location.

    Attributes:
        id: ``"{sheet}!{cell}"``, unique within one order
        sheet: worksheet title
        cell: A1-style address
        raw_value: JSON-safe raw value (formula text for formula cells)
        display_value: value rendered as text
        number_format: the cell's Excel number format, if any
    """
    id: str
    sheet: str
    cell: str
    raw_value: Any = None
    display_value: str = ""
    number_format: Optional[str] = None

    class Config:
        frozen = True


class Issue(BaseModel):
    """A severity-tagged finding; issue lists are append-only."""
    code: str
    severity: Severity
    message: str
    evidence_refs: List[str] = Field(default_factory=list)
    suggested_action: Optional[str] = None


class CandidateColumn(BaseModel):
    """A header column considered during schema inference."""
    id: str
    index: int
    header: str
    header_evidence_id: Optional[str] = None
    samples: List[Any] = Field(default_factory=list)
    sample_evidence_ids: List[str] = Field(default_factory=list)
    inferred_type: ColumnType = "empty"
    type_confidence: float = 0.0


class ColumnMapping(BaseModel):
    field: str
    column_id: str
    header: str
    confidence: float
    method: MappingMethod


class FieldCandidate(BaseModel):
    """One scored (field, column) pairing; kept for review and audit."""
    field: str
    column_id: str
    header_score: float
    type_score: float
    score: float
    method: MappingMethod


class NumberConvention(BaseModel):
    decimal_separator: Literal[".", ","] = "."
    digit_script: Literal["latin", "persian", "arabic_indic"] = "latin"


class SheetScore(BaseModel):
    name: str
    index: int
    score: float
    rows: int = 0
    columns: int = 0
    density: float = 0.0
    reason: str = ""


class SchemaInference(BaseModel):
    selected_sheet: Optional[str] = None
    header_row: Optional[int] = None
    candidates: List[CandidateColumn] = Field(default_factory=list)
    column_mappings: List[ColumnMapping] = Field(default_factory=list)
    number_conventions: Dict[str, NumberConvention] = Field(default_factory=dict)
    sheet_scores: List[SheetScore] = Field(default_factory=list)

    def mapping_for(self, field: str) -> Optional[ColumnMapping]:
        for mapping in self.column_mappings:
            if mapping.field == field:
                return mapping
        return None


class Customer(BaseModel):
    input_name: Optional[str] = None
    resolution_status: ResolutionStatus = "not_found"
    evidence_refs: List[str] = Field(default_factory=list)


class LineItem(BaseModel):
    """
    One extracted order line.

    ``evidence`` maps each populated field name to the id of the Evidence
    Cell it came from.
    """
    row: int
    source_row_number: int
    sku: Optional[str] = None
    gtin: Optional[str] = None
    product_name: Optional[str] = None
    quantity: Optional[float] = None
    unit_price_source: Optional[float] = None
    line_total_source: Optional[float] = None
    currency: Optional[str] = None
    evidence: Dict[str, str] = Field(default_factory=dict)
    flags: List[str] = Field(default_factory=list)


class Totals(BaseModel):
    subtotal_source: Optional[float] = None
    tax_total_source: Optional[float] = None
    total_source: Optional[float] = None
    currency: Optional[str] = None
    evidence: Dict[str, str] = Field(default_factory=dict)


class ParsingInfo(BaseModel):
    parser_version: str
    contains_formulas: bool = False
    sheets_processed: List[str] = Field(default_factory=list)


class OrderMeta(BaseModel):
    case_id: str
    revision: int = 1
    derived_from: Optional[str] = None
    received_at: str
    source_filename: str
    file_sha256: str
    language_hint: Optional[str] = None
    parsing: ParsingInfo


class Confidence(BaseModel):
    overall: float = 0.0
    by_stage: Dict[str, float] = Field(default_factory=dict)


class CanonicalOrder(BaseModel):
    """The extraction result for one upload revision."""
    meta: OrderMeta
    customer: Customer = Field(default_factory=Customer)
    line_items: List[LineItem] = Field(default_factory=list)
    totals: Optional[Totals] = None
    schema_inference: SchemaInference = Field(default_factory=SchemaInference)
    confidence: Confidence = Field(default_factory=Confidence)
    issues: List[Issue] = Field(default_factory=list)
    evidence: List[EvidenceCell] = Field(default_factory=list)

    @property
    def order_id(self) -> str:
        return f"{self.meta.case_id}:r{self.meta.revision}"

    def evidence_by_id(self) -> Dict[str, EvidenceCell]:
        return {cell.id: cell for cell in self.evidence}

    def has_blockers(self) -> bool:
        return any(issue.severity == "blocker" for issue in self.issues)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")
