"""
SchemaInferencer: map canonical order fields onto sheet columns.

Pipeline inside :meth:`SchemaInferencer.infer`:
1. Build candidate columns from the header row (samples + evidence)
2. Detect each column's value type from its samples
3. Score every (field, column) pair on header match and type compatibility
4. Assign columns to fields greedily across the whole sheet
5. Compute mapping confidence and the fields that need review
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.worksheet import Worksheet
from rapidfuzz import process
from rapidfuzz.distance import Levenshtein

from intake.extraction.config import (
    CURRENCY_SYMBOL_RE,
    DATE_LIKE_RE,
    INTEGER_TEXT_RE,
    ParserConfig,
    DEFAULT_PARSER_CONFIG,
)
from intake.extraction.data_cleaner import DataCleaner
from intake.extraction.evidence import EvidenceCollector
from intake.extraction.synonyms import CANONICAL_FIELDS, IDENTIFIER_FIELDS, NORMALIZED_SYNONYMS
from intake.ir import CandidateColumn, ColumnMapping, FieldCandidate
from intake.logger import get_logger

logger = get_logger(__name__)

REQUIRED_FIELDS: Tuple[str, ...] = ("quantity",)

# Weight of each field in the mapping-stage confidence.
FIELD_IMPORTANCE: Dict[str, float] = {
    "quantity": 0.4,
    "sku": 0.15,
    "gtin": 0.15,
    "product_name": 0.15,
    "customer": 0.15,
    "unit_price": 0.075,
    "line_total": 0.075,
}
IMPORTANT_FIELDS: Tuple[str, ...] = ("quantity", "sku", "gtin", "product_name", "customer")

_TEXT_COMPAT = {"text": 1.0, "mixed": 0.6, "empty": 0.5, "integer": 0.2, "number": 0.2, "currency": 0.1, "date": 0.1}
_MONEY_COMPAT = {"currency": 1.0, "number": 1.0, "integer": 0.9, "mixed": 0.6, "empty": 0.5, "text": 0.1, "date": 0.0}

TYPE_COMPATIBILITY: Dict[str, Dict[str, float]] = {
    "customer": _TEXT_COMPAT,
    "product_name": _TEXT_COMPAT,
    "sku": {"text": 1.0, "mixed": 0.8, "integer": 0.7, "empty": 0.5, "number": 0.3, "currency": 0.1, "date": 0.1},
    "gtin": {"integer": 1.0, "text": 0.7, "mixed": 0.6, "empty": 0.5, "number": 0.3, "currency": 0.1, "date": 0.1},
    "quantity": {"integer": 1.0, "number": 0.9, "mixed": 0.6, "empty": 0.5, "currency": 0.3, "text": 0.1, "date": 0.0},
    "unit_price": _MONEY_COMPAT,
    "line_total": _MONEY_COMPAT,
    "subtotal": _MONEY_COMPAT,
    "tax": _MONEY_COMPAT,
    "total": _MONEY_COMPAT,
}


@dataclass
class InferenceResult:
    candidates: List[CandidateColumn]
    mappings: Dict[str, ColumnMapping]
    field_candidates: Dict[str, List[FieldCandidate]]
    mapping_confidence: float
    ambiguous_fields: List[str] = field(default_factory=list)

    def ordered_mappings(self) -> List[ColumnMapping]:
        return [self.mappings[f] for f in CANONICAL_FIELDS if f in self.mappings]


# ---------------------------------------------------------------------------
# Type detection
# ---------------------------------------------------------------------------

def _sample_class(value: Any, number_format: Optional[str]) -> str:
    """Classify one non-empty sample as currency/integer/decimal/date/text/other."""
    if isinstance(value, bool):
        return "other"
    if isinstance(value, (datetime, date, pd.Timestamp)):
        return "date"
    if isinstance(value, (int, float)):
        if number_format and CURRENCY_SYMBOL_RE.search(number_format):
            return "currency"
        if isinstance(value, int) or float(value).is_integer():
            return "integer"
        return "decimal"
    if isinstance(value, str):
        text = DataCleaner.fold_digits(value.strip())
        if DATE_LIKE_RE.match(text):
            return "date"
        if DataCleaner.is_numeric_value(text):
            if CURRENCY_SYMBOL_RE.search(text):
                return "currency"
            if INTEGER_TEXT_RE.match(text):
                return "integer"
            return "decimal"
        return "text"
    return "other"


def detect_type(samples: List[Tuple[Any, Optional[str]]]) -> Tuple[str, float]:
    """
    Infer a column type from ``(value, number_format)`` samples.

    Returns ``(inferred_type, type_confidence)``.
    """
    if not samples:
        return "empty", 0.0
    counts: Dict[str, int] = {}
    for value, fmt in samples:
        cls = _sample_class(value, fmt)
        counts[cls] = counts.get(cls, 0) + 1
    n = float(len(samples))
    currency = counts.get("currency", 0) / n
    integer = counts.get("integer", 0) / n
    numeric = (counts.get("integer", 0) + counts.get("decimal", 0)) / n
    dates = counts.get("date", 0) / n
    text = counts.get("text", 0) / n
    if currency > 0.5:
        return "currency", round(currency, 6)
    if integer > 0.8:
        return "integer", round(integer, 6)
    if numeric > 0.8:
        return "number", round(numeric, 6)
    if dates > 0.7:
        return "date", round(dates, 6)
    if text > 0.7:
        return "text", round(text, 6)
    return "mixed", 0.5


def type_compatibility(field_name: str, inferred_type: str) -> float:
    return TYPE_COMPATIBILITY.get(field_name, {}).get(inferred_type, 0.0)


# ---------------------------------------------------------------------------
# Header matching
# ---------------------------------------------------------------------------

def match_header(normalized: str, synonyms: List[str], fuzzy_min: float = 0.6) -> Tuple[float, Optional[str]]:
    """
    Best header score of *normalized* against one field's synonyms.

    Returns ``(score, method)``; method is ``None`` when nothing matched.
    """
    if not normalized or not synonyms:
        return 0.0, None
    if normalized in synonyms:
        return 1.0, "exact"

    best, method = 0.0, None
    for syn in synonyms:
        if syn in normalized or normalized in syn:
            shorter, longer = sorted((len(syn), len(normalized)))
            ratio = shorter / float(longer)
            if ratio > fuzzy_min and ratio > best:
                best, method = ratio, "substring"

    match = process.extractOne(normalized, synonyms, scorer=Levenshtein.normalized_similarity)
    if match:
        _, similarity, _ = match
        if similarity > fuzzy_min and similarity > best:
            best, method = float(similarity), "fuzzy"
    return round(best, 6), method


class SchemaInferencer:
    """
    Column typing, header matching and field assignment.

    Typical call sequence::

        inferencer = SchemaInferencer()
        candidates = inferencer.build_candidates(ws, df, header_row, evidence)
        result = inferencer.infer(candidates, overrides)
    """

    def __init__(self, cfg: ParserConfig = DEFAULT_PARSER_CONFIG):
        self._cfg = cfg

    # ------------------------------------------------------------------
    # Candidates
    # ------------------------------------------------------------------

    def build_candidates(
        self,
        ws: Worksheet,
        df: pd.DataFrame,
        header_row: int,
        evidence: EvidenceCollector,
    ) -> List[CandidateColumn]:
        """Every column with a non-empty header cell on 1-based *header_row*."""
        header_idx = header_row - 1
        candidates: List[CandidateColumn] = []
        for col_idx in range(df.shape[1]):
            header_value = df.iat[header_idx, col_idx]
            if DataCleaner.is_empty(header_value):
                continue
            column = col_idx + 1
            header_eid = evidence.add_cell(ws, header_row, column)

            samples: List[Tuple[Any, Optional[str]]] = []
            sample_ids: List[str] = []
            for row_idx in range(header_idx + 1, len(df)):
                if len(samples) >= self._cfg.max_candidate_samples:
                    break
                value = df.iat[row_idx, col_idx]
                if DataCleaner.is_empty(value):
                    continue
                cell = ws.cell(row=row_idx + 1, column=column)
                samples.append((value, cell.number_format))
                sample_ids.append(evidence.add_cell(ws, row_idx + 1, column))

            inferred, type_conf = detect_type(samples)
            candidates.append(CandidateColumn(
                id=get_column_letter(column),
                index=col_idx,
                header=DataCleaner.cell_to_str(header_value),
                header_evidence_id=header_eid,
                samples=[DataCleaner.json_safe(v) for v, _ in samples],
                sample_evidence_ids=sample_ids,
                inferred_type=inferred,
                type_confidence=type_conf,
            ))
        return candidates

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    def score_pairs(self, candidates: List[CandidateColumn]) -> List[FieldCandidate]:
        """Score every (field, column) pair whose header matches at all."""
        pairs: List[FieldCandidate] = []
        for cand in candidates:
            normalized = DataCleaner.normalize_header(cand.header)
            for field_name in CANONICAL_FIELDS:
                header_score, method = match_header(
                    normalized, NORMALIZED_SYNONYMS.get(field_name, []), self._cfg.fuzzy_min_similarity,
                )
                if method is None:
                    continue
                type_score = type_compatibility(field_name, cand.inferred_type)
                score = self._cfg.header_match_weight * header_score + self._cfg.type_match_weight * type_score
                pairs.append(FieldCandidate(
                    field=field_name,
                    column_id=cand.id,
                    header_score=header_score,
                    type_score=type_score,
                    score=round(score, 6),
                    method=method,
                ))
        return pairs

    # ------------------------------------------------------------------
    # Assignment
    # ------------------------------------------------------------------

    def assign(
        self,
        candidates: List[CandidateColumn],
        pairs: List[FieldCandidate],
        overrides: Optional[Dict[str, Optional[str]]] = None,
    ) -> Dict[str, ColumnMapping]:
        """
        Greedy global assignment; overrides are applied first.

        An override of ``None`` leaves the field unmapped. Overrides naming an
        unknown column, or one an earlier override already claimed, are
        ignored with a warning log.
        """
        by_id = {c.id: c for c in candidates}
        index_of = {c.id: c.index for c in candidates}
        priority = {f: i for i, f in enumerate(CANONICAL_FIELDS)}
        mappings: Dict[str, ColumnMapping] = {}
        claimed_fields: set = set()
        claimed_columns: set = set()

        for field_name, column_id in (overrides or {}).items():
            if field_name not in priority:
                logger.warning("Override ignored: unknown field %s", field_name)
                continue
            if column_id is not None and column_id not in by_id:
                logger.warning("Override ignored: field=%s column=%s not a candidate", field_name, column_id)
                continue
            if column_id is not None and column_id in claimed_columns:
                logger.warning("Override ignored: field=%s column=%s already claimed", field_name, column_id)
                continue
            claimed_fields.add(field_name)
            if column_id is None:
                continue
            mappings[field_name] = ColumnMapping(
                field=field_name,
                column_id=column_id,
                header=by_id[column_id].header,
                confidence=1.0,
                method="override",
            )
            claimed_columns.add(column_id)

        ranked = sorted(
            (p for p in pairs if p.score >= self._cfg.mapping_floor),
            key=lambda p: (-p.score, priority[p.field], index_of.get(p.column_id, 0)),
        )
        for pair in ranked:
            if pair.field in claimed_fields or pair.column_id in claimed_columns:
                continue
            mappings[pair.field] = ColumnMapping(
                field=pair.field,
                column_id=pair.column_id,
                header=by_id[pair.column_id].header,
                confidence=pair.score,
                method=pair.method,
            )
            claimed_fields.add(pair.field)
            claimed_columns.add(pair.column_id)
        return mappings

    def field_candidates(self, pairs: List[FieldCandidate]) -> Dict[str, List[FieldCandidate]]:
        """Top-N scored columns per field, best first."""
        grouped: Dict[str, List[FieldCandidate]] = {}
        for pair in pairs:
            grouped.setdefault(pair.field, []).append(pair)
        limit = self._cfg.max_candidates_per_field
        return {
            f: sorted(items, key=lambda p: (-p.score, p.column_id))[:limit]
            for f, items in grouped.items()
        }

    # ------------------------------------------------------------------
    # Confidence / ambiguity
    # ------------------------------------------------------------------

    @staticmethod
    def mapping_confidence(mappings: Dict[str, ColumnMapping]) -> float:
        score = sum(
            weight * mappings[f].confidence
            for f, weight in FIELD_IMPORTANCE.items()
            if f in mappings
        )
        if "quantity" not in mappings:
            score *= 0.5
        if sum(1 for f in IMPORTANT_FIELDS if f in mappings) >= 3:
            score *= 1.1
        return round(min(score, 1.0), 6)

    def ambiguous_fields(
        self,
        mappings: Dict[str, ColumnMapping],
        field_candidates: Dict[str, List[FieldCandidate]],
    ) -> List[str]:
        """Fields whose mapping should go to the review committee."""
        ambiguous: List[str] = []
        for field_name in CANONICAL_FIELDS:
            mapping = mappings.get(field_name)
            cands = field_candidates.get(field_name, [])
            if mapping is not None:
                if mapping.method == "override":
                    continue
                if mapping.confidence < self._cfg.mapping_confidence_threshold:
                    ambiguous.append(field_name)
                    continue
                runner_up = [
                    c for c in cands
                    if c.column_id != mapping.column_id
                    and mapping.confidence - c.score <= self._cfg.ambiguity_margin
                ]
                if runner_up:
                    ambiguous.append(field_name)
            elif cands:
                identifier_gap = field_name in IDENTIFIER_FIELDS and not any(f in mappings for f in IDENTIFIER_FIELDS)
                if field_name in REQUIRED_FIELDS or identifier_gap:
                    ambiguous.append(field_name)
        return ambiguous

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def infer(
        self,
        candidates: List[CandidateColumn],
        overrides: Optional[Dict[str, Optional[str]]] = None,
    ) -> InferenceResult:
        pairs = self.score_pairs(candidates)
        mappings = self.assign(candidates, pairs, overrides)
        per_field = self.field_candidates(pairs)
        confidence = self.mapping_confidence(mappings)
        ambiguous = self.ambiguous_fields(mappings, per_field)
        logger.info(
            "Schema inference | candidates=%d | mapped=%s | confidence=%.3f | ambiguous=%s",
            len(candidates),
            {f: m.column_id for f, m in mappings.items()},
            confidence,
            ambiguous,
        )
        return InferenceResult(
            candidates=candidates,
            mappings=mappings,
            field_candidates=per_field,
            mapping_confidence=confidence,
            ambiguous_fields=ambiguous,
        )
