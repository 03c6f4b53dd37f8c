"""
Centralised configuration for the extraction engine.

Score weights, floors, tolerances, regex patterns and keyword lists live
here so the stage modules stay free of hard-coded values. Thresholds can be
overridden through environment variables.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from typing import Tuple


# ---------------------------------------------------------------------------
# Environment helpers
# ---------------------------------------------------------------------------

def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)).strip())
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)).strip())
    except ValueError:
        return default


PARSER_VERSION = "1.1.0"


# ---------------------------------------------------------------------------
# Pre-compiled regex patterns (shared across modules)
# ---------------------------------------------------------------------------

DATE_LIKE_RE = re.compile(
    r"^\s*\d{4}[-/.]\d{1,2}[-/.]\d{1,2}(?:[ T]\d{1,2}:\d{2}(?::\d{2})?)?\s*$"
    r"|^\s*\d{1,2}[-/.]\d{1,2}[-/.]\d{4}\s*$"
)
# Numeric text after digit folding; allows grouping, sign, parentheses.
NUMBER_LIKE_RE = re.compile(r"^\s*[-+(]?\s*\d[\d.,\s٫٬]*\)?\s*$")
INTEGER_TEXT_RE = re.compile(r"^\s*[-+]?\d+\s*$")
PERSIAN_SCRIPT_RE = re.compile(r"[؀-ۿ]")
CURRENCY_SYMBOL_RE = re.compile(r"[$€£¥﷼]|\b(?:USD|EUR|GBP|IRR|IRT|AED|JPY)\b|ریال|تومان", re.IGNORECASE)


# ---------------------------------------------------------------------------
# Keyword constants (English + Farsi)
# ---------------------------------------------------------------------------

HEADER_KEYWORDS: Tuple[str, ...] = (
    "sku", "item", "code", "product", "description", "name",
    "qty", "quantity", "price", "total", "amount",
    "customer", "client", "buyer", "gtin", "ean", "barcode",
    "کد", "کالا", "محصول", "نام", "شرح", "تعداد", "مقدار",
    "قیمت", "جمع", "مبلغ", "مشتری", "خریدار", "بارکد",
)

TOTAL_KEYWORDS: Tuple[str, ...] = (
    "total", "grand total", "subtotal", "sub total", "sub-total", "sum",
    "overall", "net total", "gross total", "order total",
    "invoice total", "amount due", "balance", "payable", "tax", "vat",
    "جمع", "مجموع", "جمع کل", "مجموع کل", "جمع فرعی", "جمع نهایی",
    "مبلغ کل", "کل", "قابل پرداخت", "مانده", "مالیات",
)

SUBTOTAL_LABELS: Tuple[str, ...] = (
    "subtotal", "sub total", "sub-total", "net total", "جمع فرعی", "جمع جزء",
)
TAX_LABELS: Tuple[str, ...] = (
    "tax", "vat", "gst", "sales tax", "مالیات", "عوارض",
)

CUSTOMER_KEYWORDS: Tuple[str, ...] = (
    "customer", "client", "buyer", "bill to", "sold to",
    "مشتری", "خریدار", "طرف حساب",
)


# ---------------------------------------------------------------------------
# ParserConfig: tunable thresholds
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ParserConfig:
    """Immutable bag of tunable thresholds used throughout extraction."""

    # Sheet selection
    sheet_selection_threshold: float = 0.5
    sheet_selection_min_gap: float = 0.15

    # Header detection
    max_header_search_rows: int = 10
    header_score_floor: float = 0.3

    # Schema inference
    mapping_floor: float = 0.5
    header_match_weight: float = 0.7
    type_match_weight: float = 0.3
    fuzzy_min_similarity: float = 0.6
    mapping_confidence_threshold: float = 0.80
    ambiguity_margin: float = 0.10
    max_candidates_per_field: int = 5
    max_candidate_samples: int = 10

    # Row extraction
    max_data_rows: int = _env_int("INTAKE_MAX_DATA_ROWS", 5000)
    max_formula_evidence: int = 10

    # Validation: |a-b| <= max(abs, rel * max(|a|, |b|))
    arithmetic_abs_tolerance: float = _env_float("INTAKE_ARITH_ABS_TOLERANCE", 0.02)
    arithmetic_rel_tolerance: float = _env_float("INTAKE_ARITH_REL_TOLERANCE", 0.01)

    # Overall confidence stage weights
    sheet_stage_weight: float = 0.2
    header_stage_weight: float = 0.3
    mapping_stage_weight: float = 0.5

    # Language hint
    persian_text_ratio: float = 0.3


DEFAULT_PARSER_CONFIG = ParserConfig()
