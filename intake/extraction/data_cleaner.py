"""
DataCleaner: value helpers shared by every extraction stage.

Responsibilities:
- Cell-level string conversion (``cell_to_str``)
- Empty-cell detection
- Digit-script folding (Persian / Arabic-Indic digits to ASCII)
- Header-text normalisation for synonym matching
- JSON-safe raw values for Evidence Cells
"""

from __future__ import annotations

import re
import unicodedata
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Optional

import pandas as pd

from intake.extraction.config import DATE_LIKE_RE, NUMBER_LIKE_RE, PERSIAN_SCRIPT_RE

PERSIAN_DIGITS = "۰۱۲۳۴۵۶۷۸۹"
ARABIC_INDIC_DIGITS = "٠١٢٣٤٥٦٧٨٩"
_DIGIT_FOLD = str.maketrans(
    {**{d: str(i) for i, d in enumerate(PERSIAN_DIGITS)},
     **{d: str(i) for i, d in enumerate(ARABIC_INDIC_DIGITS)}}
)

_HEADER_PUNCT_RE = re.compile(r"[^\w\s]")
_HEADER_SPACE_RE = re.compile(r"[_\-\s]+")


class DataCleaner:
    """Stateless helper that normalises raw cell values and header text."""

    # ----- cell -> string ---------------------------------------------------

    @staticmethod
    def is_empty(value: Any) -> bool:
        if value is None:
            return True
        if isinstance(value, float) and pd.isna(value):
            return True
        return str(value).strip() == ""

    @staticmethod
    def cell_to_str(value: Any) -> str:
        """Convert an arbitrary cell value to a clean string."""
        if value is None:
            return ""
        if isinstance(value, float) and pd.isna(value):
            return ""
        if isinstance(value, str):
            return value.strip()
        if isinstance(value, bool):
            return "TRUE" if value else "FALSE"
        if isinstance(value, (datetime, date, time, pd.Timestamp)):
            if isinstance(value, datetime):
                return value.isoformat(sep=" ", timespec="seconds")
            return value.isoformat()
        if isinstance(value, float) and value.is_integer():
            return str(int(value))
        # Rich-text objects from openpyxl may expose .plain or .text
        plain_attr = getattr(value, "plain", None)
        if isinstance(plain_attr, str):
            return plain_attr.strip()
        text_attr = getattr(value, "text", None)
        if isinstance(text_attr, str):
            return text_attr.strip()
        text = str(value).strip()
        if text.lower() in {"nan", "none", "nat"}:
            return ""
        return text

    @staticmethod
    def json_safe(value: Any) -> Any:
        """Raw value as stored on an Evidence Cell."""
        if value is None or isinstance(value, (str, bool, int)):
            return value
        if isinstance(value, float):
            return None if pd.isna(value) else value
        if isinstance(value, Decimal):
            return float(value)
        if isinstance(value, (datetime, date, time)):
            return value.isoformat()
        return DataCleaner.cell_to_str(value)

    # ----- digits -------------------------------------------------------------

    @staticmethod
    def fold_digits(text: str) -> str:
        """Replace Persian and Arabic-Indic digits with ASCII digits."""
        return text.translate(_DIGIT_FOLD)

    @staticmethod
    def digit_script(text: str) -> Optional[str]:
        """Return the script of the first digit found, or None."""
        for ch in text:
            if ch in PERSIAN_DIGITS:
                return "persian"
            if ch in ARABIC_INDIC_DIGITS:
                return "arabic_indic"
            if "0" <= ch <= "9":
                return "latin"
        return None

    # ----- classification ---------------------------------------------------

    @staticmethod
    def is_numeric_value(value: Any) -> bool:
        """True for native numbers and for number-looking text."""
        if isinstance(value, bool):
            return False
        if isinstance(value, (int, float, Decimal)):
            return not (isinstance(value, float) and pd.isna(value))
        if isinstance(value, str):
            text = DataCleaner.fold_digits(value.strip())
            if not text or DATE_LIKE_RE.match(text):
                return False
            stripped = re.sub(r"[$€£¥﷼]|ریال|تومان", "", text).strip()
            return bool(NUMBER_LIKE_RE.match(stripped))
        return False

    @staticmethod
    def is_text_value(value: Any) -> bool:
        """True for non-empty strings that are not number- or date-like."""
        if not isinstance(value, str):
            return False
        text = value.strip()
        if not text:
            return False
        folded = DataCleaner.fold_digits(text)
        if DATE_LIKE_RE.match(folded):
            return False
        return not DataCleaner.is_numeric_value(text)

    @staticmethod
    def contains_persian(text: str) -> bool:
        return bool(PERSIAN_SCRIPT_RE.search(text or ""))

    # ----- header text ------------------------------------------------------

    @staticmethod
    def normalize_header(value: Any) -> str:
        """
        Lower-case, NFKC, strip punctuation and collapse ``_``/``-``/spaces.

        ``"Unit_Price:"`` -> ``"unit price"``
        """
        text = unicodedata.normalize("NFKC", DataCleaner.cell_to_str(value)).lower()
        text = text.replace("#", " no ")
        text = _HEADER_PUNCT_RE.sub(" ", text)
        text = _HEADER_SPACE_RE.sub(" ", text)
        return text.strip()
