"""
Normalizer: turn raw cell values into canonical line-item values.

- Per-column numeric convention (decimal separator, digit script)
- Locale-aware number parsing; unparseable values are reported, never guessed
- SKU / GTIN canonical forms with GS1 check-digit verification
- Currency and language detection
"""

from __future__ import annotations

import re
from collections import Counter
from decimal import Decimal
from typing import Any, Iterable, List, Optional, Tuple

from intake.extraction.config import CURRENCY_SYMBOL_RE, PERSIAN_SCRIPT_RE
from intake.extraction.data_cleaner import DataCleaner
from intake.ir import NumberConvention

GTIN_LENGTHS = (8, 12, 13, 14)

CURRENCY_BY_SYMBOL = {
    "$": "USD",
    "€": "EUR",
    "£": "GBP",
    "¥": "JPY",
    "﷼": "IRR",
    "ریال": "IRR",
    "تومان": "IRT",
}

ARABIC_DECIMAL = "٫"
ARABIC_THOUSANDS = "٬"

_AMBIGUOUS_GROUP_RE = re.compile(r"^\d{1,3}[.,]\d{3}$")
_CLEAN_NUMBER_RE = re.compile(r"^\d+(?:\.\d+)?$")
_SPACE_RE = re.compile(r"[\s   ']+")
_WS_COLLAPSE_RE = re.compile(r"\s+")


class Normalizer:
    """Stateless value normalisation helpers."""

    # ----- numeric convention -----------------------------------------------

    @staticmethod
    def _separator_vote(text: str) -> Optional[str]:
        """Decimal separator implied by one value, or None if it cannot tell."""
        has_dot, has_comma = "." in text, "," in text
        if has_dot and has_comma:
            return "." if text.rfind(".") > text.rfind(",") else ","
        if not (has_dot or has_comma):
            return None
        sep = "." if has_dot else ","
        if text.count(sep) > 1:
            return "," if sep == "." else "."
        if _AMBIGUOUS_GROUP_RE.match(text.strip().lstrip("-+(").rstrip(")")):
            return None
        return sep

    @staticmethod
    def detect_convention(values: Iterable[Any]) -> NumberConvention:
        """Dominant decimal separator and digit script of a column's text values."""
        seps: Counter = Counter()
        scripts: Counter = Counter()
        for value in values:
            if not isinstance(value, str) or not value.strip():
                continue
            script = DataCleaner.digit_script(value)
            if script:
                scripts[script] += 1
            folded = DataCleaner.fold_digits(value)
            if ARABIC_DECIMAL in folded:
                continue
            vote = Normalizer._separator_vote(CURRENCY_SYMBOL_RE.sub("", folded))
            if vote:
                seps[vote] += 1
        decimal = "," if seps.get(",", 0) > seps.get(".", 0) else "."
        script = scripts.most_common(1)[0][0] if scripts else "latin"
        return NumberConvention(decimal_separator=decimal, digit_script=script)

    # ----- numbers ------------------------------------------------------------

    @staticmethod
    def parse_number(value: Any, convention: Optional[NumberConvention] = None) -> Tuple[Optional[float], bool]:
        """
        Parse a numeric cell value.

        Returns ``(number, ok)``. Empty input is ``(None, True)``; text that
        does not parse is ``(None, False)``.
        """
        if DataCleaner.is_empty(value):
            return None, True
        if isinstance(value, bool):
            return None, False
        if isinstance(value, (int, float, Decimal)):
            return float(value), True
        if not isinstance(value, str):
            return None, False

        decimal = convention.decimal_separator if convention else "."
        text = DataCleaner.fold_digits(value.strip())
        text = CURRENCY_SYMBOL_RE.sub("", text)
        text = _SPACE_RE.sub("", text)

        negative = False
        if text.startswith("(") and text.endswith(")"):
            negative, text = True, text[1:-1]
        if text.startswith("-"):
            negative, text = not negative, text[1:]
        elif text.endswith("-"):
            negative, text = not negative, text[:-1]
        elif text.startswith("+"):
            text = text[1:]

        if ARABIC_DECIMAL in text:
            text = text.replace(ARABIC_THOUSANDS, "").replace(",", "").replace(ARABIC_DECIMAL, ".")
        else:
            text = text.replace(ARABIC_THOUSANDS, "")
            vote = Normalizer._separator_vote(text)
            if vote is None and ("." in text or "," in text):
                # d{1,3}[.,]ddd: the column convention decides.
                sep = "." if "." in text else ","
                vote = sep if sep == decimal else ("," if sep == "." else ".")
            if vote == ",":
                text = text.replace(".", "").replace(",", ".")
            elif vote == ".":
                text = text.replace(",", "")

        if not _CLEAN_NUMBER_RE.match(text):
            return None, False
        number = float(text)
        return (-number if negative else number), True

    # ----- identifiers ----------------------------------------------------------

    @staticmethod
    def normalize_sku(value: Any) -> Optional[str]:
        if DataCleaner.is_empty(value):
            return None
        text = DataCleaner.cell_to_str(value)
        text = _WS_COLLAPSE_RE.sub(" ", text).strip().upper()
        return text or None

    @staticmethod
    def gtin_check_digit_ok(digits: str) -> bool:
        """GS1 mod-10 check over a full GTIN (check digit last)."""
        body, check = digits[:-1], int(digits[-1])
        total = 0
        for pos, ch in enumerate(reversed(body)):
            total += int(ch) * (3 if pos % 2 == 0 else 1)
        return (10 - total % 10) % 10 == check

    @staticmethod
    def normalize_gtin(value: Any) -> Tuple[Optional[str], List[str]]:
        """
        Digits-only GTIN plus item flags.

        Flags: ``GTIN_CHECKSUM_FAILED`` for a standard length with a bad
        check digit, ``GTIN_NONSTANDARD_LENGTH`` for any other length.
        """
        if DataCleaner.is_empty(value):
            return None, []
        if isinstance(value, float) and value.is_integer():
            value = int(value)
        digits = re.sub(r"\D", "", DataCleaner.fold_digits(DataCleaner.cell_to_str(value)))
        if not digits:
            return None, []
        if len(digits) not in GTIN_LENGTHS:
            return digits, ["GTIN_NONSTANDARD_LENGTH"]
        if not Normalizer.gtin_check_digit_ok(digits):
            return digits, ["GTIN_CHECKSUM_FAILED"]
        return digits, []

    @staticmethod
    def normalize_text(value: Any) -> Optional[str]:
        if DataCleaner.is_empty(value):
            return None
        return _WS_COLLAPSE_RE.sub(" ", DataCleaner.cell_to_str(value)).strip() or None

    # ----- currency / language ----------------------------------------------

    @staticmethod
    def detect_currency(value: Any, number_format: Optional[str] = None) -> Optional[str]:
        """ISO code from a symbol or code in the value or its number format."""
        for source in (value if isinstance(value, str) else None, number_format):
            if not source:
                continue
            match = CURRENCY_SYMBOL_RE.search(source)
            if not match:
                continue
            token = match.group(0)
            return CURRENCY_BY_SYMBOL.get(token, token.upper())
        return None

    @staticmethod
    def detect_language(texts: Iterable[str], hint: Optional[str] = None, persian_ratio: float = 0.3) -> str:
        if hint:
            return hint
        items = [t for t in texts if t and t.strip()]
        if not items:
            return "en"
        persian = sum(1 for t in items if PERSIAN_SCRIPT_RE.search(t))
        return "fa" if persian / float(len(items)) > persian_ratio else "en"
