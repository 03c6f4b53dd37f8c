"""
HeaderLocator: identify the header row of the selected sheet.

Scores each of the first *N* rows on position, value variety, text-cell
count, a numeric row directly beneath it, and English/Farsi header keyword
hits.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import pandas as pd

from intake.extraction.config import HEADER_KEYWORDS, ParserConfig, DEFAULT_PARSER_CONFIG
from intake.extraction.data_cleaner import DataCleaner


@dataclass
class HeaderDetection:
    """``row`` is the 1-based Excel row, or None when nothing qualified."""
    row: Optional[int]
    confidence: float
    scanned: List[Dict[str, Any]] = field(default_factory=list)


class HeaderLocator:
    """
    Stateless locator; an optional :class:`ParserConfig` overrides the scan
    depth and score floor.
    """

    def __init__(self, cfg: ParserConfig = DEFAULT_PARSER_CONFIG):
        self._cfg = cfg

    # -----------------------------------------------------------------
    # Row features
    # -----------------------------------------------------------------

    @staticmethod
    def keyword_hits(texts: List[str]) -> int:
        """Count cells containing at least one header keyword."""
        hits = 0
        for text in texts:
            norm = DataCleaner.normalize_header(text)
            if not norm:
                continue
            tokens = set(norm.split())
            if any(kw in tokens or (" " in kw and kw in norm) for kw in HEADER_KEYWORDS):
                hits += 1
        return hits

    @staticmethod
    def _row_values(df: pd.DataFrame, idx: int) -> List[Any]:
        return [v for v in df.iloc[idx].tolist() if not DataCleaner.is_empty(v)]

    # -----------------------------------------------------------------
    # Scoring
    # -----------------------------------------------------------------

    def score_row(self, df: pd.DataFrame, idx: int) -> Dict[str, Any]:
        """Score frame row *idx* (Excel row ``idx + 1``)."""
        values = self._row_values(df, idx)
        texts = [DataCleaner.cell_to_str(v) for v in values if DataCleaner.is_text_value(v)]
        numeric_here = sum(1 for v in values if DataCleaner.is_numeric_value(v))
        info: Dict[str, Any] = {
            "row": idx + 1,
            "non_empty": len(values),
            "text_cells": len(texts),
            "score": 0.0,
        }
        if len(texts) < 2:
            info["reason"] = "too_few_text_cells"
            return info

        score = 0.0
        excel_row = idx + 1
        if excel_row == 1:
            score += 0.3
        elif excel_row <= 3:
            score += 0.2
        elif excel_row <= 5:
            score += 0.1

        normalized = [DataCleaner.normalize_header(v) for v in values]
        variety = len(set(normalized)) / max(1, len(normalized))
        if variety > 0.8:
            score += 0.3
        elif variety > 0.6:
            score += 0.2

        if len(texts) >= 3:
            score += 0.2

        if idx + 1 < len(df) and numeric_here == 0:
            below = self._row_values(df, idx + 1)
            if any(DataCleaner.is_numeric_value(v) for v in below):
                score += 0.2

        hits = self.keyword_hits(texts)
        if hits >= 2:
            score += 0.2
        elif hits == 1:
            score += 0.1

        info.update({
            "variety": round(variety, 6),
            "keyword_hits": hits,
            "score": round(min(score, 1.0), 6),
        })
        return info

    # -----------------------------------------------------------------
    # Selection
    # -----------------------------------------------------------------

    def locate(self, df: pd.DataFrame) -> HeaderDetection:
        """
        Scan the first ``max_header_search_rows`` rows and return the best one.

        Rows scoring under ``header_score_floor`` are not candidates; ties go
        to the earlier row.
        """
        if df is None or df.empty:
            return HeaderDetection(row=None, confidence=0.0)
        scan = min(self._cfg.max_header_search_rows, len(df))
        scanned = [self.score_row(df, i) for i in range(scan)]
        candidates = [s for s in scanned if s["score"] >= self._cfg.header_score_floor]
        if not candidates:
            return HeaderDetection(row=None, confidence=0.0, scanned=scanned)
        candidates.sort(key=lambda s: (-s["score"], s["row"]))
        best = candidates[0]
        return HeaderDetection(row=best["row"], confidence=best["score"], scanned=scanned)
