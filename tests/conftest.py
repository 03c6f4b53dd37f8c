"""
Pytest configuration and shared fixtures.
"""
import asyncio
import io
import os
import sys
from typing import Any, Callable, Dict, List, Optional

import pytest
from openpyxl import Workbook

# Add project root to path for imports
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if project_root not in sys.path:
    sys.path.insert(0, project_root)

from intake.consensus.models import Abstain, EvidencePack, PackCandidate, Vote, WeightTable
from intake.consensus.reviewers.base import BaseReviewer
from intake.extraction.extractor import OrderExtractor
from intake.ir import CaseMetadata

FIXED_RECEIVED_AT = "2026-10-01T09:00:00+00:00"

SCENARIO_A_ROWS = [
    ["Customer", "SKU", "Qty", "Unit Price", "Total"],
    ["Acme Corp", "ABC-001", 10, 25.00, 250.00],
]


def save_workbook(wb: Workbook) -> bytes:
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


def build_workbook(
    rows: List[List[Any]],
    title: str = "Order",
    setup: Optional[Callable[[Any], None]] = None,
) -> Workbook:
    wb = Workbook()
    ws = wb.active
    ws.title = title
    for row in rows:
        ws.append(row)
    if setup is not None:
        setup(wb)
    return wb


@pytest.fixture
def make_workbook():
    """Build ``.xlsx`` bytes from rows; *setup* can adjust the workbook before saving."""
    def _make(rows: List[List[Any]], title: str = "Order", setup: Optional[Callable[[Any], None]] = None) -> bytes:
        return save_workbook(build_workbook(rows, title, setup))
    return _make


@pytest.fixture
def make_sheet():
    """Return ``(wb, ws)`` for direct stage tests."""
    def _make(rows: List[List[Any]], title: str = "Order"):
        wb = build_workbook(rows, title)
        return wb, wb[title]
    return _make


@pytest.fixture
def scenario_a_bytes(make_workbook) -> bytes:
    return make_workbook(SCENARIO_A_ROWS)


@pytest.fixture
def extractor() -> OrderExtractor:
    return OrderExtractor(max_upload_bytes=5 * 1024 * 1024)


@pytest.fixture
def case_meta():
    def _meta(case_id: str = "case-1", **kwargs) -> CaseMetadata:
        return CaseMetadata(case_id=case_id, filename=f"{case_id}.xlsx", **kwargs)
    return _meta


# ---------------------------------------------------------------------------
# Consensus fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def sample_pack() -> EvidencePack:
    return EvidencePack(
        case_id="case-1",
        fields=["sku", "quantity"],
        candidates=[
            PackCandidate(id="A", header="Item", samples=["AB-1", "AB-2"]),
            PackCandidate(id="B", header="Code", samples=["X-9", "X-10"]),
            PackCandidate(id="C", header="Qty", samples=["5", "7"]),
        ],
        constraints=["Use null when no candidate fits"],
        timestamp=FIXED_RECEIVED_AT,
    )


class StaticReviewer(BaseReviewer):
    """Reviewer that returns a fixed payload (or raises a fixed exception)."""

    def __init__(self, reviewer_id: str, payload: Any = None, error: Optional[Exception] = None,
                 delay: float = 0.0, timeout_seconds: float = 5.0, family: Optional[str] = None):
        super().__init__(reviewer_id, timeout_seconds=timeout_seconds, family=family)
        self.payload = payload
        self.error = error
        self.delay = delay
        self.calls = 0
        self.finished = 0

    async def _complete(self, request: Dict[str, Any], pack: EvidencePack) -> Any:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        self.finished += 1
        if self.error is not None:
            raise self.error
        return self.payload


def mapping_payload(selections: Dict[str, Optional[str]], confidence: float = 0.9) -> Dict[str, Any]:
    return {
        "mappings": [
            {"field": f, "selected_column_id": col, "confidence": confidence, "reasoning": "header and samples"}
            for f, col in selections.items()
        ],
        "issues": [],
        "overall_confidence": confidence,
    }


@pytest.fixture
def static_reviewer():
    return StaticReviewer


@pytest.fixture
def payload_for():
    return mapping_payload


def vote(reviewer_id: str, **selections: Optional[str]) -> Vote:
    return Vote(reviewer_id=reviewer_id, selections=selections)


def abstain(reviewer_id: str, reason: str = "timeout") -> Abstain:
    return Abstain(reviewer_id=reviewer_id, reason=reason)


def weight_table(weights: Dict[str, Dict[str, float]], version: str = "v-test", status: str = "approved") -> WeightTable:
    return WeightTable(version=version, status=status, weights=weights)
