"""
Offline reviewer calibration.

Runs every reviewer over a fixed, versioned corpus of review cases,
measures per-field accuracy and turns it into a *pending* weight table.
A table only becomes active through :func:`approve_weight_table`, which
needs a named approver.

Corpus layout::

    corpus/
      corpus.yaml          # {version, description}
      cases/
        case-001.json      # {case_id, description, evidence_pack, expected_mappings}
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

import yaml
from pydantic import ValidationError

from intake.consensus.committee import Committee
from intake.consensus.models import Abstain, EvidencePack, Vote, WeightTable
from intake.consensus.reviewers.base import BaseReviewer
from intake.consensus.weights import dump_weight_table
from intake.errors import CalibrationError
from intake.logger import get_logger

logger = get_logger(__name__)

Outcome = Union[Vote, Abstain]
AccuracyReport = Dict[str, Dict[str, Dict[str, float]]]


@dataclass
class CalibrationCase:
    case_id: str
    pack: EvidencePack
    expected: Dict[str, Optional[str]]
    description: str = ""


@dataclass
class CalibrationCorpus:
    version: str
    cases: List[CalibrationCase] = field(default_factory=list)
    description: str = ""


# ---------------------------------------------------------------------------
# Corpus
# ---------------------------------------------------------------------------

def load_corpus(path: Union[str, Path]) -> CalibrationCorpus:
    root = Path(path)
    manifest = root / "corpus.yaml"
    if not manifest.exists():
        raise CalibrationError(f"Corpus manifest not found: {manifest}")
    with open(manifest, "r", encoding="utf-8") as f:
        meta = yaml.safe_load(f) or {}
    version = str(meta.get("version") or "").strip()
    if not version:
        raise CalibrationError(f"{manifest} must declare a version")

    cases: List[CalibrationCase] = []
    for case_file in sorted((root / "cases").glob("*.json")):
        try:
            with open(case_file, "r", encoding="utf-8") as f:
                raw = json.load(f)
            pack = EvidencePack.model_validate(raw["evidence_pack"])
            expected = dict(raw["expected_mappings"])
        except (json.JSONDecodeError, KeyError, TypeError, ValidationError) as exc:
            raise CalibrationError(f"Invalid calibration case {case_file}: {exc}") from exc
        unknown = sorted(f for f in expected if f not in pack.fields)
        if unknown:
            raise CalibrationError(f"{case_file}: expected mappings for fields outside the pack: {unknown}")
        cases.append(CalibrationCase(
            case_id=str(raw.get("case_id") or case_file.stem),
            pack=pack,
            expected=expected,
            description=str(raw.get("description") or ""),
        ))
    if not cases:
        raise CalibrationError(f"Corpus {root} has no cases")
    logger.info("Calibration corpus loaded | version=%s | cases=%d", version, len(cases))
    return CalibrationCorpus(version=version, cases=cases, description=str(meta.get("description") or ""))


# ---------------------------------------------------------------------------
# Run + accuracy
# ---------------------------------------------------------------------------

async def run_calibration_async(
    reviewers: Sequence[BaseReviewer],
    corpus: CalibrationCorpus,
) -> Dict[str, Dict[str, Outcome]]:
    """Invoke every reviewer on every case; returns ``{reviewer_id: {case_id: outcome}}``."""
    settler = Committee(reviewers, size=len(reviewers))
    jobs = [(r, case) for case in corpus.cases for r in reviewers]
    outcomes = await asyncio.gather(*(settler.settle(r, case.pack) for r, case in jobs))
    # Late calls are metered; let them finish before the loop shuts down.
    await settler.drain()
    results: Dict[str, Dict[str, Outcome]] = {r.reviewer_id: {} for r in reviewers}
    for (reviewer, case), outcome in zip(jobs, outcomes):
        results[reviewer.reviewer_id][case.case_id] = outcome
    return results


def run_calibration(
    reviewers: Sequence[BaseReviewer],
    corpus: CalibrationCorpus,
) -> Dict[str, Dict[str, Outcome]]:
    return asyncio.run(run_calibration_async(reviewers, corpus))


def compute_accuracy(outcomes: Dict[str, Dict[str, Outcome]], corpus: CalibrationCorpus) -> AccuracyReport:
    """
    Per-reviewer, per-field ``{correct, total, accuracy}``.

    Every expected field counts as one attempt; abstentions and omitted
    fields count as incorrect.
    """
    report: AccuracyReport = {}
    for reviewer_id, per_case in outcomes.items():
        fields: Dict[str, Dict[str, float]] = {}
        for case in corpus.cases:
            outcome = per_case.get(case.case_id)
            for field_name, expected in case.expected.items():
                stats = fields.setdefault(field_name, {"correct": 0, "total": 0, "accuracy": 0.0})
                stats["total"] += 1
                if (
                    isinstance(outcome, Vote)
                    and field_name in outcome.selections
                    and outcome.selections[field_name] == expected
                ):
                    stats["correct"] += 1
        for stats in fields.values():
            stats["accuracy"] = round(stats["correct"] / stats["total"], 6) if stats["total"] else 0.0
        report[reviewer_id] = fields
    return report


# ---------------------------------------------------------------------------
# Weight tables
# ---------------------------------------------------------------------------

def build_weight_table(
    accuracy: AccuracyReport,
    version: str,
    corpus_version: Optional[str] = None,
    min_cases: int = 5,
) -> WeightTable:
    """
    Normalise accuracies into per-field weights with field mean 1.0.

    Reviewers with fewer than *min_cases* attempts on a field get 1.0; a
    field where every eligible reviewer scored zero gets uniform weights.
    The result is ``pending``.
    """
    fields = sorted({f for per in accuracy.values() for f in per})
    weights: Dict[str, Dict[str, float]] = {}
    for field_name in fields:
        stats = {rid: per[field_name] for rid, per in accuracy.items() if field_name in per}
        eligible = {rid: s["accuracy"] for rid, s in stats.items() if s["total"] >= min_cases}
        mean = sum(eligible.values()) / len(eligible) if eligible else 0.0
        row: Dict[str, float] = {}
        for rid in sorted(stats):
            if rid in eligible and mean > 0:
                row[rid] = round(eligible[rid] / mean, 6)
            else:
                row[rid] = 1.0
        weights[field_name] = row
    return WeightTable(
        version=version,
        status="pending",
        created_at=datetime.now(timezone.utc).isoformat(),
        corpus_version=corpus_version,
        weights=weights,
    )


def approve_weight_table(candidate: WeightTable, approver: str, active_path: Union[str, Path]) -> WeightTable:
    """Stamp *candidate* as approved by *approver* and make it the active table."""
    approver = (approver or "").strip()
    if not approver:
        raise CalibrationError("A named approver is required to activate a weight table")
    approved = candidate.model_copy(update={
        "status": "approved",
        "approved_by": approver,
        "approved_at": datetime.now(timezone.utc).isoformat(),
    })
    dump_weight_table(approved, active_path)
    logger.info("Weight table approved | version=%s | approver=%s | path=%s", approved.version, approver, active_path)
    return approved
