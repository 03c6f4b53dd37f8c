"""
Routing policy: auto-proceed or stop for human correction.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Sequence

from intake.consensus.config import ConsensusConfig, DEFAULT_CONSENSUS_CONFIG
from intake.consensus.models import (
    CommitteeRecord,
    RoutingCandidate,
    RoutingDecision,
    RoutingDisagreement,
)
from intake.ir import CanonicalOrder
from intake.logger import get_logger

logger = get_logger(__name__)

BLOCKING_RESOLUTIONS = ("ambiguous", "not_found")

# Fields a review round must decide before an ambiguous order may proceed.
REVIEW_REQUIRED_FIELDS = ("quantity", "sku", "gtin")


def _disagreements(order: CanonicalOrder, record: CommitteeRecord) -> List[RoutingDisagreement]:
    by_id = {c.id: c for c in order.schema_inference.candidates}
    out: List[RoutingDisagreement] = []
    for item in record.result.disagreements:
        candidates: List[RoutingCandidate] = []
        for tally in item.tallies:
            cand = by_id.get(tally.column_id) if tally.column_id else None
            evidence_ids: List[str] = []
            if cand is not None:
                if cand.header_evidence_id:
                    evidence_ids.append(cand.header_evidence_id)
                evidence_ids.extend(cand.sample_evidence_ids)
            candidates.append(RoutingCandidate(
                column_id=tally.column_id,
                header=cand.header if cand else None,
                weight=tally.weight,
                reviewers=tally.reviewers,
                evidence_ids=evidence_ids,
            ))
        out.append(RoutingDisagreement(field=item.field, classification=item.classification, candidates=candidates))
    return out


def decide_route(
    order: CanonicalOrder,
    consensus: Optional[CommitteeRecord] = None,
    resolutions: Optional[Dict[str, str]] = None,
    cfg: ConsensusConfig = DEFAULT_CONSENSUS_CONFIG,
    consensus_error: Optional[str] = None,
    ambiguous_fields: Sequence[str] = (),
) -> RoutingDecision:
    """
    Decide whether *order* may proceed without a human.

    Every failed condition adds a reason; the order auto-proceeds only
    when there are none.

    Without a consensus record, any ambiguous field in
    ``REVIEW_REQUIRED_FIELDS`` counts as undecided.
    """
    reasons: List[str] = []

    for issue in order.issues:
        if issue.severity in ("blocker", "error"):
            reasons.append(f"{issue.severity}: {issue.code}")

    for entity, status in sorted((resolutions or {}).items()):
        if status in BLOCKING_RESOLUTIONS:
            reasons.append(f"resolution: {entity} is {status}")

    if consensus_error:
        reasons.append(f"consensus: {consensus_error}")

    disagreements: List[RoutingDisagreement] = []
    if consensus is not None:
        result = consensus.result
        required = result.required_fields or [fc.field for fc in result.fields]
        for field_name in required:
            fc = result.get(field_name)
            if fc is not None and not fc.decided:
                reasons.append(f"consensus: {field_name} is {fc.classification}")
        voted = len(consensus.votes())
        if voted < cfg.min_successful_reviewers:
            reasons.append(f"consensus: only {voted} reviewer(s) voted, need {cfg.min_successful_reviewers}")
        disagreements = _disagreements(order, consensus)
    else:
        for field_name in ambiguous_fields:
            if field_name in REVIEW_REQUIRED_FIELDS:
                reasons.append(f"review: {field_name} is ambiguous and was not reviewed")
        if order.confidence.overall < cfg.auto_proceed_confidence:
            reasons.append(
                f"confidence: {order.confidence.overall:.2f} below {cfg.auto_proceed_confidence:.2f}"
            )

    action = "human_correction" if reasons else "auto_proceed"
    logger.info("Routing | order=%s | action=%s | reasons=%s", order.order_id, action, reasons)
    return RoutingDecision(action=action, reasons=reasons, disagreements=disagreements)
