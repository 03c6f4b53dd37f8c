"""
Pipeline: thin orchestrator over extraction -> review -> routing.

process_case   – workbook bytes + metadata → CaseOutcome
build_committee – Settings → Committee over the configured reviewer pool

Heavy lifting is delegated to:
  intake.extraction – OrderExtractor
  intake.consensus  – EvidencePackBuilder, Committee, decide_route
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from intake.config import Settings, get_settings
from intake.consensus.audit import AuditSink
from intake.consensus.committee import Committee
from intake.consensus.config import ConsensusConfig, DEFAULT_CONSENSUS_CONFIG
from intake.consensus.evidence_pack import EvidencePackBuilder
from intake.consensus.models import CommitteeRecord, RoutingDecision
from intake.consensus.reviewers.registry import build_reviewer_pool
from intake.consensus.routing import REVIEW_REQUIRED_FIELDS, decide_route
from intake.consensus.weights import WeightStore
from intake.errors import SelectionError
from intake.extraction.config import ParserConfig, DEFAULT_PARSER_CONFIG
from intake.extraction.extractor import OrderExtractor
from intake.ir import CanonicalOrder, CaseMetadata
from intake.logger import get_logger

logger = get_logger(__name__)


@dataclass
class CaseOutcome:
    order: CanonicalOrder
    routing: RoutingDecision
    committee_record: Optional[CommitteeRecord] = None
    revisions: List[CanonicalOrder] = field(default_factory=list)
    ambiguous_fields: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "order_id": self.order.order_id,
            "order": self.order.to_dict(),
            "routing": self.routing.model_dump(mode="json"),
            "ambiguous_fields": list(self.ambiguous_fields),
            "committee_record": self.committee_record.model_dump(mode="json") if self.committee_record else None,
            "revisions": [r.order_id for r in self.revisions],
        }


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------

def build_committee(
    settings: Optional[Settings] = None,
    cfg: ConsensusConfig = DEFAULT_CONSENSUS_CONFIG,
) -> Committee:
    """
    Committee over the enabled reviewers of the configured pool.

    Raises :class:`intake.errors.ConfigError` for a missing or invalid pool.
    """
    settings = settings or get_settings()
    reviewers = build_reviewer_pool(settings=settings)
    store = WeightStore(settings.WEIGHT_TABLE_PATH, refresh_seconds=settings.WEIGHT_REFRESH_SECONDS)
    return Committee(
        reviewers,
        size=settings.COMMITTEE_SIZE,
        strategy=settings.SELECTION_STRATEGY,
        weight_store=store,
        cfg=cfg,
    )


def consensus_overrides(record: CommitteeRecord, order: CanonicalOrder) -> Dict[str, Optional[str]]:
    """Decided consensus winners that differ from the order's current mapping."""
    overrides: Dict[str, Optional[str]] = {}
    for fc in record.result.fields:
        if not fc.decided:
            continue
        current = order.schema_inference.mapping_for(fc.field)
        current_id = current.column_id if current else None
        if fc.winner != current_id:
            overrides[fc.field] = fc.winner
    return overrides


# ---------------------------------------------------------------------------
# Case processing
# ---------------------------------------------------------------------------

def process_case(
    data: bytes,
    meta: CaseMetadata,
    committee: Optional[Committee] = None,
    resolutions: Optional[Dict[str, str]] = None,
    audit_sink: Optional[AuditSink] = None,
    parser_cfg: ParserConfig = DEFAULT_PARSER_CONFIG,
    consensus_cfg: ConsensusConfig = DEFAULT_CONSENSUS_CONFIG,
    extractor: Optional[OrderExtractor] = None,
    received_at: Optional[str] = None,
) -> CaseOutcome:
    """
    Run one upload through extraction, optional review and routing.

    Steps:
      1. Extract → Canonical Order (revision 1)
      2. Blocker → route to human immediately
      3. Ambiguous fields + committee → evidence pack, review round, audit
      4. Decided winners that disagree with extraction → derived revision
      5. Route the latest revision
    """
    extractor = extractor or OrderExtractor(parser_cfg)
    result = extractor.extract(data, meta, received_at=received_at)
    order = result.order
    revisions = [order]

    if order.has_blockers():
        routing = decide_route(order, None, resolutions, consensus_cfg)
        return CaseOutcome(order=order, routing=routing, revisions=revisions)

    record: Optional[CommitteeRecord] = None
    consensus_error: Optional[str] = None
    if result.ambiguous_fields and committee is not None:
        pack = EvidencePackBuilder(consensus_cfg).build(
            meta.case_id, result.candidates, result.ambiguous_fields, order.meta.language_hint,
        )
        required = [f for f in result.ambiguous_fields if f in REVIEW_REQUIRED_FIELDS]
        try:
            record = committee.run_sync(pack, required)
        except SelectionError as exc:
            logger.error("Consensus skipped | case_id=%s | error=%s", meta.case_id, exc)
            consensus_error = str(exc)

        if record is not None:
            if audit_sink is not None:
                audit_sink.write(record)
            overrides = consensus_overrides(record, order)
            if overrides:
                logger.info("Deriving revision from consensus | case_id=%s | overrides=%s", meta.case_id, overrides)
                derived = extractor.extract(
                    data,
                    meta,
                    overrides=overrides,
                    revision=order.meta.revision + 1,
                    derived_from=order.order_id,
                    received_at=order.meta.received_at,
                ).order
                revisions.append(derived)
                order = derived
    elif result.ambiguous_fields:
        logger.info("No committee configured; ambiguous fields left for routing | fields=%s", result.ambiguous_fields)

    routing = decide_route(
        order, record, resolutions, consensus_cfg, consensus_error, ambiguous_fields=result.ambiguous_fields,
    )
    return CaseOutcome(
        order=order,
        routing=routing,
        committee_record=record,
        revisions=revisions,
        ambiguous_fields=result.ambiguous_fields,
    )
