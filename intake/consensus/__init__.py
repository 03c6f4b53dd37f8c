"""
Consensus engine: reviewer committee, weighted aggregation and routing.
"""

from intake.consensus.aggregator import aggregate
from intake.consensus.audit import AuditSink, JsonlAuditSink, MemoryAuditSink
from intake.consensus.committee import Committee
from intake.consensus.config import ConsensusConfig, DEFAULT_CONSENSUS_CONFIG
from intake.consensus.evidence_pack import EvidencePackBuilder
from intake.consensus.routing import decide_route
from intake.consensus.weights import WeightStore

__all__ = [
    "aggregate",
    "AuditSink",
    "JsonlAuditSink",
    "MemoryAuditSink",
    "Committee",
    "ConsensusConfig",
    "DEFAULT_CONSENSUS_CONFIG",
    "EvidencePackBuilder",
    "decide_route",
    "WeightStore",
]
