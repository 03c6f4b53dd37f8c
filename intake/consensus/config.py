"""
Tunable thresholds for the consensus engine and routing policy.
"""

from __future__ import annotations

from dataclasses import dataclass

from intake.extraction.config import _env_float, _env_int


@dataclass(frozen=True)
class ConsensusConfig:
    """Immutable bag of consensus, evidence-pack and routing thresholds."""

    # Aggregation
    majority_threshold: float = _env_float("INTAKE_MAJORITY_THRESHOLD", 0.66)
    min_votes: int = _env_int("INTAKE_MIN_VOTES", 1)

    # Evidence pack limits
    max_samples_per_candidate: int = 5
    max_sample_length: int = 200
    max_header_length: int = 100
    max_candidates: int = 40

    # Routing
    min_successful_reviewers: int = _env_int("INTAKE_MIN_SUCCESSFUL_REVIEWERS", 2)
    auto_proceed_confidence: float = _env_float("INTAKE_AUTO_PROCEED_CONFIDENCE", 0.80)


DEFAULT_CONSENSUS_CONFIG = ConsensusConfig()
