"""
Consensus Models
================

Pydantic models exchanged between the consensus components:

- EvidencePack: the bounded request a reviewer sees
- ReviewerResponse: the strict schema a reviewer must return
- Vote / Abstain: the only two outcomes of a reviewer call
- ConsensusResult / FieldConsensus: aggregation output
- WeightTable: versioned per-field reviewer weights
- SelectionRecord / CommitteeRecord: audit records
- RoutingDecision: auto-proceed vs human correction
"""

from __future__ import annotations

from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field

Classification = Literal["unanimous", "majority", "split", "no_consensus"]
AbstainReason = Literal["timeout", "malformed_output", "out_of_range_column", "backend_error"]

# Higher is better; the case-level class is the minimum over fields.
CLASSIFICATION_RANK: Dict[str, int] = {"no_consensus": 0, "split": 1, "majority": 2, "unanimous": 3}


# ---------------------------------------------------------------------------
# Evidence pack
# ---------------------------------------------------------------------------

class PackCandidate(BaseModel):
    id: str
    header: str
    samples: List[str] = Field(default_factory=list)


class EvidencePack(BaseModel):
    """
    Bounded summary of ambiguous candidates for one review round.

    ``candidate_evidence`` maps candidate id -> evidence ids and stays on
    the server; :meth:`to_request` never includes it.
    """
    case_id: str
    fields: List[str]
    candidates: List[PackCandidate]
    language_hint: Optional[str] = None
    constraints: List[str] = Field(default_factory=list)
    timestamp: str
    candidate_evidence: Dict[str, List[str]] = Field(default_factory=dict)

    def candidate_ids(self) -> List[str]:
        return [c.id for c in self.candidates]

    def header_for(self, candidate_id: Optional[str]) -> Optional[str]:
        for cand in self.candidates:
            if cand.id == candidate_id:
                return cand.header
        return None

    def to_request(self) -> Dict[str, Any]:
        """The literal reviewer request payload."""
        return {
            "case_id": self.case_id,
            "candidate_headers": [c.header for c in self.candidates],
            "sample_values": {c.id: list(c.samples) for c in self.candidates},
            "constraints": list(self.constraints),
        }


# ---------------------------------------------------------------------------
# Reviewer response schema (validated at the boundary)
# ---------------------------------------------------------------------------

class ReviewerMapping(BaseModel):
    field: str
    selected_column_id: Optional[str] = None
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str = ""

    class Config:
        extra = "forbid"


class ReviewerIssue(BaseModel):
    code: str = Field(pattern=r"^[A-Z][A-Z0-9_]*$")
    severity: Literal["info", "warning", "error"]
    evidence: Union[str, List[str], None] = None

    class Config:
        extra = "forbid"


class ReviewerResponse(BaseModel):
    mappings: List[ReviewerMapping]
    issues: List[ReviewerIssue] = Field(default_factory=list)
    overall_confidence: float = Field(ge=0.0, le=1.0)

    class Config:
        extra = "forbid"


# ---------------------------------------------------------------------------
# Reviewer outcomes
# ---------------------------------------------------------------------------

class Vote(BaseModel):
    """
    A validated reviewer answer.

    ``selections`` only holds the fields the reviewer answered; ``None`` is
    an explicit "no candidate fits" vote.
    """
    kind: Literal["vote"] = "vote"
    reviewer_id: str
    selections: Dict[str, Optional[str]] = Field(default_factory=dict)
    confidences: Dict[str, float] = Field(default_factory=dict)
    flags: List[str] = Field(default_factory=list)
    overall_confidence: float = 0.0
    latency_ms: int = 0

    class Config:
        frozen = True


class Abstain(BaseModel):
    kind: Literal["abstain"] = "abstain"
    reviewer_id: str
    reason: AbstainReason
    detail: str = ""
    latency_ms: int = 0

    class Config:
        frozen = True


ReviewerOutcome = Annotated[Union[Vote, Abstain], Field(discriminator="kind")]


# ---------------------------------------------------------------------------
# Aggregation output
# ---------------------------------------------------------------------------

class Tally(BaseModel):
    column_id: Optional[str] = None
    weight: float
    reviewers: List[str] = Field(default_factory=list)


class FieldConsensus(BaseModel):
    field: str
    winner: Optional[str] = None
    win_share: float = 0.0
    classification: Classification
    voting_weight: float = 0.0
    voters: List[str] = Field(default_factory=list)
    abstained: List[str] = Field(default_factory=list)
    tallies: List[Tally] = Field(default_factory=list)

    @property
    def decided(self) -> bool:
        return self.classification in ("unanimous", "majority")


class Disagreement(BaseModel):
    field: str
    classification: Classification
    tallies: List[Tally] = Field(default_factory=list)


class ConsensusResult(BaseModel):
    fields: List[FieldConsensus] = Field(default_factory=list)
    required_fields: List[str] = Field(default_factory=list)
    classification: Classification
    disagreements: List[Disagreement] = Field(default_factory=list)
    overall_confidence: float = 0.0
    weight_table_version: str

    def get(self, field_name: str) -> Optional[FieldConsensus]:
        for fc in self.fields:
            if fc.field == field_name:
                return fc
        return None


# ---------------------------------------------------------------------------
# Weight table
# ---------------------------------------------------------------------------

class WeightTable(BaseModel):
    """Versioned per-field reviewer weights; read-only once loaded."""
    version: str
    status: Literal["pending", "approved"] = "pending"
    created_at: Optional[str] = None
    approved_by: Optional[str] = None
    approved_at: Optional[str] = None
    corpus_version: Optional[str] = None
    default_weight: float = 1.0
    weights: Dict[str, Dict[str, float]] = Field(default_factory=dict)

    class Config:
        frozen = True

    def weight(self, field_name: str, reviewer_id: str) -> float:
        return self.weights.get(field_name, {}).get(reviewer_id, self.default_weight)

    def mean_weight(self, reviewer_id: str) -> float:
        """Mean weight across fields, used by weighted selection."""
        values = [per[reviewer_id] for per in self.weights.values() if reviewer_id in per]
        if not values:
            return self.default_weight
        return sum(values) / len(values)


def uniform_weight_table() -> WeightTable:
    return WeightTable(version="default", status="approved")


# ---------------------------------------------------------------------------
# Audit / routing records
# ---------------------------------------------------------------------------

class SelectionRecord(BaseModel):
    strategy: str
    pool: List[str]
    selected: List[str]
    size: int


class CommitteeRecord(BaseModel):
    record_id: str
    case_id: str
    selection: SelectionRecord
    weight_table_version: str
    outcomes: List[ReviewerOutcome] = Field(default_factory=list)
    result: ConsensusResult
    timings: Dict[str, int] = Field(default_factory=dict)
    started_at: str
    elapsed_ms: int = 0

    def votes(self) -> List[Vote]:
        return [o for o in self.outcomes if isinstance(o, Vote)]


class RoutingCandidate(BaseModel):
    column_id: Optional[str] = None
    header: Optional[str] = None
    weight: float = 0.0
    reviewers: List[str] = Field(default_factory=list)
    evidence_ids: List[str] = Field(default_factory=list)


class RoutingDisagreement(BaseModel):
    field: str
    classification: Classification
    candidates: List[RoutingCandidate] = Field(default_factory=list)


class RoutingDecision(BaseModel):
    action: Literal["auto_proceed", "human_correction"]
    reasons: List[str] = Field(default_factory=list)
    disagreements: List[RoutingDisagreement] = Field(default_factory=list)
