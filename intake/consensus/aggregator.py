"""
Weighted per-field vote aggregation.

:func:`aggregate` is a pure function of the outcomes, the field lists, the
weight table and the config. Identical inputs give identical results.
"""

from __future__ import annotations

import math
from typing import Dict, List, Optional, Sequence, Tuple, Union

from intake.consensus.config import ConsensusConfig, DEFAULT_CONSENSUS_CONFIG
from intake.consensus.models import (
    CLASSIFICATION_RANK,
    Abstain,
    ConsensusResult,
    Disagreement,
    FieldConsensus,
    Tally,
    Vote,
    WeightTable,
)

Outcome = Union[Vote, Abstain]


def _tally_order(tally: Tally) -> Tuple[float, bool, str]:
    # None ("no column") sorts after real ids at equal weight.
    return (-tally.weight, tally.column_id is None, tally.column_id or "")


def aggregate_field(
    field_name: str,
    outcomes: Sequence[Outcome],
    table: WeightTable,
    cfg: ConsensusConfig = DEFAULT_CONSENSUS_CONFIG,
) -> FieldConsensus:
    votes = [o for o in outcomes if isinstance(o, Vote)]
    voters = [v for v in votes if field_name in v.selections]
    abstained = sorted(
        [o.reviewer_id for o in outcomes if isinstance(o, Abstain)]
        + [v.reviewer_id for v in votes if field_name not in v.selections]
    )

    weights: Dict[Optional[str], float] = {}
    members: Dict[Optional[str], List[str]] = {}
    for vote in voters:
        choice = vote.selections[field_name]
        weights[choice] = weights.get(choice, 0.0) + table.weight(field_name, vote.reviewer_id)
        members.setdefault(choice, []).append(vote.reviewer_id)
    tallies = sorted(
        (Tally(column_id=col, weight=round(w, 9), reviewers=sorted(members[col])) for col, w in weights.items()),
        key=_tally_order,
    )
    total = sum(weights.values())
    base = dict(
        field=field_name,
        voting_weight=round(total, 9),
        voters=sorted(v.reviewer_id for v in voters),
        abstained=abstained,
        tallies=tallies,
    )

    if not tallies or len(voters) < cfg.min_votes or total <= 0:
        return FieldConsensus(classification="no_consensus", winner=None, win_share=0.0, **base)

    top = tallies[0]
    share = round(top.weight / total, 6)
    if len(tallies) > 1 and math.isclose(tallies[1].weight, top.weight, rel_tol=1e-9, abs_tol=1e-12):
        return FieldConsensus(classification="no_consensus", winner=None, win_share=share, **base)

    if len(tallies) == 1:
        classification = "unanimous"
    elif share >= cfg.majority_threshold:
        classification = "majority"
    else:
        classification = "split"
    return FieldConsensus(classification=classification, winner=top.column_id, win_share=share, **base)


def aggregate(
    outcomes: Sequence[Outcome],
    fields: Sequence[str],
    required_fields: Sequence[str],
    table: WeightTable,
    cfg: ConsensusConfig = DEFAULT_CONSENSUS_CONFIG,
) -> ConsensusResult:
    """
    Aggregate reviewer outcomes for every reviewed field.

    The case-level classification is the worst field class among the
    required fields, or among all reviewed fields when none is required.
    """
    per_field = [aggregate_field(f, outcomes, table, cfg) for f in fields]
    required = [fc for fc in per_field if fc.field in set(required_fields)] or per_field
    if required:
        classification = min(required, key=lambda fc: CLASSIFICATION_RANK[fc.classification]).classification
    else:
        classification = "no_consensus"

    disagreements = [
        Disagreement(field=fc.field, classification=fc.classification, tallies=fc.tallies)
        for fc in per_field
        if fc.classification != "unanimous"
    ]
    shares = [fc.win_share if fc.classification != "no_consensus" else 0.0 for fc in per_field]
    overall = round(sum(shares) / len(shares), 6) if shares else 0.0

    return ConsensusResult(
        fields=per_field,
        required_fields=[f for f in fields if f in set(required_fields)],
        classification=classification,
        disagreements=disagreements,
        overall_confidence=overall,
        weight_table_version=table.version,
    )
