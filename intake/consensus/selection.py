"""
Reviewer subset selection.

A fixed-size committee is drawn per case, either uniformly or in
proportion to each reviewer's mean calibrated weight while preferring
distinct model families. The draw is recorded for audit.
"""

from __future__ import annotations

import random
from typing import Dict, List, Optional, Sequence

from intake.config import SELECTION_STRATEGIES
from intake.consensus.models import SelectionRecord, WeightTable, uniform_weight_table
from intake.errors import SelectionError


def _weighted_draw(
    pool: List[str],
    size: int,
    table: WeightTable,
    rng: random.Random,
    families: Dict[str, str],
) -> List[str]:
    remaining = list(pool)
    selected: List[str] = []
    used_families = set()
    while len(selected) < size:
        fresh = [r for r in remaining if families.get(r, r) not in used_families]
        draw_from = fresh or remaining
        weights = [max(0.0, table.mean_weight(r)) for r in draw_from]
        if sum(weights) <= 0:
            choice = rng.choice(draw_from)
        else:
            choice = rng.choices(draw_from, weights=weights, k=1)[0]
        selected.append(choice)
        remaining.remove(choice)
        used_families.add(families.get(choice, choice))
    return selected


def select_reviewers(
    pool_ids: Sequence[str],
    size: int,
    strategy: str = "uniform",
    weights: Optional[WeightTable] = None,
    rng: Optional[random.Random] = None,
    families: Optional[Dict[str, str]] = None,
) -> SelectionRecord:
    """
    Draw *size* distinct reviewers from *pool_ids*.

    Raises :class:`SelectionError` when the pool is too small or the
    strategy is unknown.
    """
    pool = list(dict.fromkeys(pool_ids))
    if size < 1:
        raise SelectionError(f"Committee size must be at least 1, got {size}")
    if len(pool) < size:
        raise SelectionError(f"Reviewer pool has {len(pool)} enabled reviewer(s); committee size is {size}")
    if strategy not in SELECTION_STRATEGIES:
        raise SelectionError(f"Unknown selection strategy {strategy!r}")

    rng = rng or random.Random()
    if strategy == "uniform":
        selected = rng.sample(pool, size)
    else:
        selected = _weighted_draw(pool, size, weights or uniform_weight_table(), rng, families or {})
    return SelectionRecord(strategy=strategy, pool=pool, selected=selected, size=size)
