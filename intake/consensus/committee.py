"""
Committee: parallel reviewer fan-out with an all-settled join.

Each reviewer call runs as its own task and is timeboxed independently.
A call that misses its timebox becomes ``Abstain("timeout")``; the task is
not cancelled, and its late result is logged and discarded. The round
completes once every call has settled, then aggregation runs synchronously.
"""

from __future__ import annotations

import asyncio
import random
import threading
import time
import uuid
from datetime import datetime, timezone
from functools import partial
from typing import Dict, List, Optional, Sequence, Set, Union

from intake.consensus.aggregator import aggregate
from intake.consensus.config import ConsensusConfig, DEFAULT_CONSENSUS_CONFIG
from intake.consensus.models import Abstain, CommitteeRecord, EvidencePack, Vote
from intake.consensus.reviewers.base import BaseReviewer
from intake.consensus.selection import select_reviewers
from intake.consensus.weights import WeightStore, current_or_uniform
from intake.logger import get_logger

logger = get_logger(__name__)

Outcome = Union[Vote, Abstain]


class Committee:
    """
    Draws a fixed-size reviewer subset per case and aggregates its votes.

    Args:
        reviewers: the enabled reviewer pool
        size: committee size, fixed and recorded per case
        strategy: ``uniform`` or ``weighted`` selection
        weight_store: source of the weight table snapshot (uniform if None)
        cfg: aggregation thresholds
        rng: random source for selection (seed it for reproducible draws)
    """

    def __init__(
        self,
        reviewers: Sequence[BaseReviewer],
        size: int = 3,
        strategy: str = "uniform",
        weight_store: Optional[WeightStore] = None,
        cfg: ConsensusConfig = DEFAULT_CONSENSUS_CONFIG,
        rng: Optional[random.Random] = None,
    ):
        self._reviewers: Dict[str, BaseReviewer] = {r.reviewer_id: r for r in reviewers}
        self._size = size
        self._strategy = strategy
        self._weights = weight_store
        self._cfg = cfg
        self._rng = rng or random.Random()
        self._pending: Set[asyncio.Future] = set()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._loop_lock = threading.Lock()

    @property
    def weight_store(self) -> Optional[WeightStore]:
        return self._weights

    @property
    def reviewer_ids(self) -> List[str]:
        return list(self._reviewers)

    @property
    def pending_count(self) -> int:
        """Timed-out calls still running in the background."""
        return len(self._pending)

    # ------------------------------------------------------------------
    # Per-call settle
    # ------------------------------------------------------------------

    def _discard_late(self, reviewer_id: str, case_id: str, task: asyncio.Future) -> None:
        self._pending.discard(task)
        if task.cancelled():
            logger.info("Late reviewer call cancelled by loop shutdown | reviewer=%s | case_id=%s", reviewer_id, case_id)
            return
        exc = task.exception()
        outcome = f"error={exc}" if exc else f"result={type(task.result()).__name__}"
        logger.info("Late reviewer result discarded | reviewer=%s | case_id=%s | %s", reviewer_id, case_id, outcome)

    async def settle(self, reviewer: BaseReviewer, pack: EvidencePack) -> Outcome:
        """Run one timeboxed reviewer call; never raises."""
        start = time.perf_counter()
        task = asyncio.ensure_future(reviewer.invoke(pack))
        self._pending.add(task)
        done, _ = await asyncio.wait({task}, timeout=reviewer.timeout_seconds)
        latency_ms = int((time.perf_counter() - start) * 1000)

        if task not in done:
            logger.warning(
                "Reviewer timed out | reviewer=%s | case_id=%s | timeout=%.1fs",
                reviewer.reviewer_id, pack.case_id, reviewer.timeout_seconds,
            )
            task.add_done_callback(partial(self._discard_late, reviewer.reviewer_id, pack.case_id))
            return Abstain(
                reviewer_id=reviewer.reviewer_id,
                reason="timeout",
                detail=f"no response within {reviewer.timeout_seconds:g}s",
                latency_ms=latency_ms,
            )

        self._pending.discard(task)
        exc = task.exception()
        if exc is not None:
            logger.error("Reviewer task failed | reviewer=%s | case_id=%s", reviewer.reviewer_id, pack.case_id, exc_info=exc)
            return Abstain(reviewer_id=reviewer.reviewer_id, reason="backend_error", detail=str(exc)[:1000], latency_ms=latency_ms)
        return task.result()

    # ------------------------------------------------------------------
    # Round
    # ------------------------------------------------------------------

    async def run(self, pack: EvidencePack, required_fields: Sequence[str] = ()) -> CommitteeRecord:
        """
        Run one review round for *pack*.

        Raises :class:`intake.errors.SelectionError` if the pool cannot supply
        a committee of the configured size.
        """
        started_at = datetime.now(timezone.utc).isoformat()
        t0 = time.perf_counter()
        table = current_or_uniform(self._weights)
        families = {rid: r.family for rid, r in self._reviewers.items()}
        selection = select_reviewers(
            list(self._reviewers), self._size, self._strategy, table, self._rng, families,
        )
        logger.info(
            "Committee start | case_id=%s | selected=%s | strategy=%s | weights=%s | fields=%s",
            pack.case_id, selection.selected, selection.strategy, table.version, pack.fields,
        )

        settlers = [self.settle(self._reviewers[rid], pack) for rid in selection.selected]
        outcomes = list(await asyncio.gather(*settlers))

        result = aggregate(outcomes, pack.fields, required_fields, table, self._cfg)
        elapsed_ms = int((time.perf_counter() - t0) * 1000)
        record = CommitteeRecord(
            record_id=uuid.uuid4().hex,
            case_id=pack.case_id,
            selection=selection,
            weight_table_version=table.version,
            outcomes=outcomes,
            result=result,
            timings={o.reviewer_id: o.latency_ms for o in outcomes},
            started_at=started_at,
            elapsed_ms=elapsed_ms,
        )
        logger.info(
            "Committee done | case_id=%s | classification=%s | votes=%d | abstentions=%d | elapsed_ms=%d",
            pack.case_id, result.classification,
            sum(1 for o in outcomes if isinstance(o, Vote)),
            sum(1 for o in outcomes if isinstance(o, Abstain)),
            elapsed_ms,
        )
        return record

    # ------------------------------------------------------------------
    # Sync bridge
    # ------------------------------------------------------------------

    def _background_loop(self) -> asyncio.AbstractEventLoop:
        with self._loop_lock:
            if self._loop is None:
                loop = asyncio.new_event_loop()
                thread = threading.Thread(target=loop.run_forever, name="committee-loop", daemon=True)
                thread.start()
                self._loop = loop
            return self._loop

    def run_sync(self, pack: EvidencePack, required_fields: Sequence[str] = ()) -> CommitteeRecord:
        """
        Blocking wrapper around :meth:`run`.

        Rounds run on a committee-owned event loop thread so timed-out calls
        can finish in the background after this returns.
        """
        future = asyncio.run_coroutine_threadsafe(self.run(pack, required_fields), self._background_loop())
        return future.result()

    async def drain(self) -> None:
        """Wait for timed-out calls still running on this loop to finish."""
        while self._pending:
            await asyncio.wait(set(self._pending))

    def close(self) -> None:
        with self._loop_lock:
            if self._loop is not None:
                self._loop.call_soon_threadsafe(self._loop.stop)
                self._loop = None
