"""
Tests for the committee round: fan-out, timeboxing and the sync bridge.
"""
import asyncio
import random
import time

import pytest

from intake.consensus.committee import Committee
from intake.consensus.models import Abstain, Vote
from intake.consensus.weights import WeightStore
from intake.errors import SelectionError

from conftest import StaticReviewer, mapping_payload


def agreeing(n, selections, **kwargs):
    return [StaticReviewer(f"r{i}", payload=mapping_payload(selections), **kwargs) for i in range(1, n + 1)]


class TestRun:
    def test_unanimous_round(self, sample_pack):
        reviewers = agreeing(3, {"sku": "B", "quantity": "C"})
        committee = Committee(reviewers, size=3, rng=random.Random(0))
        record = asyncio.run(committee.run(sample_pack, ["sku", "quantity"]))
        assert sorted(record.selection.selected) == ["r1", "r2", "r3"]
        assert record.result.classification == "unanimous"
        assert record.result.get("sku").winner == "B"
        assert record.weight_table_version == "default"
        assert set(record.timings) == {"r1", "r2", "r3"}
        assert all(r.calls == 1 for r in reviewers)

    def test_only_selected_reviewers_are_called(self, sample_pack):
        reviewers = agreeing(5, {"sku": "A"})
        committee = Committee(reviewers, size=3, rng=random.Random(3))
        record = asyncio.run(committee.run(sample_pack))
        called = sorted(r.reviewer_id for r in reviewers if r.calls)
        assert called == sorted(record.selection.selected)
        assert record.selection.size == 3
        assert record.selection.pool == ["r1", "r2", "r3", "r4", "r5"]

    def test_slow_reviewer_abstains_and_round_completes(self, sample_pack):
        fast = agreeing(2, {"sku": "A", "quantity": "C"})
        slow = StaticReviewer("slow", payload=mapping_payload({"sku": "B"}), delay=1.0, timeout_seconds=0.05)
        committee = Committee(fast + [slow], size=3)
        start = time.perf_counter()
        record = asyncio.run(committee.run(sample_pack, ["sku"]))
        assert time.perf_counter() - start < 0.9
        by_id = {o.reviewer_id: o for o in record.outcomes}
        assert isinstance(by_id["slow"], Abstain)
        assert by_id["slow"].reason == "timeout"
        assert record.result.get("sku").abstained == ["slow"]
        assert record.result.get("sku").classification == "unanimous"

    def test_errors_become_abstentions(self, sample_pack):
        reviewers = agreeing(2, {"sku": "A"}) + [
            StaticReviewer("broken", error=RuntimeError("boom")),
            StaticReviewer("liar", payload=mapping_payload({"sku": "Q"})),
        ]
        record = asyncio.run(Committee(reviewers, size=4).run(sample_pack))
        reasons = {o.reviewer_id: o.reason for o in record.outcomes if isinstance(o, Abstain)}
        assert reasons == {"broken": "backend_error", "liar": "out_of_range_column"}
        assert len(record.votes()) == 2
        assert record.result.get("sku").voters == ["r1", "r2"]
        assert record.result.get("sku").classification == "unanimous"

    def test_pool_too_small(self, sample_pack):
        committee = Committee(agreeing(2, {"sku": "A"}), size=3)
        with pytest.raises(SelectionError):
            asyncio.run(committee.run(sample_pack))

    def test_weights_come_from_the_store(self, sample_pack, tmp_path):
        path = tmp_path / "weights.yaml"
        path.write_text(
            "version: w-1\nstatus: approved\nweights:\n  sku:\n    r1: 3.0\n",
            encoding="utf-8",
        )
        reviewers = [
            StaticReviewer("r1", payload=mapping_payload({"sku": "A"})),
            StaticReviewer("r2", payload=mapping_payload({"sku": "B"})),
            StaticReviewer("r3", payload=mapping_payload({"sku": "B"})),
        ]
        committee = Committee(reviewers, size=3, weight_store=WeightStore(path))
        record = asyncio.run(committee.run(sample_pack, ["sku"]))
        assert record.weight_table_version == "w-1"
        assert record.result.get("sku").winner == "A"
        assert committee.reviewer_ids == ["r1", "r2", "r3"]


class TestRunSync:
    def test_late_call_finishes_in_background(self, sample_pack):
        fast = agreeing(2, {"sku": "A"})
        slow = StaticReviewer("slow", payload=mapping_payload({"sku": "A"}), delay=0.3, timeout_seconds=0.05)
        committee = Committee(fast + [slow], size=3)
        try:
            record = committee.run_sync(sample_pack, ["sku"])
            assert {o.reviewer_id: o.kind for o in record.outcomes}["slow"] == "abstain"
            assert committee.pending_count == 1
            time.sleep(0.8)
            assert committee.pending_count == 0
            assert slow.calls == 1
        finally:
            committee.close()

    def test_rounds_reuse_the_loop(self, sample_pack):
        committee = Committee(agreeing(3, {"sku": "A"}), size=3)
        try:
            first = committee.run_sync(sample_pack)
            second = committee.run_sync(sample_pack)
        finally:
            committee.close()
        assert first.record_id != second.record_id
        assert all(isinstance(o, Vote) for o in first.outcomes + second.outcomes)
