"""
EvidencePackBuilder: compress extraction candidates into a bounded review request.

Only candidate ids, truncated headers and a handful of truncated samples
leave the server. Evidence ids stay in ``candidate_evidence``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, List, Optional

from intake.consensus.config import ConsensusConfig, DEFAULT_CONSENSUS_CONFIG
from intake.consensus.models import EvidencePack, PackCandidate
from intake.extraction.data_cleaner import DataCleaner
from intake.ir import CandidateColumn


def truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[: max(0, limit - 3)] + "..."


def default_constraints(candidate_ids: List[str], fields: List[str]) -> List[str]:
    return [
        f"Choose only from these candidate ids: {', '.join(candidate_ids)}",
        "Candidate ids correspond to candidate_headers in order",
        "Do not invent columns or values",
        "Use null when no candidate fits",
        f"Map only these fields: {', '.join(fields)}",
    ]


class EvidencePackBuilder:
    def __init__(self, cfg: ConsensusConfig = DEFAULT_CONSENSUS_CONFIG):
        self._cfg = cfg

    def _samples(self, values: List[Any]) -> List[str]:
        out: List[str] = []
        for value in values:
            if len(out) >= self._cfg.max_samples_per_candidate:
                break
            if DataCleaner.is_empty(value):
                continue
            out.append(truncate(DataCleaner.cell_to_str(value), self._cfg.max_sample_length))
        return out

    def build(
        self,
        case_id: str,
        candidates: List[CandidateColumn],
        fields: List[str],
        language_hint: Optional[str] = None,
        timestamp: Optional[str] = None,
    ) -> EvidencePack:
        """
        Build the pack for *fields* over (at most ``max_candidates``) *candidates*.

        Candidates keep their column-letter ids and sheet order.
        """
        kept = sorted(candidates, key=lambda c: c.index)[: self._cfg.max_candidates]
        pack_candidates: List[PackCandidate] = []
        candidate_evidence = {}
        for cand in kept:
            samples = self._samples(cand.samples)
            pack_candidates.append(PackCandidate(
                id=cand.id,
                header=truncate(cand.header, self._cfg.max_header_length),
                samples=samples,
            ))
            refs = [cand.header_evidence_id] if cand.header_evidence_id else []
            sample_ids = [
                eid for value, eid in zip(cand.samples, cand.sample_evidence_ids)
                if not DataCleaner.is_empty(value)
            ]
            refs.extend(sample_ids[: len(samples)])
            candidate_evidence[cand.id] = refs

        ids = [c.id for c in pack_candidates]
        return EvidencePack(
            case_id=case_id,
            fields=list(fields),
            candidates=pack_candidates,
            language_hint=language_hint,
            constraints=default_constraints(ids, list(fields)),
            timestamp=timestamp or datetime.now(timezone.utc).isoformat(),
            candidate_evidence=candidate_evidence,
        )
