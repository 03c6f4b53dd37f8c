"""
Reviewer contract.

Every reviewer backend implements :meth:`BaseReviewer._complete`; callers
only ever use :meth:`BaseReviewer.invoke`, which always returns a
:class:`Vote` or a tagged :class:`Abstain` and never raises for backend or
output problems.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Union

from pydantic import ValidationError

from intake.consensus.models import Abstain, EvidencePack, ReviewerResponse, Vote
from intake.errors import ReviewerOutputError
from intake.logger import get_logger

logger = get_logger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0


def parse_reviewer_response(
    payload: Any,
    pack: EvidencePack,
    reviewer_id: str,
    latency_ms: int = 0,
) -> Vote:
    """
    Validate a raw reviewer payload against the response schema and the pack.

    Raises :class:`ReviewerOutputError` with reason ``malformed_output`` or
    ``out_of_range_column``. Fields outside ``pack.fields`` are dropped;
    fields the reviewer left out are simply absent from the vote.
    """
    if not isinstance(payload, dict):
        raise ReviewerOutputError("malformed_output", f"expected a JSON object, got {type(payload).__name__}")
    if payload.get("error") == "json_parse_error":
        raise ReviewerOutputError("malformed_output", str(payload.get("parse_error") or "unparseable output"))
    try:
        response = ReviewerResponse.model_validate(payload)
    except ValidationError as exc:
        raise ReviewerOutputError("malformed_output", str(exc)) from exc

    allowed = set(pack.candidate_ids())
    out_of_range = sorted({
        m.selected_column_id for m in response.mappings
        if m.selected_column_id is not None and m.selected_column_id not in allowed
    })
    if out_of_range:
        raise ReviewerOutputError(
            "out_of_range_column",
            f"selected ids {out_of_range} are not among candidates {sorted(allowed)}",
        )

    selections: Dict[str, Optional[str]] = {}
    confidences: Dict[str, float] = {}
    seen = set()
    for mapping in response.mappings:
        if mapping.field in seen:
            raise ReviewerOutputError("malformed_output", f"field {mapping.field!r} mapped more than once")
        seen.add(mapping.field)
        if mapping.field not in pack.fields:
            continue
        selections[mapping.field] = mapping.selected_column_id
        confidences[mapping.field] = mapping.confidence

    return Vote(
        reviewer_id=reviewer_id,
        selections=selections,
        confidences=confidences,
        flags=[issue.code for issue in response.issues],
        overall_confidence=response.overall_confidence,
        latency_ms=latency_ms,
    )


class BaseReviewer(ABC):
    """
    Abstract reviewer.

    Attributes:
        reviewer_id: stable id used for weights, selection and audit
        timeout_seconds: per-call timebox applied by the committee
        family: model family, used for diversity-aware selection
    """

    def __init__(self, reviewer_id: str, timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS, family: Optional[str] = None):
        self.reviewer_id = reviewer_id
        self.timeout_seconds = float(timeout_seconds)
        self.family = family or reviewer_id

    @abstractmethod
    async def _complete(self, request: Dict[str, Any], pack: EvidencePack) -> Any:
        """
        Send *request* to the backend and return the raw decoded payload.

        Exceptions raised here are converted to ``backend_error`` abstentions.
        """

    async def invoke(self, pack: EvidencePack) -> Union[Vote, Abstain]:
        start = time.perf_counter()
        try:
            payload = await self._complete(pack.to_request(), pack)
            latency_ms = int((time.perf_counter() - start) * 1000)
            vote = parse_reviewer_response(payload, pack, self.reviewer_id, latency_ms)
        except ReviewerOutputError as exc:
            latency_ms = int((time.perf_counter() - start) * 1000)
            logger.warning(
                "Reviewer abstained | reviewer=%s | case_id=%s | reason=%s | detail=%s",
                self.reviewer_id, pack.case_id, exc.reason, exc.detail[:300],
                exc_info=True,
            )
            return Abstain(reviewer_id=self.reviewer_id, reason=exc.reason, detail=exc.detail[:1000], latency_ms=latency_ms)
        except Exception as exc:  # noqa: BLE001
            latency_ms = int((time.perf_counter() - start) * 1000)
            logger.error(
                "Reviewer backend failed | reviewer=%s | case_id=%s | error=%s",
                self.reviewer_id, pack.case_id, exc,
                exc_info=True,
            )
            return Abstain(reviewer_id=self.reviewer_id, reason="backend_error", detail=str(exc)[:1000], latency_ms=latency_ms)

        logger.info(
            "Reviewer voted | reviewer=%s | case_id=%s | selections=%s | latency_ms=%d",
            self.reviewer_id, pack.case_id, vote.selections, vote.latency_ms,
        )
        return vote

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.reviewer_id!r})"
