"""
API Module
==========

FastAPI backend: ``POST /cases`` accepts one workbook upload and returns the
Canonical Order with its routing decision; ``GET /health`` reports the
active weight table and reviewer pool.
"""

import hashlib
import logging
from typing import Optional

from fastapi import FastAPI, File, Form, HTTPException, UploadFile
from fastapi.responses import JSONResponse

from intake import __version__
from intake.config import get_settings
from intake.consensus.audit import JsonlAuditSink
from intake.consensus.committee import Committee
from intake.consensus.weights import current_or_uniform
from intake.errors import ConfigError
from intake.extraction.extractor import OrderExtractor
from intake.ir import CaseMetadata
from intake.logger import get_logger, set_level
from intake.pipeline import build_committee, process_case

logger = get_logger(__name__)
set_level(getattr(logging, get_settings().LOG_LEVEL.upper(), logging.INFO))

app = FastAPI(title="Order Intake Backend", version=__version__)

_committee: Optional[Committee] = None
_committee_error: Optional[str] = None


def _get_committee() -> Optional[Committee]:
    """Build the reviewer committee once; a missing pool disables review."""
    global _committee, _committee_error
    if _committee is None and _committee_error is None:
        try:
            _committee = build_committee(get_settings())
        except ConfigError as e:
            _committee_error = str(e)
            logger.warning("Reviewer committee unavailable | error=%s", e)
    return _committee


@app.on_event("shutdown")
def _close_committee() -> None:
    if _committee is not None:
        _committee.close()


@app.get("/health")
def health():
    committee = _get_committee()
    return {
        "status": "ok",
        "version": __version__,
        "review_enabled": committee is not None,
        "review_error": _committee_error,
        "reviewers": committee.reviewer_ids if committee else [],
        "weight_table_version": current_or_uniform(committee.weight_store).version if committee else None,
    }


@app.post("/cases")
def create_case(
    file: UploadFile = File(...),
    case_id: Optional[str] = Form(default=None),
    language_hint: Optional[str] = Form(default=None),
    file_sha256: Optional[str] = Form(default=None),
):
    """
    Process one uploaded workbook.

    Returns the order, routing decision and (if a review ran) the committee
    record id. Processing problems are reported as issues in the body, not
    as HTTP errors.

    A plain ``def`` handler: FastAPI runs it in its threadpool, so a
    review round blocks only this request.
    """
    settings = get_settings()
    content = file.file.read(settings.MAX_UPLOAD_BYTES + 1)
    if not content:
        raise HTTPException(status_code=400, detail="Empty upload")

    meta = CaseMetadata(
        case_id=case_id or hashlib.sha256(content).hexdigest()[:16],
        filename=file.filename or "upload.xlsx",
        file_sha256=file_sha256,
        language_hint=language_hint,
    )
    outcome = process_case(
        content,
        meta,
        committee=_get_committee(),
        audit_sink=JsonlAuditSink(settings.AUDIT_DIR),
        extractor=OrderExtractor(max_upload_bytes=settings.MAX_UPLOAD_BYTES),
    )
    return JSONResponse(outcome.to_dict())
