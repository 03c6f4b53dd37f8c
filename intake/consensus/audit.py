"""
Committee record sinks.

Durable audit storage belongs to an external collaborator; the JSON-lines
sink keeps records locally for the CLI and API.
"""

from __future__ import annotations

import json
import re
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Union

from intake.consensus.models import CommitteeRecord
from intake.logger import get_logger

logger = get_logger(__name__)

_UNSAFE_NAME_RE = re.compile(r"[^A-Za-z0-9._-]+")


class AuditSink(ABC):
    @abstractmethod
    def write(self, record: CommitteeRecord) -> None:
        """Persist one committee record."""


class MemoryAuditSink(AuditSink):
    """Keeps records in a list (tests, embedding)."""

    def __init__(self) -> None:
        self.records: List[CommitteeRecord] = []

    def write(self, record: CommitteeRecord) -> None:
        self.records.append(record)


class JsonlAuditSink(AuditSink):
    """Appends one JSON line per record to ``{directory}/{case_id}.jsonl``."""

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory)
        self._lock = threading.Lock()

    def path_for(self, case_id: str) -> Path:
        safe = _UNSAFE_NAME_RE.sub("_", case_id).strip("._") or "case"
        return self.directory / f"{safe}.jsonl"

    def write(self, record: CommitteeRecord) -> None:
        path = self.path_for(record.case_id)
        line = json.dumps(record.model_dump(mode="json"), ensure_ascii=False, sort_keys=True)
        with self._lock:
            self.directory.mkdir(parents=True, exist_ok=True)
            with open(path, "a", encoding="utf-8") as f:
                f.write(line + "\n")
        logger.info("Audit record written | case_id=%s | record_id=%s | path=%s", record.case_id, record.record_id, path)
