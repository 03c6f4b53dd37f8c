"""
Weight table persistence and the runtime WeightStore.

The store holds one immutable :class:`WeightTable` snapshot. A refresh
loads the file into a new object and swaps the reference in one
assignment; readers never see a half-loaded table and never wait on a
reload in progress.
"""

from __future__ import annotations

import os
import tempfile
import threading
import time
from pathlib import Path
from typing import Callable, Optional, Union

import yaml
from pydantic import ValidationError

from intake.consensus.models import WeightTable, uniform_weight_table
from intake.errors import WeightTableError
from intake.logger import get_logger

logger = get_logger(__name__)


def load_weight_table(path: Union[str, Path], require_approved: bool = True) -> WeightTable:
    """
    Read a weight table from YAML.

    Raises :class:`WeightTableError` when the file is unreadable or invalid,
    or when *require_approved* is set and the table is not approved.
    """
    table_path = Path(path)
    try:
        with open(table_path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as exc:
        raise WeightTableError(f"Cannot read weight table {table_path}: {exc}") from exc
    if not isinstance(raw, dict):
        raise WeightTableError(f"Weight table {table_path} must be a mapping")
    try:
        table = WeightTable.model_validate(raw)
    except ValidationError as exc:
        raise WeightTableError(f"Weight table {table_path} is invalid: {exc}") from exc
    if require_approved and table.status != "approved":
        raise WeightTableError(
            f"Weight table {table_path} (version {table.version}) has status {table.status!r}; "
            "only approved tables can be used at runtime"
        )
    return table


def dump_weight_table(table: WeightTable, path: Union[str, Path]) -> Path:
    """Write *table* as YAML atomically (temp file + ``os.replace``)."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=str(target.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            yaml.safe_dump(table.model_dump(mode="json"), f, sort_keys=False, allow_unicode=True)
        os.replace(tmp_name, target)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise
    return target


class WeightStore:
    """
    Interval-refreshed, read-only view of the active weight table.

    Args:
        path: YAML file of the approved table
        refresh_seconds: minimum age of the snapshot before a reload
        clock: monotonic clock, injectable for tests
    """

    def __init__(
        self,
        path: Union[str, Path],
        refresh_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._path = Path(path)
        self._refresh_seconds = float(refresh_seconds)
        self._clock = clock
        self._lock = threading.Lock()
        self._snapshot: WeightTable = uniform_weight_table()
        self._loaded_at = self._clock()
        if self._path.exists():
            self.refresh()
        else:
            logger.info("Weight table %s not found; using uniform weights", self._path)

    @property
    def path(self) -> Path:
        return self._path

    def current(self) -> WeightTable:
        """Return the current snapshot, triggering a non-blocking refresh when stale."""
        if self._clock() - self._loaded_at >= self._refresh_seconds:
            self.refresh(blocking=False)
        return self._snapshot

    def refresh(self, blocking: bool = True) -> bool:
        """
        Reload the table file.

        Returns True when a new snapshot was installed. A missing or broken
        file keeps the previous snapshot.
        """
        if not self._lock.acquire(blocking=blocking):
            return False
        try:
            self._loaded_at = self._clock()
            if not self._path.exists():
                logger.warning("Weight table %s missing; keeping version %s", self._path, self._snapshot.version)
                return False
            try:
                table = load_weight_table(self._path)
            except WeightTableError as exc:
                logger.error("Weight table refresh failed; keeping version %s | error=%s", self._snapshot.version, exc)
                return False
            if table.version != self._snapshot.version:
                logger.info("Weight table swapped | %s -> %s", self._snapshot.version, table.version)
            self._snapshot = table
            return True
        finally:
            self._lock.release()

    def swap(self, table: WeightTable) -> None:
        """Install *table* directly (already validated and approved)."""
        if table.status != "approved":
            raise WeightTableError(f"Refusing to install unapproved weight table {table.version}")
        self._snapshot = table


def current_or_uniform(store: Optional[WeightStore]) -> WeightTable:
    return store.current() if store is not None else uniform_weight_table()
