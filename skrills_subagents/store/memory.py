"""In-memory run store for tests and ephemeral sessions."""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from skrills_subagents.exceptions import RunNotFoundError, StoreError
from skrills_subagents.models import RunRecord
from skrills_subagents.store.base import RunStore, apply_event, apply_status, apply_stop

if TYPE_CHECKING:
    from skrills_subagents.models import RunEvent, RunId, RunRequest, RunStatus

logger = logging.getLogger(__name__)


class MemRunStore(RunStore):
    """Process-lifetime store guarded by a single lock.

    Records are kept in insertion order so history ties on ``created_at``
    resolve to the later insert first.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._runs: dict[RunId, RunRecord] = {}

    def _get(self, run_id: RunId) -> RunRecord:
        try:
            return self._runs[run_id]
        except KeyError:
            raise RunNotFoundError(run_id) from None

    def _changed(self) -> None:
        """Hook called under the lock after every mutation."""

    def _commit(self, run_id: RunId, previous: RunRecord | None) -> None:
        """Run the ``_changed`` hook, restoring ``previous`` if it raises StoreError."""
        try:
            self._changed()
        except StoreError:
            if previous is None:
                self._runs.pop(run_id, None)
            else:
                self._runs[run_id] = previous
            logger.error(f"Rolled back run {run_id} after a failed store write")
            raise

    def create_run(self, request: RunRequest) -> RunId:
        record = RunRecord.new(request)
        with self._lock:
            while record.id in self._runs:
                record = RunRecord.new(request)
            self._runs[record.id] = record
            self._commit(record.id, None)
        logger.debug(f"Created run {record.id} (backend={request.backend})")
        return record.id

    def update_status(self, run_id: RunId, status: RunStatus) -> bool:
        with self._lock:
            record = self._get(run_id)
            previous = record.model_copy(deep=True)
            applied = apply_status(record, status)
            if applied:
                self._commit(run_id, previous)
        return applied

    def append_event(self, run_id: RunId, event: RunEvent) -> None:
        with self._lock:
            record = self._get(run_id)
            previous = record.model_copy(deep=True)
            apply_event(record, event)
            self._commit(run_id, previous)

    def get_run(self, run_id: RunId) -> RunRecord | None:
        with self._lock:
            record = self._runs.get(run_id)
            return record.model_copy(deep=True) if record else None

    def get_status(self, run_id: RunId) -> RunStatus | None:
        with self._lock:
            record = self._runs.get(run_id)
            return record.status.model_copy() if record else None

    def stop(self, run_id: RunId) -> bool:
        with self._lock:
            record = self._get(run_id)
            previous = record.model_copy(deep=True)
            stopped = apply_stop(record)
            if stopped:
                self._commit(run_id, previous)
        if stopped:
            logger.info(f"Run {run_id} canceled")
        return stopped

    def history(self, limit: int) -> list[RunRecord]:
        if limit <= 0:
            return []
        with self._lock:
            ordered = list(reversed(self._runs.values()))
            ordered.sort(key=lambda r: r.created_at, reverse=True)
            return [r.model_copy(deep=True) for r in ordered[:limit]]

    def __len__(self) -> int:
        with self._lock:
            return len(self._runs)
