"""Disk-backed run store that survives server restarts."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path

from pydantic import ValidationError

from skrills_subagents.exceptions import StoreError
from skrills_subagents.models import RunRecord
from skrills_subagents.store.memory import MemRunStore

logger = logging.getLogger(__name__)

STORE_PATH_ENV = "SKRILLS_SUBAGENTS_STORE_PATH"


def default_store_path() -> Path:
    """Default on-disk path for persisted runs."""
    if override := os.environ.get(STORE_PATH_ENV):
        return Path(override).expanduser()
    return Path.home() / ".codex" / "subagents" / "runs.json"


class StateRunStore(MemRunStore):
    """Run store persisted as a JSON array of records.

    The whole file is rewritten after every mutation while the store lock is
    held, so the file always reflects a consistent snapshot.
    """

    def __init__(self, path: Path | str | None = None) -> None:
        super().__init__()
        self.path = Path(path) if path is not None else default_store_path()
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            return
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8") or "[]")
            records = [RunRecord.model_validate(item) for item in raw]
        except (OSError, json.JSONDecodeError, ValidationError, TypeError) as e:
            raise StoreError(f"failed to load run store {self.path}: {e}") from e

        records.sort(key=lambda r: r.created_at)
        with self._lock:
            self._runs = {record.id: record for record in records}
        logger.info(f"Loaded {len(records)} runs from {self.path}")

    def _changed(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            payload = json.dumps([r.model_dump(mode="json") for r in self._runs.values()], indent=2)
            fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".runs-", suffix=".json")
            with os.fdopen(fd, "w", encoding="utf-8") as tmp:
                tmp.write(payload)
            os.replace(tmp_name, self.path)
        except OSError as e:
            raise StoreError(f"failed to persist run store {self.path}: {e}") from e
