"""Redis-backed run store."""

from __future__ import annotations

import logging
import os
import threading
from typing import TYPE_CHECKING, cast

import redis
from pydantic import ValidationError

from skrills_subagents.exceptions import RunNotFoundError, StoreError
from skrills_subagents.models import RunRecord
from skrills_subagents.store.base import RunStore, apply_event, apply_status, apply_stop

if TYPE_CHECKING:
    from collections.abc import Callable

    from skrills_subagents.models import RunEvent, RunId, RunRequest, RunStatus

logger = logging.getLogger(__name__)

RUN_KEY_PREFIX = "subagents:run"
INDEX_KEY = "subagents:runs"


class RedisRunStore(RunStore):
    """Run store keeping one JSON document per run plus a creation-time index.

    Mutations are read-modify-write under a process-local lock; a single
    server process is assumed to own the keys.
    """

    def __init__(self, host: str | None = None, port: int | None = None) -> None:
        """Initialize Redis run store.

        Args:
            host: Redis host (defaults to REDIS_HOST env var or 'localhost')
            port: Redis port (defaults to REDIS_PORT env var or 6379)
        """
        self.host = host or os.getenv("REDIS_HOST", "localhost")
        self.port = int(port if port is not None else int(os.getenv("REDIS_PORT", "6379")))
        self._client: redis.Redis | None = None
        self._lock = threading.Lock()

    @property
    def client(self) -> redis.Redis:
        """Get or create Redis client."""
        if self._client is None:
            self._client = redis.Redis(
                host=self.host, port=self.port, decode_responses=False, socket_connect_timeout=5
            )
        return self._client

    def _run_key(self, run_id: RunId) -> str:
        return f"{RUN_KEY_PREFIX}:{run_id}"

    def _load(self, run_id: RunId) -> RunRecord | None:
        try:
            value = self.client.get(self._run_key(run_id))
        except redis.RedisError as e:
            raise StoreError(f"failed to read run {run_id}: {e}") from e
        if value is None:
            return None
        try:
            return RunRecord.model_validate_json(cast("bytes", value))
        except ValidationError as e:
            raise StoreError(f"corrupt run record {run_id}: {e}") from e

    def _save(self, record: RunRecord) -> None:
        try:
            self.client.set(self._run_key(record.id), record.model_dump_json().encode("utf-8"))
        except redis.RedisError as e:
            raise StoreError(f"failed to persist run {record.id}: {e}") from e

    def _mutate[T](self, run_id: RunId, change: Callable[[RunRecord], T]) -> T:
        with self._lock:
            record = self._load(run_id)
            if record is None:
                raise RunNotFoundError(run_id)
            before = record.model_dump_json()
            result = change(record)
            if record.model_dump_json() != before:
                self._save(record)
            return result

    def create_run(self, request: RunRequest) -> RunId:
        record = RunRecord.new(request)
        with self._lock:
            try:
                while not self.client.set(
                    self._run_key(record.id), record.model_dump_json().encode("utf-8"), nx=True
                ):
                    record = RunRecord.new(request)
                self.client.zadd(INDEX_KEY, {str(record.id): record.created_at.timestamp()})
            except redis.RedisError as e:
                raise StoreError(f"failed to create run: {e}") from e
        logger.debug(f"Created run {record.id} in Redis (backend={request.backend})")
        return record.id

    def update_status(self, run_id: RunId, status: RunStatus) -> bool:
        return self._mutate(run_id, lambda record: apply_status(record, status))

    def append_event(self, run_id: RunId, event: RunEvent) -> None:
        self._mutate(run_id, lambda record: apply_event(record, event))

    def get_run(self, run_id: RunId) -> RunRecord | None:
        return self._load(run_id)

    def stop(self, run_id: RunId) -> bool:
        stopped = self._mutate(run_id, apply_stop)
        if stopped:
            logger.info(f"Run {run_id} canceled")
        return stopped

    def history(self, limit: int) -> list[RunRecord]:
        if limit <= 0:
            return []
        try:
            ids = cast("list[bytes]", self.client.zrevrange(INDEX_KEY, 0, limit - 1))
            if not ids:
                return []
            values = cast(
                "list[bytes | None]",
                self.client.mget([f"{RUN_KEY_PREFIX}:{run_id.decode('utf-8')}" for run_id in ids]),
            )
        except redis.RedisError as e:
            raise StoreError(f"failed to list runs: {e}") from e
        try:
            return [RunRecord.model_validate_json(value) for value in values if value is not None]
        except ValidationError as e:
            raise StoreError(f"corrupt run record in history: {e}") from e

    def is_connected(self) -> bool:
        try:
            self.client.ping()
            return True
        except redis.RedisError:
            return False

    def close(self) -> None:
        """Close Redis connection."""
        if self._client is not None:
            self._client.close()
            self._client = None
            logger.info("Closed Redis connection")
