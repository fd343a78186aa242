"""Run stores: in-memory, JSON file and Redis implementations."""

from __future__ import annotations

import logging
import os

from skrills_subagents.store.base import RunStore
from skrills_subagents.store.memory import MemRunStore
from skrills_subagents.store.redis_store import RedisRunStore
from skrills_subagents.store.state import StateRunStore, default_store_path

logger = logging.getLogger(__name__)

STORE_KIND_ENV = "SKRILLS_SUBAGENTS_STORE"


def create_store(kind: str | None = None) -> RunStore:
    """Create the run store selected by ``kind`` or ``SKRILLS_SUBAGENTS_STORE``.

    Args:
        kind: One of "memory", "state" (default) or "redis"

    Raises:
        ValueError: If the store kind is unknown
    """
    kind = (kind or os.environ.get(STORE_KIND_ENV) or "state").strip().lower()
    logger.info(f"Using {kind} run store")
    match kind:
        case "memory" | "mem":
            return MemRunStore()
        case "state" | "file" | "disk":
            return StateRunStore(default_store_path())
        case "redis":
            return RedisRunStore()
        case _:
            raise ValueError(f"Invalid {STORE_KIND_ENV}: {kind}. Must be 'memory', 'state' or 'redis'")


__all__ = [
    "MemRunStore",
    "RedisRunStore",
    "RunStore",
    "StateRunStore",
    "create_store",
    "default_store_path",
]
