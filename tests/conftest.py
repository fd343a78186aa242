"""Shared test fixtures and helpers for skrills_subagents tests."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import pytest

from skrills_subagents.config import AdapterConfig
from skrills_subagents.models import RunRequest
from skrills_subagents.store import MemRunStore

if TYPE_CHECKING:
    from collections.abc import Iterator

    from _pytest.monkeypatch import MonkeyPatch

    from skrills_subagents.models import RunId, RunStatus
    from skrills_subagents.store import RunStore

SKRILLS_ENV_VARS = [
    "SKRILLS_CLAUDE_API_KEY",
    "SKRILLS_CLAUDE_BASE_URL",
    "SKRILLS_CLAUDE_MODEL",
    "SKRILLS_CLAUDE_TIMEOUT_MS",
    "SKRILLS_CODEX_API_KEY",
    "SKRILLS_CODEX_BASE_URL",
    "SKRILLS_CODEX_MODEL",
    "SKRILLS_CODEX_TIMEOUT_MS",
    "SKRILLS_SUBAGENTS_DEFAULT_BACKEND",
    "SKRILLS_SUBAGENTS_EXECUTION_MODE",
    "SKRILLS_SUBAGENTS_STORE",
    "SKRILLS_SUBAGENTS_STORE_PATH",
    "SKRILLS_CLI_BINARY",
    "SKRILLS_CLI_TIMEOUT_MS",
    "SKRILLS_CLI_WORKING_DIR",
    "SKRILLS_CLIENT",
    "SKRILLS_LOG_LEVEL",
    "CLAUDE_CODE_SESSION",
    "CLAUDE_CLI",
    "__CLAUDE_MCP_SERVER",
    "CLAUDE_CODE_ENTRYPOINT",
    "CODEX_CLI",
    "CODEX_SESSION_ID",
    "CODEX_HOME",
    "REDIS_HOST",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: MonkeyPatch) -> None:
    """Remove environment variables that change adapter and service defaults."""
    for name in SKRILLS_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def store() -> Iterator[MemRunStore]:
    mem_store = MemRunStore()
    yield mem_store
    mem_store.close()


@pytest.fixture
def claude_config() -> AdapterConfig:
    return AdapterConfig(api_key="claude-test-key", base_url="https://claude.test/v1/", model="claude-sonnet-test")


@pytest.fixture
def codex_config() -> AdapterConfig:
    return AdapterConfig(api_key="codex-test-key", base_url="https://codex.test/v1/", model="gpt-test")


def make_request(backend: str = "codex", prompt: str = "ping", **kwargs) -> RunRequest:
    """Create a RunRequest with default values."""
    return RunRequest(backend=backend, prompt=prompt, **kwargs)


async def wait_for_terminal(store: RunStore, run_id: RunId, timeout: float = 5.0) -> RunStatus:
    """Poll the store until the run reaches a terminal state."""
    async with asyncio.timeout(timeout):
        while True:
            status = store.get_status(run_id)
            if status is not None and status.state.is_terminal:
                return status
            await asyncio.sleep(0.01)
