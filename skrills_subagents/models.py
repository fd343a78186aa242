"""Data model for subagent runs.

A run is one backend-dispatched task. Its record holds the immutable request,
the current lifecycle status and an append-only list of progress events.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

type RunId = uuid.UUID
type BackendKind = str

CODEX: BackendKind = "codex"
CLAUDE: BackendKind = "claude"

EVENT_START = "start"
EVENT_STREAM = "stream"
EVENT_COMPLETION = "completion"
EVENT_ERROR = "error"


def utc_now() -> datetime:
    return datetime.now(UTC)


def new_run_id() -> RunId:
    """Generate a fresh 128-bit random run identifier."""
    return uuid.uuid4()


class RunState(str, Enum):
    """Lifecycle states of a run."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATES

    def can_transition_to(self, target: RunState) -> bool:
        """Check whether moving from this state to ``target`` is allowed."""
        return target in _TRANSITIONS[self]


_TERMINAL_STATES = frozenset({RunState.SUCCEEDED, RunState.FAILED, RunState.CANCELED})

_TRANSITIONS: dict[RunState, frozenset[RunState]] = {
    RunState.PENDING: frozenset({RunState.RUNNING, RunState.FAILED, RunState.CANCELED}),
    RunState.RUNNING: frozenset({RunState.RUNNING, RunState.SUCCEEDED, RunState.FAILED, RunState.CANCELED}),
    RunState.SUCCEEDED: frozenset(),
    RunState.FAILED: frozenset(),
    RunState.CANCELED: frozenset(),
}


class RunStatus(BaseModel):
    """Current lifecycle state of a run plus a human-readable message."""

    state: RunState
    message: str | None = None
    updated_at: datetime = Field(default_factory=utc_now)

    @classmethod
    def pending(cls) -> RunStatus:
        return cls(state=RunState.PENDING)

    @classmethod
    def running(cls, message: str | None = None) -> RunStatus:
        return cls(state=RunState.RUNNING, message=message)

    @classmethod
    def succeeded(cls, message: str | None = "completed") -> RunStatus:
        return cls(state=RunState.SUCCEEDED, message=message)

    @classmethod
    def failed(cls, message: str) -> RunStatus:
        return cls(state=RunState.FAILED, message=message)

    @classmethod
    def canceled(cls, message: str | None = "stopped by user") -> RunStatus:
        return cls(state=RunState.CANCELED, message=message)


class RunEvent(BaseModel):
    """One append-only entry in a run's progress log."""

    ts: datetime = Field(default_factory=utc_now)
    kind: str
    data: Any | None = None


class RunRequest(BaseModel):
    """Immutable description of what a run should execute."""

    model_config = ConfigDict(frozen=True)

    backend: BackendKind
    prompt: str
    template_id: str | None = None
    output_schema: dict[str, Any] | None = None
    async_mode: bool = False
    tracing: bool = False
    timeout_ms: int | None = Field(default=None, ge=1, le=300_000)


class RunRecord(BaseModel):
    """Full state of a single run: request, status and ordered events."""

    id: RunId
    request: RunRequest
    status: RunStatus
    events: list[RunEvent] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @classmethod
    def new(cls, request: RunRequest) -> RunRecord:
        now = utc_now()
        return cls(
            id=new_run_id(),
            request=request,
            status=RunStatus(state=RunState.PENDING, updated_at=now),
            created_at=now,
            updated_at=now,
        )


class SubagentTemplate(BaseModel):
    """An invocable template advertised by a backend."""

    id: str
    name: str
    description: str | None = None
    backend: BackendKind
    capabilities: list[str] = Field(default_factory=list)


class AdapterCapabilities(BaseModel):
    """Feature flags advertised by a backend adapter."""

    model_config = ConfigDict(frozen=True)

    supports_schema: bool = False
    supports_async: bool = False
    supports_tracing: bool = False
    supports_secure_transcript: bool = False
