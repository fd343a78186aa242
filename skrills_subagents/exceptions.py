"""Exceptions for the subagent run service."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from skrills_subagents.models import RunId, RunState


class SubagentError(Exception):
    """Base exception for subagent errors."""


class ConfigurationError(SubagentError):
    """Raised when backend settings cannot be resolved (missing key, invalid URL)."""


class BackendUnavailableError(SubagentError):
    """Raised when a request is routed to a backend that is not configured."""

    def __init__(self, backend: str, reason: str | None = None) -> None:
        message = f"backend not configured: {backend}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)
        self.backend = backend
        self.reason = reason


class InvalidToolCallError(SubagentError):
    """Raised when tool arguments are missing or malformed."""


class UnknownToolError(InvalidToolCallError):
    """Raised when a tool name is not handled by the service."""

    def __init__(self, name: str) -> None:
        super().__init__(f"unknown tool: {name}")
        self.name = name


class StoreError(SubagentError):
    """Raised when the run store cannot read or persist its state."""


class RunNotFoundError(StoreError):
    """Raised when an operation targets a run that does not exist."""

    def __init__(self, run_id: RunId) -> None:
        super().__init__(f"run not found: {run_id}")
        self.run_id = run_id


class InvalidTransitionError(StoreError):
    """Raised when a status update would move a run backwards."""

    def __init__(self, run_id: RunId, current: RunState, target: RunState) -> None:
        super().__init__(f"invalid transition for run {run_id}: {current.value} -> {target.value}")
        self.run_id = run_id
        self.current = current
        self.target = target


class BackendCallError(SubagentError):
    """Raised when a provider call returns a non-success response."""

    def __init__(self, message: str, status_code: int | None = None, response_body: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.response_body = response_body


class CliError(SubagentError):
    """Raised when a local agent CLI cannot be spawned or awaited."""
