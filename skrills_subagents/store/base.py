"""Run store interface and shared state-machine helpers."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from skrills_subagents.exceptions import InvalidTransitionError
from skrills_subagents.models import RunStatus

if TYPE_CHECKING:
    from skrills_subagents.models import RunEvent, RunId, RunRecord, RunRequest

logger = logging.getLogger(__name__)


class RunStore(ABC):
    """Persistence and concurrency boundary holding all run state.

    Implementations must be safe to call from concurrent run tasks and pollers.
    Terminal states are sticky: once a run has succeeded, failed or been
    canceled, further status updates are skipped.
    """

    @abstractmethod
    def create_run(self, request: RunRequest) -> RunId:
        """Store a new run with status pending and return its id."""

    @abstractmethod
    def update_status(self, run_id: RunId, status: RunStatus) -> bool:
        """Apply a status transition.

        Returns:
            False if the run was already terminal and the update was skipped

        Raises:
            RunNotFoundError: If the run does not exist
            InvalidTransitionError: If the transition is not allowed
        """

    @abstractmethod
    def append_event(self, run_id: RunId, event: RunEvent) -> None:
        """Append an event to the run's log."""

    @abstractmethod
    def get_run(self, run_id: RunId) -> RunRecord | None:
        """Return a snapshot of the run, or None if unknown."""

    @abstractmethod
    def stop(self, run_id: RunId) -> bool:
        """Cancel a pending or running run; False if it was already terminal."""

    @abstractmethod
    def history(self, limit: int) -> list[RunRecord]:
        """Return at most ``limit`` runs, most recent first."""

    def get_status(self, run_id: RunId) -> RunStatus | None:
        record = self.get_run(run_id)
        return record.status if record else None

    def is_terminal(self, run_id: RunId) -> bool:
        status = self.get_status(run_id)
        return status is not None and status.state.is_terminal

    def close(self) -> None:  # noqa: B027 - optional hook
        """Release resources held by the store."""


def apply_status(record: RunRecord, status: RunStatus) -> bool:
    """Apply ``status`` to ``record`` in place following the run state machine."""
    current = record.status.state
    if current.is_terminal:
        logger.debug(
            f"Skipping status update for run {record.id}: already {current.value}, ignoring {status.state.value}"
        )
        return False
    if not current.can_transition_to(status.state):
        raise InvalidTransitionError(record.id, current, status.state)
    record.status = status
    record.updated_at = status.updated_at
    return True


def apply_event(record: RunRecord, event: RunEvent) -> None:
    record.events.append(event)
    record.updated_at = event.ts


def apply_stop(record: RunRecord) -> bool:
    """Cancel ``record`` in place unless it is already terminal."""
    if record.status.state.is_terminal:
        return False
    status = RunStatus.canceled()
    record.status = status
    record.updated_at = status.updated_at
    return True
