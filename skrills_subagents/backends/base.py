"""Backend adapter interface and the shared HTTP execution flow.

An adapter creates the run record, detaches the provider call into a
background task and returns the run id immediately. Progress is only
observable by polling the shared run store.
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, ClassVar, Self
from urllib.parse import urljoin

import httpx

from skrills_subagents.config import DEFAULT_TIMEOUT_MS, AdapterConfig
from skrills_subagents.exceptions import BackendCallError, ConfigurationError, StoreError
from skrills_subagents.models import (
    EVENT_COMPLETION,
    EVENT_ERROR,
    EVENT_START,
    EVENT_STREAM,
    RunEvent,
    RunStatus,
)

if TYPE_CHECKING:
    from collections.abc import Mapping

    from skrills_subagents.models import (
        AdapterCapabilities,
        BackendKind,
        RunId,
        RunRecord,
        RunRequest,
        SubagentTemplate,
    )
    from skrills_subagents.store import RunStore

logger = logging.getLogger(__name__)


class BackendAdapter(ABC):
    """Pluggable executor translating run requests into one provider's protocol."""

    dispatch_message: ClassVar[str] = "dispatched"

    def __init__(self) -> None:
        self._tasks: dict[RunId, asyncio.Task[None]] = {}

    @property
    @abstractmethod
    def backend(self) -> BackendKind:
        """Backend kind handled by this adapter."""

    @abstractmethod
    def capabilities(self) -> AdapterCapabilities:
        """Features supported by this adapter."""

    @abstractmethod
    async def list_templates(self) -> list[SubagentTemplate]:
        """Templates invocable through this adapter."""

    @abstractmethod
    async def execute(self, run_id: RunId, request: RunRequest, store: RunStore) -> None:
        """Run the request to completion, recording events and status in ``store``."""

    async def run(self, request: RunRequest, store: RunStore) -> RunId:
        """Create the run, start it in the background and return its id without waiting."""
        if request.backend != self.backend:
            request = request.model_copy(update={"backend": self.backend})
        run_id = store.create_run(request)
        store.update_status(run_id, RunStatus.running(self.dispatch_message))

        task = asyncio.create_task(self._run_guarded(run_id, request, store), name=f"subagent-run-{run_id}")
        self._tasks[run_id] = task
        task.add_done_callback(lambda _: self._tasks.pop(run_id, None))
        logger.info(f"Dispatched run {run_id} to {self.backend}")
        return run_id

    async def _run_guarded(self, run_id: RunId, request: RunRequest, store: RunStore) -> None:
        try:
            await self.execute(run_id, request, store)
        except asyncio.CancelledError:
            record_failure(store, run_id, "run interrupted before completion")
            raise
        except Exception as e:
            logger.error(f"Run {run_id} on {self.backend} failed: {e}", exc_info=True)
            record_failure(store, run_id, str(e) or type(e).__name__)

    async def wait(self, run_id: RunId, timeout: float | None = None) -> None:
        """Wait for the background task of ``run_id`` if it is still in flight."""
        task = self._tasks.get(run_id)
        if task is not None:
            await asyncio.wait_for(asyncio.shield(task), timeout)

    def owns(self, run_id: RunId) -> bool:
        return run_id in self._tasks

    async def get_status(self, run_id: RunId, store: RunStore) -> RunStatus | None:
        return store.get_status(run_id)

    async def stop(self, run_id: RunId, store: RunStore) -> bool:
        return store.stop(run_id)

    async def history(self, limit: int, store: RunStore) -> list[RunStatus]:
        records: list[RunRecord] = store.history(limit)
        return [record.status for record in records]

    async def aclose(self) -> None:
        """Cancel in-flight runs and release resources."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)


def record_failure(store: RunStore, run_id: RunId, message: str) -> None:
    """Record a failure as both an error event and a failed status."""
    try:
        store.append_event(run_id, RunEvent(kind=EVENT_ERROR, data={"message": message}))
    except StoreError as e:
        logger.error(f"Failed to record error event for run {run_id} ({message}): {e}")
    try:
        store.update_status(run_id, RunStatus.failed(message))
    except StoreError as e:
        logger.error(f"Failed to mark run {run_id} as failed: {e}")


def parse_payload(text: str) -> Any:
    """Parse a provider response body, wrapping unparsable text as ``{"raw": text}``."""
    try:
        return json.loads(text)
    except ValueError:
        return {"raw": text}


def parse_sse_data(text: str) -> list[dict[str, Any]]:
    """Extract JSON ``data:`` payloads from a server-sent-event body."""
    events = []
    for line in text.splitlines():
        if not line.startswith("data:"):
            continue
        data = line[len("data:") :].strip()
        if not data or data == "[DONE]":
            continue
        try:
            parsed = json.loads(data)
        except ValueError:
            continue
        if isinstance(parsed, dict):
            events.append(parsed)
    return events


def extract_error_message(payload: Any) -> str | None:
    """Pull the message out of a provider error envelope."""
    if not isinstance(payload, dict):
        return None
    error = payload.get("error")
    if isinstance(error, dict) and isinstance(error.get("message"), str):
        return error["message"]
    if isinstance(error, str):
        return error
    return None


class HttpBackendAdapter(BackendAdapter):
    """Adapter executing runs with a single HTTP call to a provider API.

    Subclasses define the wire shape: endpoint, headers, request body and
    how completion text is read back from the response.
    """

    env_prefix: ClassVar[str]
    default_base: ClassVar[str]
    default_model: ClassVar[str]
    default_timeout_ms: ClassVar[int] = DEFAULT_TIMEOUT_MS
    endpoint: ClassVar[str]

    def __init__(self, config: AdapterConfig, client: httpx.AsyncClient | None = None) -> None:
        super().__init__()
        self.config = config
        self._client = client or httpx.AsyncClient(timeout=config.timeout)

    @classmethod
    def from_env(cls, model: str | None = None, environ: Mapping[str, str] | None = None) -> Self:
        """Build the adapter from ``SKRILLS_{env_prefix}_*`` variables.

        Raises:
            ConfigurationError: If the API key is missing or the base URL is invalid
        """
        config = AdapterConfig.from_env(
            cls.env_prefix, model or cls.default_model, cls.default_base, cls.default_timeout_ms, environ
        )
        return cls(config)

    @classmethod
    def unconfigured(cls, model: str | None = None) -> Self:
        return cls(AdapterConfig.unconfigured(model or cls.default_model, cls.default_base, cls.default_timeout_ms))

    @property
    def key_var(self) -> str:
        return f"SKRILLS_{self.env_prefix}_API_KEY"

    @property
    def url(self) -> str:
        return urljoin(self.config.base_url, self.endpoint)

    @abstractmethod
    def build_headers(self) -> dict[str, str]:
        """Authentication and protocol headers."""

    @abstractmethod
    def build_body(self, request: RunRequest) -> dict[str, Any]:
        """Provider request body for ``request``."""

    @abstractmethod
    def extract_text(self, payload: Any) -> str | None:
        """Completion text from a parsed JSON response."""

    def extract_stream_delta(self, event: dict[str, Any]) -> str | None:
        """Text delta carried by one streamed event."""
        return None

    def _completion_text(self, response: httpx.Response, payload: Any) -> str:
        text = response.text
        if response.headers.get("content-type", "").startswith("text/event-stream"):
            deltas = [self.extract_stream_delta(event) for event in parse_sse_data(text)]
            return "".join(delta for delta in deltas if delta) or text
        return self.extract_text(payload) or text

    async def execute(self, run_id: RunId, request: RunRequest, store: RunStore) -> None:
        store.append_event(run_id, RunEvent(kind=EVENT_START))

        if not self.config.api_key:
            message = f"missing {self.key_var}"
            store.update_status(run_id, RunStatus.failed(message))
            raise ConfigurationError(message)

        timeout = request.timeout_ms / 1000 if request.timeout_ms else self.config.timeout
        logger.debug(f"Calling {self.url} for run {run_id} (model={self.config.model}, timeout={timeout}s)")
        try:
            response = await self._client.post(
                self.url, json=self.build_body(request), headers=self.build_headers(), timeout=timeout
            )
        except httpx.HTTPError as e:
            raise BackendCallError(f"calling {self.backend} API failed: {e}") from e

        payload = parse_payload(response.text)
        if not response.is_success:
            message = extract_error_message(payload) or f"{self.backend} call failed"
            store.append_event(run_id, RunEvent(kind=EVENT_ERROR, data=payload))
            store.update_status(run_id, RunStatus.failed(message))
            raise BackendCallError(message, response.status_code, response.text)

        if store.is_terminal(run_id):
            logger.info(f"Run {run_id} finished remotely after it was already terminal; discarding output")
            return

        completion = self._completion_text(response, payload)
        for token in completion.split():
            store.append_event(run_id, RunEvent(kind=EVENT_STREAM, data={"token": token}))
        store.append_event(run_id, RunEvent(kind=EVENT_COMPLETION, data={"text": completion}))
        store.update_status(run_id, RunStatus.succeeded())
        logger.info(f"Run {run_id} on {self.backend} succeeded ({len(completion)} chars)")

    async def aclose(self) -> None:
        await super().aclose()
        await self._client.aclose()
