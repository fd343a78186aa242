"""Subagent service: maps tool calls onto backend adapters and the run store."""

from __future__ import annotations

import logging
import os
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from skrills_subagents.backends import ClaudeAdapter, CliAdapter, CliConfig, CodexAdapter
from skrills_subagents.config import (
    CLI_BINARY_ENV,
    DEFAULT_BACKEND_ENV,
    DEFAULT_CLI_BINARY,
    EXECUTION_MODE_ENV,
    ExecutionMode,
    SubagentsFileConfig,
    backend_from_str,
    client_hint_from_env,
    client_hint_from_exe_path,
    load_file_config,
    normalize_cli_binary,
)
from skrills_subagents.exceptions import (
    BackendUnavailableError,
    ConfigurationError,
    InvalidToolCallError,
    RunNotFoundError,
    UnknownToolError,
)
from skrills_subagents.models import CLAUDE, CODEX, RunRequest
from skrills_subagents.registry import AgentRegistry
from skrills_subagents.store import create_store
from skrills_subagents.tools.catalog import TOOL_CATALOG, canonical_tool_name

if TYPE_CHECKING:
    from collections.abc import Mapping

    from skrills_subagents.backends import BackendAdapter
    from skrills_subagents.models import BackendKind, RunEvent, RunId
    from skrills_subagents.store import RunStore
    from skrills_subagents.tools.catalog import ToolInfo

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 20
MAX_HISTORY_LIMIT = 50

CLAUDE_MODEL_MARKERS = ("claude", "sonnet", "opus", "haiku")
CODEX_MODEL_MARKERS = ("gpt", "codex", "o1", "o3")


@dataclass
class ToolResult:
    """Outcome of a tool call: short text, structured data and an error flag."""

    text: str
    data: dict[str, Any] = field(default_factory=dict)
    is_error: bool = False


def parse_run_id(args: Mapping[str, Any]) -> RunId:
    """Read and parse the required ``run_id`` argument.

    Raises:
        InvalidToolCallError: If ``run_id`` is missing or not a UUID string
    """
    value = args.get("run_id")
    if value is None:
        raise InvalidToolCallError("run_id is required")
    if not isinstance(value, str):
        raise InvalidToolCallError("run_id must be a string")
    try:
        return uuid.UUID(value)
    except ValueError as e:
        raise InvalidToolCallError(f"invalid run_id: {e}") from e


def _optional(args: Mapping[str, Any], key: str, kind: type | tuple[type, ...]) -> Any:
    value = args.get(key)
    if value is None:
        return None
    if not isinstance(value, kind) or (kind is int and isinstance(value, bool)):
        raise InvalidToolCallError(f"{key} has an invalid type")
    return value


def format_events(events: list[RunEvent], start_index: int = 0) -> list[dict[str, Any]]:
    return [
        {"index": start_index + i, **event.model_dump(mode="json")} for i, event in enumerate(events)
    ]


class SubagentService:
    """Dispatcher and composition root for subagent tools.

    Holds one adapter per configured API backend, lazily built CLI adapters
    keyed by binary, and the run store shared by all of them.
    """

    def __init__(
        self,
        store: RunStore,
        adapters: dict[BackendKind, BackendAdapter],
        default_backend: BackendKind = CODEX,
        registry: AgentRegistry | None = None,
        file_config: SubagentsFileConfig | None = None,
        unavailable: dict[BackendKind, str] | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self.store = store
        self.adapters = adapters
        self.default_backend = default_backend
        self.registry = registry or AgentRegistry()
        self.unavailable = unavailable or {}
        self._environ = os.environ if environ is None else environ
        self._cli_adapters: dict[str, CliAdapter] = {}

        file_config = file_config or SubagentsFileConfig()
        self.default_execution_mode = ExecutionMode.API
        if file_config.execution_mode:
            try:
                self.default_execution_mode = ExecutionMode.parse(file_config.execution_mode)
            except ValueError as e:
                logger.warning(f"Ignoring execution_mode from config file: {e}")
        self.cli_binary = normalize_cli_binary(file_config.cli_binary)

    @classmethod
    def from_env(
        cls,
        store: RunStore | None = None,
        registry: AgentRegistry | None = None,
        file_config: SubagentsFileConfig | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> SubagentService:
        """Build the service from environment variables and the config file.

        Backends whose configuration cannot be resolved are recorded as
        unavailable instead of failing startup.
        """
        env = os.environ if environ is None else environ
        file_config = file_config or load_file_config()
        default_backend = backend_from_str(env.get(DEFAULT_BACKEND_ENV) or file_config.default_backend or CODEX)

        adapters: dict[BackendKind, BackendAdapter] = {}
        unavailable: dict[BackendKind, str] = {}
        for kind, adapter_cls in ((CODEX, CodexAdapter), (CLAUDE, ClaudeAdapter)):
            try:
                adapters[kind] = adapter_cls.from_env(environ=env)
            except ConfigurationError as e:
                logger.warning(f"Backend {kind} unavailable: {e}")
                unavailable[kind] = str(e)

        return cls(
            store=store or create_store(),
            adapters=adapters,
            default_backend=default_backend,
            registry=registry or AgentRegistry.discover(),
            file_config=file_config,
            unavailable=unavailable,
            environ=env,
        )

    def tools(self) -> list[ToolInfo]:
        return list(TOOL_CATALOG.values())

    def _default_backend(self) -> BackendKind:
        if raw := self._environ.get(DEFAULT_BACKEND_ENV):
            return backend_from_str(raw)
        return self.default_backend

    def _default_execution_mode(self) -> ExecutionMode:
        if raw := self._environ.get(EXECUTION_MODE_ENV):
            try:
                return ExecutionMode.parse(raw)
            except ValueError:
                logger.warning(f"Invalid {EXECUTION_MODE_ENV}={raw!r} (expected 'cli' or 'api')")
        return self.default_execution_mode

    def _default_cli_binary(self) -> str:
        return (
            self.cli_binary
            or client_hint_from_env(self._environ)
            or client_hint_from_exe_path()
            or DEFAULT_CLI_BINARY
        )

    def adapter_for(self, backend: BackendKind | None = None) -> BackendAdapter:
        """Return the API adapter for ``backend``.

        Raises:
            BackendUnavailableError: If the backend is misconfigured or unknown
        """
        key = backend or self._default_backend()
        if key in self.unavailable:
            raise BackendUnavailableError(key, self.unavailable[key])
        try:
            return self.adapters[key]
        except KeyError:
            raise BackendUnavailableError(key, "no adapter registered") from None

    def cli_adapter_for(self, cli_binary: str | None = None, backend_hint: BackendKind | None = None) -> CliAdapter:
        """Return the CLI adapter for the binary selected by override, env, hint or detection."""
        config = CliConfig.from_env(environ=self._environ)
        if normalize_cli_binary(self._environ.get(CLI_BINARY_ENV)) is None:
            match backend_hint:
                case "codex":
                    config.binary = "codex"
                case "claude":
                    config.binary = "claude"
                case "copilot":
                    logger.warning("Copilot CLI does not support subagent execution; using default binary")
                    config.binary = self._default_cli_binary()
                case _:
                    config.binary = self._default_cli_binary()
        if override := normalize_cli_binary(cli_binary):
            config.binary = override

        adapter = self._cli_adapters.get(config.binary)
        if adapter is None:
            adapter = CliAdapter(config)
            self._cli_adapters[config.binary] = adapter
        return adapter

    def backend_for_model(self, model: str | None) -> BackendKind:
        if model:
            lowered = model.lower()
            if any(marker in lowered for marker in CLAUDE_MODEL_MARKERS):
                return CLAUDE
            if any(marker in lowered for marker in CODEX_MODEL_MARKERS):
                return CODEX
        return self._default_backend()

    def route_for_agent(
        self,
        agent_id: str,
        execution_mode: ExecutionMode,
        cli_binary: str | None = None,
        backend_hint: BackendKind | None = None,
    ) -> BackendAdapter:
        """Pick the adapter for a registry agent: CLI when it declares tools, API otherwise."""
        agent = self.registry.get(agent_id)
        if agent is None:
            raise InvalidToolCallError(f"agent not found: {agent_id}")

        requires_cli = bool(agent.config.tools)
        if execution_mode is ExecutionMode.CLI or requires_cli:
            if execution_mode is ExecutionMode.API:
                logger.debug(f"Agent {agent_id} declares tools; using CLI despite execution_mode=api")
            hint = backend_hint or self.backend_for_model(agent.config.model)
            return self.cli_adapter_for(cli_binary, hint)
        return self.adapter_for(self.backend_for_model(agent.config.model))

    async def handle_call(self, name: str, args: Mapping[str, Any] | None = None) -> ToolResult:
        """Dispatch a tool call by name.

        Raises:
            UnknownToolError: If ``name`` is not a known tool
            InvalidToolCallError: If a required argument is missing or malformed
            BackendUnavailableError: If the resolved backend is not configured
        """
        args = args or {}
        canonical = canonical_tool_name(name)
        logger.debug(f"Handling tool call {name}")
        match canonical:
            case "list-subagents":
                return await self.handle_list_subagents()
            case "list-agents":
                return self.handle_list_agents()
            case "run-subagent":
                return await self.handle_run(args, async_mode=False)
            case "run-subagent-async":
                return await self.handle_run(args, async_mode=True)
            case "get-run-status" | "get-async-status":
                return self.handle_status(args)
            case "stop-run":
                return await self.handle_stop(args)
            case "get-run-history":
                return self.handle_history(args)
            case "get-run-events":
                return self.handle_get_events(args)
            case "download-transcript-secure":
                return self.handle_transcript()
            case _:
                raise UnknownToolError(name)

    async def handle_list_subagents(self) -> ToolResult:
        templates = []
        for adapter in self.adapters.values():
            templates.extend(await adapter.list_templates())
        templates.extend(await self.cli_adapter_for().list_templates())
        return ToolResult(
            text=f"listed {len(templates)} subagents",
            data={
                "templates": [template.model_dump(mode="json") for template in templates],
                "unavailable": [{"backend": kind, "reason": reason} for kind, reason in self.unavailable.items()],
            },
        )

    def handle_list_agents(self) -> ToolResult:
        agents = [agent.to_dict(self.registry.requires_cli(agent.name)) for agent in self.registry.list()]
        return ToolResult(text=f"found {len(agents)} agents", data={"agents": agents})

    async def handle_run(self, args: Mapping[str, Any], async_mode: bool) -> ToolResult:
        prompt = args.get("prompt")
        if not isinstance(prompt, str) or not prompt.strip():
            raise InvalidToolCallError("prompt is required")

        agent_id = _optional(args, "agent_id", str)
        template_id = _optional(args, "template_id", str)
        output_schema = _optional(args, "output_schema", dict)
        tracing = _optional(args, "tracing", bool) or False
        stream = _optional(args, "stream", bool)
        timeout_ms = _optional(args, "timeout_ms", int)
        cli_binary = _optional(args, "cli_binary", str)
        raw_backend = _optional(args, "backend", str)
        raw_mode = _optional(args, "execution_mode", str)

        try:
            execution_mode = ExecutionMode.parse(raw_mode) if raw_mode else self._default_execution_mode()
        except ValueError as e:
            raise InvalidToolCallError(str(e)) from e
        backend = backend_from_str(raw_backend) if raw_backend else self._default_backend()

        adapter: BackendAdapter
        if agent_id:
            adapter = self.route_for_agent(agent_id, execution_mode, cli_binary, backend)
        elif execution_mode is ExecutionMode.CLI:
            adapter = self.cli_adapter_for(cli_binary, backend)
        else:
            adapter = self.adapter_for(backend)

        try:
            request = RunRequest(
                backend=adapter.backend,
                prompt=prompt,
                template_id=template_id,
                output_schema=output_schema,
                async_mode=async_mode if stream is None else stream,
                tracing=tracing,
                timeout_ms=timeout_ms,
            )
        except ValidationError as e:
            raise InvalidToolCallError(f"invalid run request: {e}") from e

        run_id = await adapter.run(request, self.store)
        record = self.store.get_run(run_id)
        return ToolResult(
            text=f"run_id={run_id}",
            data={
                "run_id": str(run_id),
                "status": record.status.model_dump(mode="json") if record else None,
                "events": format_events(record.events) if record else [],
            },
        )

    def handle_status(self, args: Mapping[str, Any]) -> ToolResult:
        run_id = parse_run_id(args)
        record = self.store.get_run(run_id)
        if record is None:
            return ToolResult(
                text=f"run not found: {run_id}",
                data={"run_id": str(run_id), "status": None, "events": [], "error": f"run not found: {run_id}"},
                is_error=True,
            )
        return ToolResult(
            text=f"status: {record.status.state.value}",
            data={
                "run_id": str(run_id),
                "status": record.status.model_dump(mode="json"),
                "events": format_events(record.events),
            },
        )

    async def handle_stop(self, args: Mapping[str, Any]) -> ToolResult:
        run_id = parse_run_id(args)
        try:
            for adapter in self._cli_adapters.values():
                if adapter.is_tracking(run_id):
                    stopped = await adapter.stop(run_id, self.store)
                    break
            else:
                stopped = self.store.stop(run_id)
        except RunNotFoundError as e:
            return ToolResult(
                text=str(e), data={"run_id": str(run_id), "stopped": False, "error": str(e)}, is_error=True
            )
        return ToolResult(
            text="stopped" if stopped else "not stopped", data={"run_id": str(run_id), "stopped": stopped}
        )

    def handle_history(self, args: Mapping[str, Any]) -> ToolResult:
        limit = _optional(args, "limit", int)
        limit = DEFAULT_HISTORY_LIMIT if limit is None else max(1, min(MAX_HISTORY_LIMIT, limit))
        runs = [
            {**record.model_dump(mode="json", exclude={"events"}), "event_count": len(record.events)}
            for record in self.store.history(limit)
        ]
        return ToolResult(text=f"history: {len(runs)} runs", data={"runs": runs})

    def handle_get_events(self, args: Mapping[str, Any]) -> ToolResult:
        run_id = parse_run_id(args)
        since_index = _optional(args, "since_index", int)
        if since_index is not None and since_index < 0:
            raise InvalidToolCallError("since_index must be >= 0")

        record = self.store.get_run(run_id)
        if record is None:
            return ToolResult(
                text=f"run not found: {run_id}",
                data={"error": f"run not found: {run_id}", "run_id": str(run_id)},
                is_error=True,
            )

        total_count = len(record.events)
        start = 0 if since_index is None else since_index + 1
        events = format_events(record.events[start:], start)
        return ToolResult(
            text=f"events: {len(events)} of {total_count} total",
            data={
                "run_id": str(run_id),
                "events": events,
                "total_count": total_count,
                "has_more": not record.status.state.is_terminal,
            },
        )

    def handle_transcript(self) -> ToolResult:
        return ToolResult(text="secure transcripts are not yet implemented", data={"status": "unimplemented"})

    async def aclose(self) -> None:
        for adapter in [*self.adapters.values(), *self._cli_adapters.values()]:
            await adapter.aclose()
        self.store.close()
