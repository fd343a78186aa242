"""Adapter executing runs through a local headless agent CLI.

The configured binary (``claude`` or ``codex``) is spawned as a subprocess.
Every stdout line becomes a stream event; the exit code decides the
terminal status.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from skrills_subagents.backends.base import BackendAdapter
from skrills_subagents.config import CLI_BINARY_ENV, default_cli_binary, normalize_cli_binary
from skrills_subagents.exceptions import CliError
from skrills_subagents.models import (
    CLAUDE,
    CODEX,
    EVENT_COMPLETION,
    EVENT_ERROR,
    EVENT_START,
    EVENT_STREAM,
    AdapterCapabilities,
    RunEvent,
    RunStatus,
    SubagentTemplate,
)

if TYPE_CHECKING:
    from collections.abc import Mapping

    from skrills_subagents.models import BackendKind, RunId, RunRequest
    from skrills_subagents.store import RunStore

logger = logging.getLogger(__name__)

DEFAULT_CLI_TIMEOUT_MS = 300_000
CLI_TIMEOUT_ENV = "SKRILLS_CLI_TIMEOUT_MS"
CLI_WORKING_DIR_ENV = "SKRILLS_CLI_WORKING_DIR"
STDOUT_CHUNK_SIZE = 64 * 1024


@dataclass
class CliConfig:
    """Settings for spawning the agent CLI."""

    binary: str = field(default_factory=default_cli_binary)
    working_dir: Path | None = None
    env_vars: dict[str, str] = field(default_factory=dict)
    timeout_ms: int = DEFAULT_CLI_TIMEOUT_MS
    non_interactive: bool = True

    @property
    def timeout(self) -> float:
        return self.timeout_ms / 1000

    @classmethod
    def from_env(cls, binary: str | None = None, environ: Mapping[str, str] | None = None) -> CliConfig:
        """Resolve CLI settings from ``SKRILLS_CLI_*`` variables.

        Args:
            binary: Explicit binary, taking precedence over ``SKRILLS_CLI_BINARY``
            environ: Mapping to read from (defaults to ``os.environ``)
        """
        env = os.environ if environ is None else environ
        resolved = normalize_cli_binary(binary) or normalize_cli_binary(env.get(CLI_BINARY_ENV))

        timeout_ms = DEFAULT_CLI_TIMEOUT_MS
        if raw := env.get(CLI_TIMEOUT_ENV):
            try:
                timeout_ms = int(raw)
            except ValueError:
                logger.warning(f"Invalid {CLI_TIMEOUT_ENV} value {raw!r}, using default {DEFAULT_CLI_TIMEOUT_MS}")
            else:
                if timeout_ms <= 0:
                    timeout_ms = DEFAULT_CLI_TIMEOUT_MS

        working_dir = env.get(CLI_WORKING_DIR_ENV)
        return cls(
            binary=resolved or default_cli_binary(env),
            working_dir=Path(working_dir) if working_dir else None,
            timeout_ms=timeout_ms,
        )

    def build_args(self, prompt: str) -> list[str]:
        """Command-line arguments passed after the binary."""
        if not self.non_interactive:
            return [prompt]
        args = ["--prompt", prompt]
        name = Path(self.binary).name
        if "codex" in name:
            args.append("--non-interactive")
        elif "claude" in name:
            args.append("--print")
        return args


class CliAdapter(BackendAdapter):
    """Adapter for agents that need local tool access."""

    dispatch_message = "spawning CLI process"

    def __init__(self, config: CliConfig | None = None) -> None:
        super().__init__()
        self.config = config or CliConfig.from_env()
        self._processes: dict[RunId, asyncio.subprocess.Process] = {}

    @property
    def backend(self) -> BackendKind:
        name = Path(self.config.binary).name
        if "claude" in name:
            return CLAUDE
        if "codex" in name:
            return CODEX
        return name or "cli"

    def capabilities(self) -> AdapterCapabilities:
        return AdapterCapabilities(supports_async=True)

    async def list_templates(self) -> list[SubagentTemplate]:
        return [
            SubagentTemplate(
                id="cli-default",
                name=f"{self.config.binary} CLI Agent",
                description=f"CLI-based agent using {self.config.binary} subprocess",
                backend=self.backend,
                capabilities=["tools", "subprocess"],
            )
        ]

    def is_tracking(self, run_id: RunId) -> bool:
        return run_id in self._processes

    async def execute(self, run_id: RunId, request: RunRequest, store: RunStore) -> None:
        working_dir = str(self.config.working_dir) if self.config.working_dir else None
        store.append_event(
            run_id, RunEvent(kind=EVENT_START, data={"binary": self.config.binary, "working_dir": working_dir})
        )

        args = self.config.build_args(request.prompt)
        logger.debug(f"Spawning {self.config.binary} for run {run_id} (cwd={working_dir})")
        try:
            process = await asyncio.create_subprocess_exec(
                self.config.binary,
                *args,
                cwd=working_dir,
                env={**os.environ, **self.config.env_vars},
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise CliError(f"failed to spawn CLI process '{self.config.binary}': {e}") from e

        self._processes[run_id] = process
        try:
            async with asyncio.timeout(self.config.timeout):
                output, stderr = await asyncio.gather(
                    self._read_stdout(run_id, process, store), self._read_stderr(process)
                )
                exit_code = await process.wait()
        except TimeoutError:
            raise CliError(f"CLI process timed out after {self.config.timeout_ms}ms") from None
        finally:
            tracked = self._processes.pop(run_id, None)
            if process.returncode is None:
                logger.debug(f"Killing unfinished CLI process {process.pid} for run {run_id}")
                with contextlib.suppress(ProcessLookupError):
                    process.kill()
                await process.wait()

        if tracked is None or store.is_terminal(run_id):
            logger.debug(f"Run {run_id} was stopped while the CLI process was running")
            return

        if exit_code == 0:
            text = output.strip()
            store.append_event(run_id, RunEvent(kind=EVENT_COMPLETION, data={"text": text}))
            store.update_status(run_id, RunStatus.succeeded())
            logger.info(f"CLI run {run_id} completed successfully")
            return

        stderr = stderr.strip()
        message = f"CLI exited with code {exit_code}: {stderr}" if stderr else f"CLI exited with code {exit_code}"
        logger.warning(f"CLI run {run_id} failed with exit code {exit_code}")
        store.append_event(run_id, RunEvent(kind=EVENT_ERROR, data={"exit_code": exit_code, "stderr": stderr}))
        store.update_status(run_id, RunStatus.failed(message))

    async def _read_stdout(self, run_id: RunId, process: asyncio.subprocess.Process, store: RunStore) -> str:
        assert process.stdout is not None
        lines: list[str] = []

        def emit(raw: bytes) -> None:
            line = raw.decode("utf-8", errors="replace").rstrip("\r")
            lines.append(line)
            store.append_event(run_id, RunEvent(kind=EVENT_STREAM, data={"line": line}))

        # Fixed-size reads; lines may be longer than the stream reader limit.
        pending = bytearray()
        while chunk := await process.stdout.read(STDOUT_CHUNK_SIZE):
            pending += chunk
            *complete, rest = pending.split(b"\n")
            for raw in complete:
                emit(bytes(raw))
            pending = bytearray(rest)
        if pending:
            emit(bytes(pending))
        return "\n".join(lines)

    async def _read_stderr(self, process: asyncio.subprocess.Process) -> str:
        assert process.stderr is not None
        return (await process.stderr.read()).decode("utf-8", errors="replace")

    async def stop(self, run_id: RunId, store: RunStore) -> bool:
        """Kill the tracked subprocess, then mark the run canceled."""
        process = self._processes.pop(run_id, None)
        if process is not None and process.returncode is None:
            logger.info(f"Killing CLI process {process.pid} for run {run_id}")
            try:
                process.kill()
            except ProcessLookupError:
                logger.debug(f"CLI process for run {run_id} already exited")
        return store.stop(run_id)

    async def aclose(self) -> None:
        for process in list(self._processes.values()):
            if process.returncode is None:
                process.kill()
        await super().aclose()
