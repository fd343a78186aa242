"""Configuration for subagent backends.

This module handles:
- Per-backend settings resolved from ``SKRILLS_{PREFIX}_*`` environment variables
- File-based configuration from ``~/.claude/subagents.toml`` or ``~/.codex/subagents.toml``
- Backend kind, execution mode and CLI binary parsing
"""

from __future__ import annotations

import logging
import os
import sys
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from urllib.parse import urlsplit

from skrills_subagents.exceptions import ConfigurationError
from skrills_subagents.models import CLAUDE, CODEX, BackendKind

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 120_000
DEFAULT_CLI_BINARY = "claude"

DEFAULT_BACKEND_ENV = "SKRILLS_SUBAGENTS_DEFAULT_BACKEND"
EXECUTION_MODE_ENV = "SKRILLS_SUBAGENTS_EXECUTION_MODE"
CLI_BINARY_ENV = "SKRILLS_CLI_BINARY"

CLAUDE_CLIENT_VARS = ("CLAUDE_CODE_SESSION", "CLAUDE_CLI", "__CLAUDE_MCP_SERVER", "CLAUDE_CODE_ENTRYPOINT")
CODEX_CLIENT_VARS = ("CODEX_CLI", "CODEX_SESSION_ID", "CODEX_HOME")


@dataclass(frozen=True)
class AdapterConfig:
    """Resolved settings for one HTTP backend."""

    api_key: str
    base_url: str
    model: str
    timeout_ms: int = DEFAULT_TIMEOUT_MS

    @property
    def timeout(self) -> float:
        """Timeout in seconds, as expected by httpx."""
        return self.timeout_ms / 1000

    @classmethod
    def from_env(
        cls,
        prefix: str,
        default_model: str,
        default_base: str,
        default_timeout_ms: int = DEFAULT_TIMEOUT_MS,
        environ: Mapping[str, str] | None = None,
    ) -> AdapterConfig:
        """Resolve settings from ``SKRILLS_{prefix}_*`` variables.

        Args:
            prefix: Backend prefix, e.g. "CLAUDE" or "CODEX"
            default_model: Model used when ``SKRILLS_{prefix}_MODEL`` is unset
            default_base: Base URL used when ``SKRILLS_{prefix}_BASE_URL`` is unset
            default_timeout_ms: Timeout used when ``SKRILLS_{prefix}_TIMEOUT_MS`` is unset or not numeric
            environ: Mapping to read from (defaults to ``os.environ``)

        Returns:
            Resolved AdapterConfig

        Raises:
            ConfigurationError: If the API key is missing or the base URL is invalid
        """
        env = os.environ if environ is None else environ

        key_var = f"SKRILLS_{prefix}_API_KEY"
        api_key = env.get(key_var, "").strip()
        if not api_key:
            raise ConfigurationError(f"{key_var} must be set for subagents")

        base_var = f"SKRILLS_{prefix}_BASE_URL"
        raw_base = env.get(base_var) or default_base
        base_url = normalize_base_url(raw_base)
        if base_url is None:
            raise ConfigurationError(f"invalid {base_var} url: {raw_base}")

        model = env.get(f"SKRILLS_{prefix}_MODEL") or default_model

        timeout_ms = default_timeout_ms
        raw_timeout = env.get(f"SKRILLS_{prefix}_TIMEOUT_MS")
        if raw_timeout is not None:
            try:
                timeout_ms = int(raw_timeout)
            except ValueError:
                logger.debug(f"Ignoring non-numeric SKRILLS_{prefix}_TIMEOUT_MS={raw_timeout!r}")
            else:
                if timeout_ms <= 0:
                    timeout_ms = default_timeout_ms

        return cls(api_key=api_key, base_url=base_url, model=model, timeout_ms=timeout_ms)

    @classmethod
    def unconfigured(cls, model: str, default_base: str, default_timeout_ms: int = DEFAULT_TIMEOUT_MS) -> AdapterConfig:
        """Config with an empty key; runs using it fail without a network call."""
        return cls(
            api_key="",
            base_url=normalize_base_url(default_base) or default_base,
            model=model,
            timeout_ms=default_timeout_ms,
        )


def normalize_base_url(raw: str) -> str | None:
    """Return ``raw`` with a trailing slash, or None if it is not an http(s) URL."""
    parts = urlsplit(raw.strip())
    if parts.scheme not in ("http", "https") or not parts.netloc:
        return None
    url = parts.geturl()
    return url if url.endswith("/") else f"{url}/"


class ExecutionMode(str, Enum):
    """How a run is executed: network API call or local headless CLI."""

    API = "api"
    CLI = "cli"

    @classmethod
    def parse(cls, raw: str) -> ExecutionMode:
        """Parse an execution mode string.

        Raises:
            ValueError: If ``raw`` is not one of api, cli or headless
        """
        value = raw.strip().lower()
        if value in ("cli", "headless"):
            return cls.CLI
        if value == "api":
            return cls.API
        raise ValueError(f"invalid execution mode '{raw}': expected 'cli', 'headless', or 'api'")


def backend_from_str(raw: str) -> BackendKind:
    """Parse a backend kind, mapping provider aliases to the canonical names."""
    value = raw.strip().lower()
    if value in ("codex", "gpt", "openai"):
        return CODEX
    if value in ("claude", "anthropic"):
        return CLAUDE
    return value


def normalize_cli_binary(value: str | None) -> str | None:
    """Treat blank values and "auto" as unset."""
    if value is None or not value.strip() or value.strip().lower() == "auto":
        return None
    return value.strip()


def client_hint_from_env(environ: Mapping[str, str] | None = None) -> str | None:
    """Detect which agent CLI launched this process from its environment."""
    env = os.environ if environ is None else environ

    client = env.get("SKRILLS_CLIENT", "").strip().lower()
    if client in ("codex", "claude"):
        return client

    if any(var in env for var in CLAUDE_CLIENT_VARS):
        return "claude"
    if any(var in env for var in CODEX_CLIENT_VARS):
        return "codex"
    return None


def client_hint_from_exe_path(executable: str | None = None) -> str | None:
    """Detect the client from an install path such as ``~/.codex/bin/...``."""
    parts = Path(executable or sys.argv[0] or "").parts
    if ".codex" in parts:
        return "codex"
    if ".claude" in parts:
        return "claude"
    return None


def default_cli_binary(environ: Mapping[str, str] | None = None) -> str:
    return client_hint_from_env(environ) or client_hint_from_exe_path() or DEFAULT_CLI_BINARY


@dataclass
class SubagentsFileConfig:
    """Settings read from ``subagents.toml``."""

    default_backend: str | None = None
    execution_mode: str | None = None
    cli_binary: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> SubagentsFileConfig:
        return cls(
            default_backend=data.get("default_backend"),
            execution_mode=data.get("execution_mode"),
            cli_binary=data.get("cli_binary"),
        )


def config_paths(home: Path | None = None, environ: Mapping[str, str] | None = None) -> list[Path]:
    """Return candidate config file paths in priority order."""
    home = home or Path.home()
    claude = home / ".claude" / "subagents.toml"
    codex = home / ".codex" / "subagents.toml"
    if (client_hint_from_env(environ) or client_hint_from_exe_path()) == "codex":
        return [codex, claude]
    return [claude, codex]


def load_file_config(paths: list[Path] | None = None) -> SubagentsFileConfig:
    """Load the first readable config file; unreadable or invalid files are skipped."""
    for path in paths if paths is not None else config_paths():
        if not path.exists():
            continue
        try:
            data = tomllib.loads(path.read_text(encoding="utf-8"))
        except (OSError, tomllib.TOMLDecodeError) as e:
            logger.warning(f"Failed to load subagents config {path}: {e}")
            continue
        logger.debug(f"Loaded subagents config from {path}")
        return SubagentsFileConfig.from_dict(data)
    return SubagentsFileConfig()
