"""Backend adapters translating run requests into provider protocols."""

from __future__ import annotations

from skrills_subagents.backends.base import BackendAdapter, HttpBackendAdapter
from skrills_subagents.backends.claude import ClaudeAdapter
from skrills_subagents.backends.cli import CliAdapter, CliConfig
from skrills_subagents.backends.codex import CodexAdapter

__all__ = [
    "BackendAdapter",
    "ClaudeAdapter",
    "CliAdapter",
    "CliConfig",
    "CodexAdapter",
    "HttpBackendAdapter",
]
