"""Tool catalog for the subagent server.

Single source of truth for tool names, descriptions and input schemas.
Names are kebab-case; snake_case aliases are accepted when dispatching.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class ToolInfo:
    """Tool metadata exposed to MCP clients."""

    name: str
    title: str
    description: str
    input_schema: dict[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}})


RUN_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["prompt"],
    "properties": {
        "prompt": {"type": "string", "description": "User instruction"},
        "agent_id": {
            "type": "string",
            "description": (
                "Agent name to run (from list-agents). Routes to CLI execution when the agent declares tools."
            ),
        },
        "backend": {"type": "string", "description": "codex|claude|other"},
        "execution_mode": {
            "type": "string",
            "description": "api|cli (default: api). cli uses a local headless CLI; api uses network APIs.",
        },
        "cli_binary": {"type": "string", "description": "CLI binary to run in cli mode (overrides SKRILLS_CLI_BINARY)"},
        "template_id": {"type": "string"},
        "output_schema": {"type": "object"},
        "tracing": {"type": "boolean"},
        "stream": {"type": "boolean"},
        "timeout_ms": {"type": "integer", "minimum": 1, "maximum": 300000},
    },
}

RUN_ID_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["run_id"],
    "properties": {"run_id": {"type": "string"}},
}

HISTORY_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {"limit": {"type": "integer", "minimum": 1, "maximum": 50}},
}

EVENTS_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["run_id"],
    "properties": {
        "run_id": {"type": "string", "description": "The run ID to get events for"},
        "since_index": {"type": "integer", "minimum": 0, "description": "Return events after this index (0-based)"},
    },
}

TOOL_CATALOG: dict[str, ToolInfo] = {
    info.name: info
    for info in [
        ToolInfo("list-subagents", "List subagents", "List available subagent templates and capabilities"),
        ToolInfo(
            "list-agents", "List discovered agents", "List all discovered agent definitions from standard locations"
        ),
        ToolInfo(
            "run-subagent", "Run a subagent", "Run a subagent with optional backend/template selection", RUN_SCHEMA
        ),
        ToolInfo(
            "run-subagent-async",
            "Run a subagent in the background",
            "Start background run with streaming requested",
            RUN_SCHEMA,
        ),
        ToolInfo("get-run-status", "Get subagent run status", "Fetch status for a run", RUN_ID_SCHEMA),
        ToolInfo("get-async-status", "Get async run status", "Fetch status for async runs", RUN_ID_SCHEMA),
        ToolInfo("stop-run", "Stop a running subagent", "Attempt to cancel a running subagent", RUN_ID_SCHEMA),
        ToolInfo("get-run-history", "Recent runs", "Return recent subagent runs", HISTORY_SCHEMA),
        ToolInfo(
            "get-run-events",
            "Get run events",
            "Poll for events from a run. Use since_index for incremental fetching.",
            EVENTS_SCHEMA,
        ),
        ToolInfo("download-transcript-secure", "Download secure transcript", "Fetch encrypted reasoning transcript"),
    ]
}


def canonical_tool_name(name: str) -> str:
    """Map snake_case aliases to the kebab-case tool name; unknown names are returned unchanged."""
    kebab = name.strip().replace("_", "-")
    return kebab if kebab in TOOL_CATALOG else name
