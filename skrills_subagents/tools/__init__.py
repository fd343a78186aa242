"""MCP tools for the subagent server."""

from __future__ import annotations

from skrills_subagents.tools.catalog import TOOL_CATALOG, ToolInfo, canonical_tool_name
from skrills_subagents.tools.subagents import register_subagent_tools

__all__ = ["TOOL_CATALOG", "ToolInfo", "canonical_tool_name", "register_subagent_tools"]
