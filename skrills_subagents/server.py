#!/usr/bin/env python3
"""Skrills Subagents MCP Server

Dispatches prompts to Claude, Codex or a local agent CLI as background runs
and exposes polling tools for their status and events.
"""

from __future__ import annotations

import logging
import os

from fastmcp import FastMCP

from skrills_subagents.logging_config import setup_logging
from skrills_subagents.service import SubagentService
from skrills_subagents.tools import register_subagent_tools

logger = logging.getLogger(__name__)

SERVER_NAME = "skrills-subagents"


def create_server(service: SubagentService | None = None) -> FastMCP:
    """Build the FastMCP server around ``service`` (built from the environment if omitted)."""
    service = service or SubagentService.from_env()
    mcp = FastMCP(SERVER_NAME)
    register_subagent_tools(mcp, service)

    available = sorted(service.adapters)
    logger.info(
        f"{SERVER_NAME} ready: backends={available}, unavailable={sorted(service.unavailable)}, "
        f"default_backend={service.default_backend}, agents={len(service.registry)}"
    )
    return mcp


def main() -> None:
    """Main entry point for console script."""
    setup_logging(app_name=SERVER_NAME, log_file=os.getenv("SKRILLS_LOG_FILE"))
    create_server().run()


if __name__ == "__main__":
    main()
