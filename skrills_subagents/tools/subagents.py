"""Subagent tools for the MCP server."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from skrills_subagents.tools.catalog import TOOL_CATALOG

if TYPE_CHECKING:
    from fastmcp import FastMCP

    from skrills_subagents.service import SubagentService

logger = logging.getLogger(__name__)


def _args(**kwargs: Any) -> dict[str, Any]:
    return {key: value for key, value in kwargs.items() if value is not None}


def register_subagent_tools(mcp: FastMCP, service: SubagentService) -> None:
    """Register subagent tools with the FastMCP server."""

    async def call(name: str, args: dict[str, Any] | None = None) -> dict:
        result = await service.handle_call(name, args)
        if result.is_error:
            logger.warning(f"{name} failed: {result.text}")
        return result.data

    @mcp.tool(name="list-subagents", description=TOOL_CATALOG["list-subagents"].description)
    async def list_subagents() -> dict:
        return await call("list-subagents")

    @mcp.tool(name="list-agents", description=TOOL_CATALOG["list-agents"].description)
    async def list_agents() -> dict:
        return await call("list-agents")

    @mcp.tool(name="run-subagent", description=TOOL_CATALOG["run-subagent"].description)
    async def run_subagent(
        prompt: str,
        agent_id: str | None = None,
        backend: str | None = None,
        execution_mode: str | None = None,
        cli_binary: str | None = None,
        template_id: str | None = None,
        output_schema: dict | None = None,
        tracing: bool | None = None,
        stream: bool | None = None,
        timeout_ms: int | None = None,
    ) -> dict:
        """Start a run and return its id with the status observed right after dispatch."""
        return await call(
            "run-subagent",
            _args(
                prompt=prompt,
                agent_id=agent_id,
                backend=backend,
                execution_mode=execution_mode,
                cli_binary=cli_binary,
                template_id=template_id,
                output_schema=output_schema,
                tracing=tracing,
                stream=stream,
                timeout_ms=timeout_ms,
            ),
        )

    @mcp.tool(name="run-subagent-async", description=TOOL_CATALOG["run-subagent-async"].description)
    async def run_subagent_async(
        prompt: str,
        agent_id: str | None = None,
        backend: str | None = None,
        execution_mode: str | None = None,
        cli_binary: str | None = None,
        template_id: str | None = None,
        output_schema: dict | None = None,
        tracing: bool | None = None,
        stream: bool | None = None,
        timeout_ms: int | None = None,
    ) -> dict:
        return await call(
            "run-subagent-async",
            _args(
                prompt=prompt,
                agent_id=agent_id,
                backend=backend,
                execution_mode=execution_mode,
                cli_binary=cli_binary,
                template_id=template_id,
                output_schema=output_schema,
                tracing=tracing,
                stream=stream,
                timeout_ms=timeout_ms,
            ),
        )

    @mcp.tool(name="get-run-status", description=TOOL_CATALOG["get-run-status"].description)
    async def get_run_status(run_id: str) -> dict:
        return await call("get-run-status", {"run_id": run_id})

    @mcp.tool(name="get-async-status", description=TOOL_CATALOG["get-async-status"].description)
    async def get_async_status(run_id: str) -> dict:
        return await call("get-async-status", {"run_id": run_id})

    @mcp.tool(name="stop-run", description=TOOL_CATALOG["stop-run"].description)
    async def stop_run(run_id: str) -> dict:
        logger.debug(f"Stopping run: run_id={run_id}")
        return await call("stop-run", {"run_id": run_id})

    @mcp.tool(name="get-run-history", description=TOOL_CATALOG["get-run-history"].description)
    async def get_run_history(limit: int | None = None) -> dict:
        return await call("get-run-history", _args(limit=limit))

    @mcp.tool(name="get-run-events", description=TOOL_CATALOG["get-run-events"].description)
    async def get_run_events(run_id: str, since_index: int | None = None) -> dict:
        """Return events recorded after ``since_index`` and whether more may follow."""
        return await call("get-run-events", _args(run_id=run_id, since_index=since_index))

    @mcp.tool(name="download-transcript-secure", description=TOOL_CATALOG["download-transcript-secure"].description)
    async def download_transcript_secure() -> dict:
        return await call("download-transcript-secure")
