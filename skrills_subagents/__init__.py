"""Subagent run orchestration: backend adapters, run stores and the MCP tool service."""

from __future__ import annotations

__version__ = "0.1.0"
