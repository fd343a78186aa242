"""Anthropic Messages API adapter."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from skrills_subagents.backends.base import HttpBackendAdapter
from skrills_subagents.models import CLAUDE, AdapterCapabilities, SubagentTemplate

if TYPE_CHECKING:
    from skrills_subagents.models import BackendKind, RunRequest

ANTHROPIC_VERSION = "2023-06-01"
MAX_TOKENS = 1024


class ClaudeAdapter(HttpBackendAdapter):
    env_prefix = "CLAUDE"
    default_base = "https://api.anthropic.com/v1/"
    default_model = "claude-code"
    endpoint = "messages"

    @property
    def backend(self) -> BackendKind:
        return CLAUDE

    def capabilities(self) -> AdapterCapabilities:
        return AdapterCapabilities(supports_schema=True, supports_async=True)

    async def list_templates(self) -> list[SubagentTemplate]:
        return [
            SubagentTemplate(
                id="default",
                name="Claude Code Subagent",
                description=f"Claude model {self.config.model}",
                backend=CLAUDE,
                capabilities=["tools", "structured_outputs"],
            )
        ]

    def build_headers(self) -> dict[str, str]:
        return {
            "x-api-key": self.config.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "content-type": "application/json",
        }

    def build_body(self, request: RunRequest) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": self.config.model,
            "messages": [{"role": "user", "content": request.prompt}],
            "max_tokens": MAX_TOKENS,
            "stream": request.async_mode,
        }
        if request.tracing:
            body["metadata"] = {"trace": True}
        if request.output_schema is not None:
            body["response_format"] = {
                "type": "json_schema",
                "json_schema": {"name": "subagent_output", "schema": request.output_schema},
            }
        return body

    def extract_text(self, payload: Any) -> str | None:
        if not isinstance(payload, dict):
            return None
        content = payload.get("content")
        if isinstance(content, str):
            return content
        if isinstance(content, list):
            text = "".join(
                block["text"] for block in content if isinstance(block, dict) and isinstance(block.get("text"), str)
            )
            return text or None
        return None

    def extract_stream_delta(self, event: dict[str, Any]) -> str | None:
        if event.get("type") != "content_block_delta":
            return None
        delta = event.get("delta") or {}
        text = delta.get("text")
        return text if isinstance(text, str) else None
