"""OpenAI-compatible Chat Completions adapter."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from skrills_subagents.backends.base import HttpBackendAdapter
from skrills_subagents.models import CODEX, AdapterCapabilities, SubagentTemplate

if TYPE_CHECKING:
    from skrills_subagents.models import BackendKind, RunRequest


class CodexAdapter(HttpBackendAdapter):
    env_prefix = "CODEX"
    default_base = "https://api.openai.com/v1"
    default_model = "gpt-5-codex"
    endpoint = "chat/completions"

    @property
    def backend(self) -> BackendKind:
        return CODEX

    def capabilities(self) -> AdapterCapabilities:
        return AdapterCapabilities(supports_schema=True, supports_async=True, supports_tracing=True)

    async def list_templates(self) -> list[SubagentTemplate]:
        return [
            SubagentTemplate(
                id="default",
                name="Codex Subagent",
                description=f"Codex model {self.config.model}",
                backend=CODEX,
                capabilities=["tools", "structured_outputs", "tracing"],
            )
        ]

    def build_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.config.api_key}", "Content-Type": "application/json"}

    def build_body(self, request: RunRequest) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": self.config.model,
            "messages": [{"role": "user", "content": request.prompt}],
            "stream": request.async_mode,
        }
        if request.tracing:
            body["metadata"] = {"trace": True}
        if request.output_schema is not None:
            body["response_format"] = {
                "type": "json_schema",
                "json_schema": {"name": "subagent_output", "schema": request.output_schema},
                "strict": True,
            }
        return body

    def extract_text(self, payload: Any) -> str | None:
        if not isinstance(payload, dict):
            return None
        choices = payload.get("choices")
        if isinstance(choices, list) and choices and isinstance(choices[0], dict):
            message = choices[0].get("message") or {}
            content = message.get("content") if isinstance(message, dict) else None
            if isinstance(content, str):
                return content
        output_text = payload.get("output_text")
        return output_text if isinstance(output_text, str) else None

    def extract_stream_delta(self, event: dict[str, Any]) -> str | None:
        choices = event.get("choices")
        if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
            return None
        delta = choices[0].get("delta") or {}
        content = delta.get("content") if isinstance(delta, dict) else None
        return content if isinstance(content, str) else None
