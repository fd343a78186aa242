"""Tests for skrills_subagents.backends.claude module."""

from __future__ import annotations

import json

import pytest
from conftest import make_request, wait_for_terminal
from pytest_httpx import HTTPXMock

from skrills_subagents.backends import ClaudeAdapter
from skrills_subagents.config import AdapterConfig
from skrills_subagents.exceptions import ConfigurationError
from skrills_subagents.models import EVENT_COMPLETION, EVENT_ERROR, EVENT_START, EVENT_STREAM, RunState
from skrills_subagents.store import MemRunStore

CLAUDE_URL = "https://claude.test/v1/messages"


@pytest.fixture
def adapter(claude_config: AdapterConfig) -> ClaudeAdapter:
    return ClaudeAdapter(claude_config)


@pytest.mark.unit
class TestClaudeAdapterRun:
    @pytest.mark.asyncio
    async def test_content_blocks_are_joined(
        self, httpx_mock: HTTPXMock, adapter: ClaudeAdapter, store: MemRunStore
    ) -> None:
        httpx_mock.add_response(
            url=CLAUDE_URL,
            method="POST",
            json={"content": [{"type": "text", "text": "Hello"}, {"type": "text", "text": " there"}]},
        )

        run_id = await adapter.run(make_request(backend="claude", prompt="hi"), store)
        await adapter.wait(run_id)

        record = store.get_run(run_id)
        assert record.status.state == RunState.SUCCEEDED
        assert [e.kind for e in record.events] == [EVENT_START, EVENT_STREAM, EVENT_STREAM, EVENT_COMPLETION]
        assert record.events[-1].data == {"text": "Hello there"}

    @pytest.mark.asyncio
    async def test_string_content(self, httpx_mock: HTTPXMock, adapter: ClaudeAdapter, store: MemRunStore) -> None:
        httpx_mock.add_response(url=CLAUDE_URL, json={"content": "plain"})

        run_id = await adapter.run(make_request(backend="claude"), store)
        await adapter.wait(run_id)

        assert store.get_run(run_id).events[-1].data == {"text": "plain"}

    @pytest.mark.asyncio
    async def test_request_shape(self, httpx_mock: HTTPXMock, adapter: ClaudeAdapter, store: MemRunStore) -> None:
        httpx_mock.add_response(url=CLAUDE_URL, json={"content": [{"type": "text", "text": "ok"}]})
        schema = {"type": "object"}

        run_id = await adapter.run(
            make_request(backend="claude", prompt="hi", output_schema=schema, tracing=True, async_mode=False), store
        )
        await adapter.wait(run_id)

        request = httpx_mock.get_request()
        assert request.headers["x-api-key"] == "claude-test-key"
        assert request.headers["anthropic-version"] == "2023-06-01"
        body = json.loads(request.content)
        assert body == {
            "model": "claude-sonnet-test",
            "messages": [{"role": "user", "content": "hi"}],
            "max_tokens": 1024,
            "stream": False,
            "metadata": {"trace": True},
            "response_format": {"type": "json_schema", "json_schema": {"name": "subagent_output", "schema": schema}},
        }

    @pytest.mark.asyncio
    async def test_optional_fields_omitted(
        self, httpx_mock: HTTPXMock, adapter: ClaudeAdapter, store: MemRunStore
    ) -> None:
        httpx_mock.add_response(url=CLAUDE_URL, json={"content": [{"type": "text", "text": "ok"}]})

        run_id = await adapter.run(make_request(backend="claude", async_mode=True), store)
        await adapter.wait(run_id)

        body = json.loads(httpx_mock.get_request().content)
        assert body["stream"] is True
        assert "metadata" not in body
        assert "response_format" not in body

    @pytest.mark.asyncio
    async def test_event_stream_deltas(self, httpx_mock: HTTPXMock, adapter: ClaudeAdapter, store: MemRunStore) -> None:
        events = [
            {"type": "message_start", "message": {"id": "msg_1"}},
            {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "Streamed"}},
            {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": " reply"}},
            {"type": "message_stop"},
        ]
        body = "".join(f"event: {e['type']}\ndata: {json.dumps(e)}\n\n" for e in events)
        httpx_mock.add_response(url=CLAUDE_URL, text=body, headers={"content-type": "text/event-stream"})

        run_id = await adapter.run(make_request(backend="claude", async_mode=True), store)
        await adapter.wait(run_id)

        assert store.get_run(run_id).events[-1].data == {"text": "Streamed reply"}


@pytest.mark.unit
class TestClaudeAdapterFailures:
    def test_from_env_without_key_names_variable(self) -> None:
        with pytest.raises(ConfigurationError, match="API_KEY"):
            ClaudeAdapter.from_env()

    @pytest.mark.asyncio
    async def test_missing_key_fails_run_without_request(self, httpx_mock: HTTPXMock, store: MemRunStore) -> None:
        adapter = ClaudeAdapter.unconfigured()
        request = make_request(backend="claude", prompt="hi")
        run_id = store.create_run(request)

        with pytest.raises(ConfigurationError, match="API_KEY"):
            await adapter.execute(run_id, request, store)

        status = store.get_status(run_id)
        assert status.state == RunState.FAILED
        assert "SKRILLS_CLAUDE_API_KEY" in status.message
        assert httpx_mock.get_requests() == []

    @pytest.mark.asyncio
    async def test_missing_key_via_run(self, httpx_mock: HTTPXMock, store: MemRunStore) -> None:
        adapter = ClaudeAdapter.unconfigured()

        run_id = await adapter.run(make_request(backend="claude", prompt="hi"), store)
        status = await wait_for_terminal(store, run_id)
        await adapter.wait(run_id)

        assert status.state == RunState.FAILED
        assert "API_KEY" in status.message
        assert [e.kind for e in store.get_run(run_id).events] == [EVENT_START, EVENT_ERROR]
        assert httpx_mock.get_requests() == []

    @pytest.mark.asyncio
    async def test_string_error_envelope(
        self, httpx_mock: HTTPXMock, adapter: ClaudeAdapter, store: MemRunStore
    ) -> None:
        httpx_mock.add_response(url=CLAUDE_URL, status_code=429, json={"error": "rate limited"})

        run_id = await adapter.run(make_request(backend="claude"), store)
        await adapter.wait(run_id)

        assert store.get_status(run_id).message == "rate limited"

    @pytest.mark.asyncio
    async def test_stop_before_response_is_sticky(
        self, httpx_mock: HTTPXMock, adapter: ClaudeAdapter, store: MemRunStore
    ) -> None:
        httpx_mock.add_response(url=CLAUDE_URL, json={"content": [{"type": "text", "text": "late"}]})

        run_id = await adapter.run(make_request(backend="claude"), store)
        assert await adapter.stop(run_id, store) is True
        await adapter.wait(run_id)

        record = store.get_run(run_id)
        assert record.status.state == RunState.CANCELED
        assert EVENT_COMPLETION not in [e.kind for e in record.events]


@pytest.mark.unit
class TestClaudeAdapterMetadata:
    @pytest.mark.asyncio
    async def test_list_templates(self, adapter: ClaudeAdapter) -> None:
        templates = await adapter.list_templates()

        assert len(templates) == 1
        assert templates[0].id == "default"
        assert templates[0].name == "Claude Code Subagent"
        assert templates[0].capabilities == ["tools", "structured_outputs"]

    def test_capabilities(self, adapter: ClaudeAdapter) -> None:
        caps = adapter.capabilities()
        assert caps.supports_schema and caps.supports_async
        assert not caps.supports_tracing

    def test_default_url(self) -> None:
        assert ClaudeAdapter.unconfigured().url == "https://api.anthropic.com/v1/messages"

    @pytest.mark.asyncio
    async def test_history_delegates_to_store(self, adapter: ClaudeAdapter, store: MemRunStore) -> None:
        first = store.create_run(make_request(backend="claude"))
        second = store.create_run(make_request(backend="claude"))
        store.stop(first)

        statuses = await adapter.history(10, store)

        assert [s.state for s in statuses] == [RunState.PENDING, RunState.CANCELED]
        assert (await adapter.get_status(second, store)).state == RunState.PENDING
