"""Tests for skrills_subagents.config module."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from skrills_subagents.config import (
    AdapterConfig,
    ExecutionMode,
    SubagentsFileConfig,
    backend_from_str,
    client_hint_from_env,
    client_hint_from_exe_path,
    config_paths,
    default_cli_binary,
    load_file_config,
    normalize_base_url,
    normalize_cli_binary,
)
from skrills_subagents.exceptions import ConfigurationError

if TYPE_CHECKING:
    from pathlib import Path


@pytest.mark.unit
class TestAdapterConfigFromEnv:
    def test_resolves_all_values(self) -> None:
        env = {
            "SKRILLS_CLAUDE_API_KEY": "secret",
            "SKRILLS_CLAUDE_BASE_URL": "https://proxy.example.com/v1",
            "SKRILLS_CLAUDE_MODEL": "claude-opus",
            "SKRILLS_CLAUDE_TIMEOUT_MS": "5000",
        }

        config = AdapterConfig.from_env("CLAUDE", "claude-code", "https://api.anthropic.com/v1/", environ=env)

        assert config.api_key == "secret"
        assert config.base_url == "https://proxy.example.com/v1/"
        assert config.model == "claude-opus"
        assert config.timeout_ms == 5000
        assert config.timeout == 5.0

    def test_defaults_when_optional_values_missing(self) -> None:
        config = AdapterConfig.from_env(
            "CODEX", "gpt-5-codex", "https://api.openai.com/v1", environ={"SKRILLS_CODEX_API_KEY": "k"}
        )

        assert config.base_url == "https://api.openai.com/v1/"
        assert config.model == "gpt-5-codex"
        assert config.timeout_ms == 120_000

    @pytest.mark.parametrize("key", [None, "", "   "])
    def test_missing_key_raises(self, key: str | None) -> None:
        env = {} if key is None else {"SKRILLS_CLAUDE_API_KEY": key}
        with pytest.raises(ConfigurationError, match="SKRILLS_CLAUDE_API_KEY"):
            AdapterConfig.from_env("CLAUDE", "claude-code", "https://api.anthropic.com/v1/", environ=env)

    def test_invalid_base_url_raises(self) -> None:
        env = {"SKRILLS_CODEX_API_KEY": "k", "SKRILLS_CODEX_BASE_URL": "not a url"}
        with pytest.raises(ConfigurationError, match="SKRILLS_CODEX_BASE_URL"):
            AdapterConfig.from_env("CODEX", "gpt-5-codex", "https://api.openai.com/v1", environ=env)

    @pytest.mark.parametrize("raw", ["soon", "-5", "0"])
    def test_bad_timeout_falls_back_to_default(self, raw: str) -> None:
        env = {"SKRILLS_CODEX_API_KEY": "k", "SKRILLS_CODEX_TIMEOUT_MS": raw}
        config = AdapterConfig.from_env("CODEX", "m", "https://api.openai.com/v1", 9000, environ=env)
        assert config.timeout_ms == 9000

    def test_reads_process_environment_by_default(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SKRILLS_CODEX_API_KEY", "from-env")
        config = AdapterConfig.from_env("CODEX", "m", "https://api.openai.com/v1")
        assert config.api_key == "from-env"

    def test_unconfigured_has_empty_key(self) -> None:
        config = AdapterConfig.unconfigured("claude-code", "https://api.anthropic.com/v1/")
        assert config.api_key == ""
        assert config.base_url == "https://api.anthropic.com/v1/"


@pytest.mark.unit
class TestParsers:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("https://api.anthropic.com/v1/", "https://api.anthropic.com/v1/"),
            ("http://localhost:8080", "http://localhost:8080/"),
            ("ftp://example.com", None),
            ("example.com/v1", None),
        ],
    )
    def test_normalize_base_url(self, raw: str, expected: str | None) -> None:
        assert normalize_base_url(raw) == expected

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [("CLI", ExecutionMode.CLI), ("headless", ExecutionMode.CLI), (" api ", ExecutionMode.API)],
    )
    def test_execution_mode_parse(self, raw: str, expected: ExecutionMode) -> None:
        assert ExecutionMode.parse(raw) is expected

    def test_execution_mode_parse_rejects_unknown(self) -> None:
        with pytest.raises(ValueError, match="invalid execution mode"):
            ExecutionMode.parse("batch")

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [("Codex", "codex"), ("gpt", "codex"), ("anthropic", "claude"), ("CLAUDE", "claude"), (" Gemini ", "gemini")],
    )
    def test_backend_from_str(self, raw: str, expected: str) -> None:
        assert backend_from_str(raw) == expected

    @pytest.mark.parametrize(("raw", "expected"), [(None, None), ("", None), ("auto", None), (" codex ", "codex")])
    def test_normalize_cli_binary(self, raw: str | None, expected: str | None) -> None:
        assert normalize_cli_binary(raw) == expected


@pytest.mark.unit
class TestClientDetection:
    def test_explicit_client_wins(self) -> None:
        assert client_hint_from_env({"SKRILLS_CLIENT": "Codex", "CLAUDE_CLI": "1"}) == "codex"

    def test_claude_session_env(self) -> None:
        assert client_hint_from_env({"CLAUDE_CODE_ENTRYPOINT": "cli"}) == "claude"

    def test_codex_session_env(self) -> None:
        assert client_hint_from_env({"CODEX_SESSION_ID": "abc"}) == "codex"

    def test_no_hint(self) -> None:
        assert client_hint_from_env({}) is None

    def test_exe_path_hint(self) -> None:
        assert client_hint_from_exe_path("/home/u/.codex/bin/skrills") == "codex"
        assert client_hint_from_exe_path("/home/u/.claude/bin/skrills") == "claude"
        assert client_hint_from_exe_path("/usr/local/bin/skrills") is None

    def test_default_cli_binary_uses_env_hint(self) -> None:
        assert default_cli_binary({"SKRILLS_CLIENT": "codex"}) == "codex"


@pytest.mark.unit
class TestFileConfig:
    def test_loads_first_existing_file(self, tmp_path: Path) -> None:
        missing = tmp_path / "missing.toml"
        present = tmp_path / "subagents.toml"
        present.write_text('default_backend = "claude"\nexecution_mode = "cli"\ncli_binary = "codex"\n')

        config = load_file_config([missing, present])

        assert config == SubagentsFileConfig(default_backend="claude", execution_mode="cli", cli_binary="codex")

    def test_invalid_file_is_skipped(self, tmp_path: Path) -> None:
        broken = tmp_path / "broken.toml"
        broken.write_text("default_backend = [unterminated")
        fallback = tmp_path / "fallback.toml"
        fallback.write_text('default_backend = "codex"\n')

        assert load_file_config([broken, fallback]).default_backend == "codex"

    def test_no_files_yields_empty_config(self, tmp_path: Path) -> None:
        assert load_file_config([tmp_path / "nope.toml"]) == SubagentsFileConfig()

    def test_config_paths_order_follows_client(self, tmp_path: Path) -> None:
        claude_first = config_paths(tmp_path, {"SKRILLS_CLIENT": "claude"})
        codex_first = config_paths(tmp_path, {"SKRILLS_CLIENT": "codex"})

        assert claude_first[0] == tmp_path / ".claude" / "subagents.toml"
        assert codex_first[0] == tmp_path / ".codex" / "subagents.toml"
