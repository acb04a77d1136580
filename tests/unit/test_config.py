"""Unit tests for environment configuration."""

from __future__ import annotations

from pathlib import Path

import pytest

from agenticide.config import ANTHROPIC_KEY_VARS, COPILOT_KEY_VARS, AgenticideConfig


class TestFromEnv:
    def test_defaults(self) -> None:
        config = AgenticideConfig.from_env({})

        assert config.home == Path.home() / ".agenticide"
        assert config.request_timeout == 30.0
        assert config.cache_ttl == 3600
        assert config.cache_enabled is True
        assert config.history_window == 10
        assert config.log_level == "WARNING"
        assert config.ollama_model == "codellama"
        assert config.ollama_url == "http://localhost:11434"
        assert config.lmstudio_url == "http://localhost:1234"

    def test_overrides(self, tmp_path) -> None:
        config = AgenticideConfig.from_env(
            {
                "AGENTICIDE_HOME": str(tmp_path),
                "AGENTICIDE_REQUEST_TIMEOUT": "2.5",
                "AGENTICIDE_CACHE_TTL": "60",
                "AGENTICIDE_NO_CACHE": "true",
                "AGENTICIDE_HISTORY_WINDOW": "4",
                "AGENTICIDE_LOG_LEVEL": "debug",
                "AGENTICIDE_OLLAMA_MODEL": "deepseek-coder",
                "AGENTICIDE_OLLAMA_URL": "http://gpu-box:11434",
                "AGENTICIDE_LMSTUDIO_URL": "http://127.0.0.1:4321",
            }
        )

        assert config.sessions_dir == tmp_path / "sessions"
        assert config.request_timeout == 2.5
        assert config.cache_ttl == 60
        assert config.cache_enabled is False
        assert config.history_window == 4
        assert config.log_level == "DEBUG"
        assert config.ollama_model == "deepseek-coder"
        assert config.ollama_url == "http://gpu-box:11434"
        assert config.lmstudio_url == "http://127.0.0.1:4321"

    @pytest.mark.parametrize("value", ["soon", "0", "-3"])
    def test_invalid_timeout(self, value) -> None:
        with pytest.raises(ValueError, match="AGENTICIDE_REQUEST_TIMEOUT"):
            AgenticideConfig.from_env({"AGENTICIDE_REQUEST_TIMEOUT": value})


class TestApiKey:
    def test_first_set_variable_wins(self) -> None:
        config = AgenticideConfig(env={"CLAUDE_API_KEY": "second", "ANTHROPIC_API_KEY": ""})
        assert config.api_key(ANTHROPIC_KEY_VARS) == "second"

    def test_github_token_for_copilot(self) -> None:
        config = AgenticideConfig(env={"GITHUB_TOKEN": "ghp"})
        assert config.api_key(COPILOT_KEY_VARS) == "ghp"

    def test_missing(self) -> None:
        assert AgenticideConfig(env={}).api_key(ANTHROPIC_KEY_VARS) is None
