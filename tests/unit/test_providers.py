"""Unit tests for the provider registry and fallback chains.

Binary discovery and API keys are injected, so no real agent, network or
local model is needed.
"""

from __future__ import annotations

import stat
import sys
from pathlib import Path
from unittest.mock import AsyncMock

import httpx
import pytest

from agenticide.config import AgenticideConfig
from agenticide.errors import ProviderNotInitializedError, ProviderUnavailableError
from agenticide.models import TransportKind
from agenticide.providers import (
    BackendFactory,
    FallbackChain,
    Provider,
    ProviderRegistry,
    default_chains,
    find_command,
    pick_served_model,
)
from agenticide.transport import HttpsTransport, LocalExecTransport, MockTransport


def finder(**found: str):
    """find() double: binary name -> path for the binaries that "exist"."""
    return lambda name: found.get(name)


def make_chains(env: dict[str, str], handler=None, **found: str) -> dict[str, FallbackChain]:
    config = AgenticideConfig(env=env)
    handler = handler or (lambda r: httpx.Response(200))
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return default_chains(config, BackendFactory(config, find=finder(**found), http_client=client))


# =============================================================================
# Registry
# =============================================================================


class TestProviderRegistry:
    def make(self, name: str) -> Provider:
        return Provider(
            id=name, transport_kind=TransportKind.API, model="gpt-4", transport=MockTransport()
        )

    def test_require_unknown_names_the_init_command(self) -> None:
        registry = ProviderRegistry()

        with pytest.raises(ProviderNotInitializedError) as exc_info:
            registry.require("claude")

        assert str(exc_info.value) == (
            "Agent claude not initialized. Run 'agenticide agent init claude'"
        )

    def test_set_active_requires_registration(self) -> None:
        registry = ProviderRegistry()
        with pytest.raises(ProviderNotInitializedError):
            registry.set_active("openai")

        registry.register(self.make("openai"))
        registry.set_active("openai")
        assert registry.active == "openai"

    def test_remove_active_resets_selection(self) -> None:
        registry = ProviderRegistry()
        registry.register(self.make("openai"))
        registry.set_active("openai")

        registry.remove("openai")

        assert registry.active is None
        assert "openai" not in registry

    def test_register_returns_replaced(self) -> None:
        registry = ProviderRegistry()
        first = self.make("openai")

        assert registry.register(first) is None
        assert registry.register(self.make("openai")) is first
        assert len(registry) == 1


# =============================================================================
# Fallback chains
# =============================================================================


class TestFallbackChain:
    @pytest.mark.asyncio
    async def test_first_success_wins_and_later_candidates_do_not_run(self) -> None:
        failing = AsyncMock(side_effect=ProviderUnavailableError("x", "missing"))
        succeeding = AsyncMock(return_value=True)
        never = AsyncMock(return_value=True)
        registry = ProviderRegistry()

        assert await FallbackChain("x", [failing, succeeding, never]).run(registry) is True

        failing.assert_awaited_once_with(registry, "x", False)
        succeeding.assert_awaited_once_with(registry, "x", True)
        never.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unexpected_errors_fall_through(self) -> None:
        broken = AsyncMock(side_effect=RuntimeError("spawn failed"))
        declined = AsyncMock(return_value=False)

        assert await FallbackChain("x", [broken, declined]).run(ProviderRegistry()) is False


class TestDefaultChains:
    """ACP agent -> native API -> local model."""

    @pytest.mark.asyncio
    async def test_claude_falls_back_to_anthropic_api(self) -> None:
        chains = make_chains({"ANTHROPIC_API_KEY": "ak"})
        registry = ProviderRegistry()

        assert await chains["claude"].run(registry) is True

        provider = registry.require("claude")
        assert provider.transport_kind == TransportKind.API
        assert provider.model == "claude-3-sonnet-20240229"
        assert provider.fallback is True
        assert isinstance(provider.transport, HttpsTransport)
        assert provider.transport.dialect.name == "anthropic"

    @pytest.mark.asyncio
    async def test_copilot_prefers_api_over_local(self) -> None:
        chains = make_chains({"OPENAI_API_KEY": "sk"}, ollama="/usr/bin/ollama")
        registry = ProviderRegistry()

        assert await chains["copilot"].run(registry) is True

        provider = registry.require("copilot")
        assert provider.transport_kind == TransportKind.API
        assert provider.model == "gpt-4-turbo"
        assert provider.fallback is True

    @pytest.mark.asyncio
    async def test_copilot_accepts_github_token(self) -> None:
        chains = make_chains({"GITHUB_TOKEN": "ghp"})
        registry = ProviderRegistry()

        assert await chains["copilot"].run(registry) is True
        assert registry.require("copilot").transport.api_key == "ghp"

    @pytest.mark.asyncio
    async def test_copilot_falls_back_to_local(self) -> None:
        chains = make_chains({}, ollama="/usr/bin/ollama")
        registry = ProviderRegistry()

        assert await chains["copilot"].run(registry) is True

        provider = registry.require("copilot")
        assert provider.transport_kind == TransportKind.LOCAL_EXEC
        assert provider.model == "codellama"
        assert provider.fallback is True
        assert isinstance(provider.transport, LocalExecTransport)

    @pytest.mark.asyncio
    async def test_openai_is_not_a_fallback(self) -> None:
        chains = make_chains({"OPENAI_API_KEY": "sk"})
        registry = ProviderRegistry()

        assert await chains["openai"].run(registry) is True
        assert registry.require("openai").fallback is False

    @pytest.mark.asyncio
    async def test_nothing_available(self) -> None:
        chains = make_chains({})
        registry = ProviderRegistry()

        for name in ("claude", "copilot", "openai", "local"):
            assert await chains[name].run(registry) is False
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_acp_agent_preferred_when_found(self, fake_agent) -> None:
        chains = make_chains({"ANTHROPIC_API_KEY": "ak"}, claude=str(fake_agent))
        registry = ProviderRegistry()

        assert await chains["claude"].run(registry) is True

        provider = registry.require("claude")
        try:
            assert provider.transport_kind == TransportKind.ACP
            assert provider.fallback is False
            assert provider.transport.command == [str(fake_agent), "--acp"]
            assert provider.transport.is_alive
        finally:
            await provider.transport.close()

    @pytest.mark.asyncio
    async def test_agent_that_fails_handshake_falls_through_to_api(self, tmp_path) -> None:
        broken = tmp_path / "claude"
        broken.write_text(
            f"#!{sys.executable}\nimport sys\n"
            "sys.stderr.write('unknown option --acp\\n')\nsys.exit(2)\n",
            encoding="utf-8",
        )
        broken.chmod(broken.stat().st_mode | stat.S_IXUSR)
        chains = make_chains({"ANTHROPIC_API_KEY": "ak"}, claude=str(broken))
        registry = ProviderRegistry()

        assert await chains["claude"].run(registry) is True

        status = registry.require("claude").status()
        assert status["type"] == "api"
        assert status["fallback"] is True


class TestLocalServers:
    """Without the ollama binary, "local" looks for an Ollama then an LM Studio server."""

    @pytest.mark.asyncio
    async def test_ollama_server(self) -> None:
        def ollama(request: httpx.Request) -> httpx.Response:
            assert str(request.url) == "http://localhost:11434/api/tags"
            models = [{"name": "llama3:8b"}, {"name": "codellama:latest"}]
            return httpx.Response(200, json={"models": models})

        registry = ProviderRegistry()

        assert await make_chains({}, handler=ollama)["local"].run(registry) is True

        provider = registry.require("local")
        assert provider.transport_kind == TransportKind.API
        assert provider.model == "codellama:latest"
        assert provider.tier == "local"
        assert provider.fallback is True
        assert provider.transport.dialect.name == "ollama"
        assert provider.transport.url == "http://localhost:11434/api/generate"

    @pytest.mark.asyncio
    async def test_lmstudio_when_ollama_is_down(self) -> None:
        def lmstudio(request: httpx.Request) -> httpx.Response:
            if request.url.port == 11434:
                raise httpx.ConnectError("connection refused")
            return httpx.Response(200, json={"data": [{"id": "qwen2.5-coder"}]})

        registry = ProviderRegistry()

        assert await make_chains({}, handler=lmstudio)["local"].run(registry) is True

        provider = registry.require("local")
        assert provider.model == "qwen2.5-coder"
        assert provider.transport.dialect.name == "lmstudio"
        assert provider.transport.url == "http://localhost:1234/v1/chat/completions"
        assert provider.details["url"] == "http://localhost:1234"

    @pytest.mark.asyncio
    async def test_server_with_no_models_is_unavailable(self) -> None:
        empty = httpx.Response(200, json={"models": [], "data": []})
        chains = make_chains({}, handler=lambda r: empty)

        assert await chains["local"].run(ProviderRegistry()) is False

    @pytest.mark.asyncio
    async def test_server_url_from_env(self) -> None:
        seen: list[str] = []

        def record(request: httpx.Request) -> httpx.Response:
            seen.append(str(request.url))
            return httpx.Response(200, json={"models": [{"name": "mistral"}]})

        config = AgenticideConfig.from_env({"AGENTICIDE_OLLAMA_URL": "http://gpu-box:11434/"})
        client = httpx.AsyncClient(transport=httpx.MockTransport(record))
        chains = default_chains(
            config, BackendFactory(config, find=finder(), http_client=client)
        )
        registry = ProviderRegistry()

        assert await chains["local"].run(registry) is True
        assert seen == ["http://gpu-box:11434/api/tags"]
        assert registry.require("local").model == "mistral"

    @pytest.mark.asyncio
    async def test_binary_wins_over_server(self) -> None:
        chains = make_chains(
            {},
            handler=lambda r: httpx.Response(200, json={"models": [{"name": "codellama"}]}),
            ollama="/usr/bin/ollama",
        )
        registry = ProviderRegistry()

        assert await chains["local"].run(registry) is True
        assert registry.require("local").transport_kind == TransportKind.LOCAL_EXEC

    def test_pick_served_model(self) -> None:
        served = ["llama3:8b", "codellama:7b"]

        assert pick_served_model(served, "codellama") == "codellama:7b"
        assert pick_served_model(served, "llama3:8b") == "llama3:8b"
        assert pick_served_model(served, "mistral") == "llama3:8b"
        assert pick_served_model(served, None) == "llama3:8b"


# =============================================================================
# Binary discovery
# =============================================================================


class TestFindCommand:
    def make_executable(self, path: Path) -> Path:
        path.write_text("#!/bin/sh\n", encoding="utf-8")
        path.chmod(path.stat().st_mode | stat.S_IXUSR)
        return path

    def test_well_known_dirs_before_path(self, tmp_path, monkeypatch) -> None:
        known = tmp_path / "known"
        on_path = tmp_path / "on_path"
        known.mkdir()
        on_path.mkdir()
        expected = self.make_executable(known / "claude")
        self.make_executable(on_path / "claude")
        monkeypatch.setenv("PATH", str(on_path))

        assert find_command("claude", [known]) == str(expected)

    def test_falls_back_to_path(self, tmp_path, monkeypatch) -> None:
        expected = self.make_executable(tmp_path / "ollama")
        monkeypatch.setenv("PATH", str(tmp_path))

        assert find_command("ollama", [tmp_path / "empty"]) == str(expected)

    def test_not_found(self, tmp_path, monkeypatch) -> None:
        monkeypatch.setenv("PATH", str(tmp_path))
        assert find_command("github-copilot-agent", []) is None
