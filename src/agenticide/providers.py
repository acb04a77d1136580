"""Provider registry and initialization-time fallback chains.

A logical provider name ("claude", "copilot", "openai", "local") maps to an
ordered list of initializers. Each initializer probes one backend candidate
(ACP agent binary, API key, local runner or local model server) and returns True once it has
registered a working Provider. The first success wins; a success from any
candidate but the first is recorded with `fallback=True`.

Fallback happens only here. A provider that fails later at send time is
never swapped for another one.
"""

from __future__ import annotations

import logging
import os
import shutil
from collections.abc import Awaitable, Callable, Iterator, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import httpx

from .config import (
    ANTHROPIC_KEY_VARS,
    COPILOT_KEY_VARS,
    OPENAI_KEY_VARS,
    AgenticideConfig,
)
from .errors import ProviderNotInitializedError, ProviderUnavailableError, TransportError
from .models import TransportKind, model_tier
from .transport.base import ProviderTransport
from .transport.https import DIALECTS, HttpsTransport, list_local_models
from .transport.local_exec import LocalExecTransport
from .transport.stdio import StdioAgentTransport

logger = logging.getLogger(__name__)

DEFAULT_AGENT = "copilot"


def default_search_dirs() -> list[Path]:
    """Well-known install locations checked before PATH."""
    return [
        Path("/usr/local/bin"),
        Path("/opt/homebrew/bin"),
        Path.home() / ".local" / "bin",
    ]


def find_command(name: str, search_dirs: Sequence[Path] | None = None) -> str | None:
    """Locate an executable in the well-known directories, then on PATH."""
    for directory in default_search_dirs() if search_dirs is None else search_dirs:
        candidate = Path(directory) / name
        if candidate.is_file() and os.access(candidate, os.X_OK):
            return str(candidate)
    return shutil.which(name)


@dataclass
class Provider:
    """A configured backend reachable through one transport."""

    id: str
    transport_kind: TransportKind
    model: str
    transport: ProviderTransport
    tier: str = "unknown"
    fallback: bool = False
    initialized: bool = True
    details: dict[str, Any] = field(default_factory=dict)

    def status(self, *, active: bool = False) -> dict[str, Any]:
        return {
            "type": self.transport_kind.value,
            "model": self.model,
            "tier": self.tier,
            "fallback": self.fallback,
            "active": active,
        }


class ProviderRegistry:
    """Initialized providers by name, plus the active selection."""

    def __init__(self) -> None:
        self._providers: dict[str, Provider] = {}
        self._active: str | None = None

    def __contains__(self, name: object) -> bool:
        return name in self._providers

    def __len__(self) -> int:
        return len(self._providers)

    def __iter__(self) -> Iterator[Provider]:
        return iter(list(self._providers.values()))

    @property
    def active(self) -> str | None:
        return self._active

    def names(self) -> list[str]:
        return list(self._providers)

    def register(self, provider: Provider) -> Provider | None:
        """Add or replace a provider; returns the one it replaced."""
        previous = self._providers.get(provider.id)
        self._providers[provider.id] = provider
        logger.debug(f"Registered provider {provider.id} ({provider.transport_kind.value})")
        return previous

    def get(self, name: str) -> Provider | None:
        return self._providers.get(name)

    def require(self, name: str) -> Provider:
        provider = self._providers.get(name)
        if provider is None:
            raise ProviderNotInitializedError(name)
        return provider

    def remove(self, name: str) -> Provider | None:
        provider = self._providers.pop(name, None)
        if name == self._active:
            self._active = None
        return provider

    def set_active(self, name: str) -> None:
        self.require(name)
        self._active = name

    def clear(self) -> None:
        self._providers.clear()
        self._active = None


Initializer = Callable[[ProviderRegistry, str, bool], Awaitable[bool]]


class FallbackChain:
    """Ordered backend candidates for one logical provider name."""

    def __init__(self, name: str, initializers: Sequence[Initializer]) -> None:
        self.name = name
        self.initializers = list(initializers)

    def __len__(self) -> int:
        return len(self.initializers)

    async def run(self, registry: ProviderRegistry) -> bool:
        """Try each candidate in order until one registers a provider."""
        for position, initializer in enumerate(self.initializers):
            fallback = position > 0
            try:
                if await initializer(registry, self.name, fallback):
                    if fallback:
                        logger.info(f"{self.name}: using fallback candidate {position + 1}")
                    return True
            except ProviderUnavailableError as e:
                logger.info(str(e))
            except Exception as e:
                logger.warning(f"{self.name}: candidate {position + 1} failed: {e}")
        logger.error(f"{self.name}: no backend available")
        return False


def pick_served_model(served: list[str], preferred: str | None) -> str:
    if preferred:
        for name in served:
            if name == preferred or name.startswith(preferred + ":"):
                return name
    return served[0]


class BackendFactory:
    """Builds initializers for each backend kind.

    `find` and `http_client` are injectable so chains can be exercised
    without real binaries or network access.
    """

    def __init__(
        self,
        config: AgenticideConfig,
        *,
        find: Callable[[str], str | None] = find_command,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config
        self.find = find
        self.http_client = http_client

    def acp(self, binary: str, model: str) -> Initializer:
        async def initialize(registry: ProviderRegistry, name: str, fallback: bool) -> bool:
            path = self.find(binary)
            if not path:
                raise ProviderUnavailableError(name, f"{binary} agent not found")

            transport = StdioAgentTransport(
                [path, "--acp"],
                provider_id=name,
                cwd=self.config.working_directory,
                timeout=self.config.request_timeout,
            )
            await transport.start()
            try:
                await transport.connect()
            except TransportError as e:
                await transport.close()
                raise ProviderUnavailableError(
                    name, f"{binary} did not complete the ACP handshake: {e}"
                ) from e

            registry.register(
                Provider(
                    id=name,
                    transport_kind=TransportKind.ACP,
                    model=model,
                    transport=transport,
                    tier=model_tier(model),
                    fallback=fallback,
                    details={"binary": path},
                )
            )
            return True

        return initialize

    def api(self, dialect: str, key_vars: tuple[str, ...], model: str) -> Initializer:
        async def initialize(registry: ProviderRegistry, name: str, fallback: bool) -> bool:
            api_key = self.config.api_key(key_vars)
            if not api_key:
                raise ProviderUnavailableError(name, f"set {' or '.join(key_vars)}")

            transport = HttpsTransport(
                dialect,
                api_key=api_key,
                model=model,
                provider_id=name,
                client=self.http_client,
                history_window=self.config.history_window,
            )
            registry.register(
                Provider(
                    id=name,
                    transport_kind=TransportKind.API,
                    model=model,
                    transport=transport,
                    tier=model_tier(model),
                    fallback=fallback,
                    details={"dialect": dialect},
                )
            )
            return True

        return initialize

    def local(self, binary: str = "ollama", model: str | None = None) -> Initializer:
        async def initialize(registry: ProviderRegistry, name: str, fallback: bool) -> bool:
            path = self.find(binary)
            if not path:
                raise ProviderUnavailableError(
                    name, f"{binary} not found. Install: brew install {binary}"
                )

            local_model = model or self.config.ollama_model
            registry.register(
                Provider(
                    id=name,
                    transport_kind=TransportKind.LOCAL_EXEC,
                    model=local_model,
                    transport=LocalExecTransport(path, local_model, provider_id=name),
                    tier=model_tier(local_model),
                    fallback=fallback,
                    details={"binary": path},
                )
            )
            return True

        return initialize

    def local_server(self, dialect: str, base_url: str, model: str | None = None) -> Initializer:
        """A local model server found by asking it for its model list.

        `model` is used when the server lists it (bare names match any tag,
        so "codellama" picks "codellama:latest"); otherwise the first model
        the server lists is used.
        """

        async def initialize(registry: ProviderRegistry, name: str, fallback: bool) -> bool:
            api_dialect = DIALECTS[dialect]
            try:
                if self.http_client is not None:
                    served = await list_local_models(self.http_client, api_dialect, base_url)
                else:
                    async with httpx.AsyncClient() as client:
                        served = await list_local_models(client, api_dialect, base_url)
            except TransportError as e:
                raise ProviderUnavailableError(name, str(e)) from e
            if not served:
                raise ProviderUnavailableError(
                    name, f"{dialect} server at {base_url} lists no models"
                )

            local_model = pick_served_model(served, model)
            transport = HttpsTransport(
                api_dialect,
                model=local_model,
                provider_id=name,
                url=base_url.rstrip("/") + api_dialect.endpoint,
                client=self.http_client,
                history_window=self.config.history_window,
            )
            registry.register(
                Provider(
                    id=name,
                    transport_kind=TransportKind.API,
                    model=local_model,
                    transport=transport,
                    tier="local",
                    fallback=fallback,
                    details={"dialect": dialect, "url": base_url, "served": served},
                )
            )
            return True

        return initialize


def default_chains(
    config: AgenticideConfig,
    factory: BackendFactory | None = None,
) -> dict[str, FallbackChain]:
    """The built-in chains: ACP agent -> native API -> local model.

    "local" tries the ollama binary first, then an Ollama server, then an
    LM Studio server.
    """
    factory = factory or BackendFactory(config)
    return {
        "claude": FallbackChain(
            "claude",
            [
                factory.acp("claude", "claude-3-sonnet"),
                factory.api("anthropic", ANTHROPIC_KEY_VARS, "claude-3-sonnet-20240229"),
            ],
        ),
        "copilot": FallbackChain(
            "copilot",
            [
                factory.acp("github-copilot-agent", "copilot-gpt4"),
                factory.api("openai", COPILOT_KEY_VARS, "gpt-4-turbo"),
                factory.local("ollama", "codellama"),
            ],
        ),
        "openai": FallbackChain(
            "openai",
            [factory.api("openai", OPENAI_KEY_VARS, "gpt-4-turbo")],
        ),
        "local": FallbackChain(
            "local",
            [
                factory.local("ollama"),
                factory.local_server("ollama", config.ollama_url, config.ollama_model),
                factory.local_server("lmstudio", config.lmstudio_url),
            ],
        ),
    }


__all__ = [
    "DEFAULT_AGENT",
    "BackendFactory",
    "FallbackChain",
    "Initializer",
    "Provider",
    "ProviderRegistry",
    "default_chains",
    "default_search_dirs",
    "find_command",
    "pick_served_model",
]
