"""Agent dispatcher: the single entry point for sending prompts.

Routes a message to an initialized provider, appends the packed project
context, consults the response cache, records both conversation turns and
normalizes every backend's reply to a plain string.

Contract:
- Inputs: message text and SendOptions
- Outputs: reply text
- Side Effects: history appends, cache writes, transport I/O
- Errors: ProviderNotInitializedError for an unknown provider, DispatchError
  (raised from the cause) for every failure after routing
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from .cache import ConversationCache, context_hash
from .config import AgenticideConfig
from .context import ContextSource, build_prompt
from .errors import DispatchError, ProtocolTimeoutError
from .history import ConversationHistory
from .models import ModelInfo, SendOptions, list_models
from .providers import (
    DEFAULT_AGENT,
    FallbackChain,
    Provider,
    ProviderRegistry,
    default_chains,
)
from .session_store import SessionStore
from .transport.base import TransportRequest

logger = logging.getLogger(__name__)


class AgentDispatcher:
    """Owns the provider registry, response cache and conversation history."""

    def __init__(
        self,
        config: AgenticideConfig | None = None,
        *,
        context_source: ContextSource | None = None,
        cache: ConversationCache | None = None,
        chains: dict[str, FallbackChain] | None = None,
    ) -> None:
        self.config = config or AgenticideConfig.from_env()
        self.context_source = context_source
        self.registry = ProviderRegistry()
        self.history = ConversationHistory()
        # Responses live for half the configured cache TTL
        self.cache = cache or ConversationCache(
            ttl=self.config.cache_ttl / 2,
            enabled=self.config.cache_enabled,
        )
        self.chains = chains if chains is not None else default_chains(self.config)

    # =========================================================================
    # Provider management
    # =========================================================================

    @property
    def active_agent(self) -> str | None:
        return self.registry.active

    async def initialize(self, name: str) -> bool:
        """Run the fallback chain for a logical provider name.

        Returns False (never raises) when no candidate is usable. A provider
        already registered under `name` stays in place until a replacement
        registers, and is closed only then.
        """
        chain = self.chains.get(name)
        if chain is None:
            logger.error(f"Unknown agent: {name} (known: {', '.join(sorted(self.chains))})")
            return False

        previous = self.registry.get(name)
        ok = await chain.run(self.registry)
        if previous is not None and self.registry.get(name) is not previous:
            await self._close_provider(previous)
        return ok

    def register(self, provider: Provider, *, activate: bool = False) -> None:
        """Add an already-built provider, bypassing the fallback chains."""
        self.registry.register(provider)
        if activate:
            self.registry.set_active(provider.id)

    def set_active_agent(self, name: str) -> None:
        """Raises ProviderNotInitializedError if `name` was never initialized."""
        self.registry.set_active(name)

    def get_status(self) -> dict[str, dict[str, Any]]:
        active = self.registry.active
        return {
            provider.id: provider.status(active=provider.id == active)
            for provider in self.registry
        }

    def list_models(self) -> list[ModelInfo]:
        return list_models()

    # =========================================================================
    # Messaging
    # =========================================================================

    def _resolve_context(self, options: SendOptions) -> dict[str, Any]:
        if options.context is not None:
            return dict(options.context)
        if self.context_source is not None:
            snapshot = self.context_source.snapshot()
            return snapshot.model_dump(by_alias=True, exclude_none=True)
        return {}

    async def send_message(self, message: str, options: SendOptions | None = None) -> str:
        """Send one user turn and return the reply text.

        The user turn is recorded at issuance and the assistant turn on
        completion (pointing back via `in_reply_to`), so with concurrent
        sends user turns follow issuance order and assistant turns follow
        completion order.
        """
        options = options or SendOptions()
        name = options.agent or self.registry.active or DEFAULT_AGENT
        provider = self.registry.require(name)

        context = self._resolve_context(options)
        ctx_hash = context_hash(context)
        prior = [turn.to_chat() for turn in self.history.recent(self.config.history_window)]
        user_index = self.history.append_user(message)

        request = TransportRequest(
            prompt=build_prompt(message, context),
            message=message,
            context=context,
            history=prior,
            max_tokens=options.max_tokens,
            temperature=options.temperature,
        )
        timeout = self.config.request_timeout

        async def call() -> str:
            try:
                return await asyncio.wait_for(provider.transport.send(request), timeout=timeout)
            except TimeoutError as e:
                raise ProtocolTimeoutError(
                    None, timeout, method="send_message", provider_id=name
                ) from e

        try:
            if options.no_cache:
                response, cached = await call(), False
                self.cache.put(message, ctx_hash, response)
            else:
                response, cached = await self.cache.get_or_compute(message, ctx_hash, call)
        except Exception as e:
            logger.error(f"{name} failed: {e}")
            raise DispatchError(name, e) from e

        self.history.append_assistant(response, agent=name, in_reply_to=user_index, cached=cached)
        if cached:
            logger.debug(f"Answered from cache for {name}")
        return response

    # =========================================================================
    # Cache and sessions
    # =========================================================================

    def clear_cache(self) -> int:
        return self.cache.clear()

    def cache_stats(self) -> dict[str, Any]:
        return self.cache.stats()

    def save_session(self, store: SessionStore, name: str | None = None) -> str:
        """Persist the conversation history; returns the session name used."""
        return store.save(
            name,
            self.history.to_transcript(),
            {"active_agent": self.registry.active, "providers": self.registry.names()},
        )

    def restore_session(self, store: SessionStore, name: str) -> int:
        """Replace the history with a saved one; returns the number of turns.

        Raises:
            FileNotFoundError: If the session does not exist
        """
        transcript, _metadata = store.load(name)
        self.history = ConversationHistory.from_transcript(transcript)
        logger.info(f"Restored session {name} ({len(self.history)} messages)")
        return len(self.history)

    # =========================================================================
    # Teardown
    # =========================================================================

    async def _close_provider(self, provider: Provider) -> None:
        try:
            await provider.transport.close()
        except Exception as e:
            logger.warning(f"Failed to close {provider.id}: {e}")

    async def dispose(self) -> None:
        """Close every transport and empty the registry, even if a close fails."""
        providers = list(self.registry)
        self.registry.clear()
        await asyncio.gather(*(self._close_provider(p) for p in providers))
        if providers:
            logger.info(f"Disposed {len(providers)} provider(s)")


__all__ = ["AgentDispatcher"]
