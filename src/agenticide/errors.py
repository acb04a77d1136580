"""Exception hierarchy for agent dispatch.

Transport adapters raise TransportError (or a subclass). The dispatcher wraps
whatever reaches it in DispatchError so callers always learn which provider
failed.
"""

from __future__ import annotations


class AgenticideError(Exception):
    """Base class for all agenticide errors."""


class ProviderNotInitializedError(AgenticideError):
    """A provider was requested that was never successfully initialized."""

    def __init__(self, provider: str) -> None:
        self.provider = provider
        super().__init__(
            f"Agent {provider} not initialized. Run 'agenticide agent init {provider}'"
        )


class ProviderUnavailableError(AgenticideError):
    """No backend candidate could be set up for a provider."""

    def __init__(self, provider: str, reason: str) -> None:
        self.provider = provider
        self.reason = reason
        super().__init__(f"{provider} not available: {reason}")


class TransportError(AgenticideError):
    """The underlying channel failed (process, HTTP, parse)."""

    def __init__(self, message: str, *, provider_id: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.provider_id = provider_id


class AgentRpcError(TransportError):
    """The agent answered a request with a JSON-RPC error object."""

    def __init__(
        self,
        code: int,
        message: str,
        data: object | None = None,
        *,
        provider_id: str | None = None,
    ) -> None:
        super().__init__(f"[{code}] {message}", provider_id=provider_id)
        self.code = code
        self.data = data


class ProtocolTimeoutError(TransportError):
    """No matching response arrived before the request deadline."""

    def __init__(
        self,
        request_id: int | None,
        timeout: float,
        *,
        method: str | None = None,
        provider_id: str | None = None,
    ) -> None:
        what = f"Request {request_id}" if request_id is not None else "Request"
        if method:
            what += f" ({method})"
        super().__init__(f"{what} timed out after {timeout:g}s", provider_id=provider_id)
        self.request_id = request_id
        self.timeout = timeout
        self.method = method


class DispatchError(AgenticideError):
    """Wraps any failure of a send with the provider that was attempted."""

    def __init__(self, provider_id: str, cause: BaseException) -> None:
        self.provider_id = provider_id
        self.cause = cause
        super().__init__(f"{provider_id}: {cause}")


__all__ = [
    "AgentRpcError",
    "AgenticideError",
    "DispatchError",
    "ProtocolTimeoutError",
    "ProviderNotInitializedError",
    "ProviderUnavailableError",
    "TransportError",
]
