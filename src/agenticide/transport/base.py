"""Transport adapter interface.

A transport wraps exactly one concrete channel to a backend and turns a
TransportRequest into the backend's reply text. Transports never enforce the
overall request deadline and never retry; the dispatcher owns both.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, Field

from ..models import TransportKind


class TransportRequest(BaseModel):
    """Everything a backend may need to answer one user turn.

    - `prompt`: message plus packed context block; every built-in
      transport sends this as the user turn
    - `message`: the raw user message without the context block, for
      transports that want the bare text (none of the built-in ones do)
    - `history`: prior turns as chat dicts, oldest first
    """

    prompt: str
    message: str
    context: dict[str, Any] = Field(default_factory=dict)
    history: list[dict[str, str]] = Field(default_factory=list)
    max_tokens: int | None = None
    temperature: float | None = None


@runtime_checkable
class ProviderTransport(Protocol):
    """Protocol for all transport adapters."""

    kind: TransportKind

    async def send(self, request: TransportRequest) -> str:
        """Deliver one turn and return the reply text.

        Raises:
            TransportError: The channel failed
        """
        ...

    async def close(self) -> None:
        """Release every resource the transport owns. Safe to call twice."""
        ...


__all__ = ["ProviderTransport", "TransportRequest"]
