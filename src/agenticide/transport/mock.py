"""In-memory transport for tests and dry runs."""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Callable

from ..models import TransportKind
from .base import TransportRequest

Responder = Callable[[TransportRequest], str]


class MockTransport:
    """Records requests and returns canned or scripted replies.

    No actual I/O - everything is in-memory.

    Usage:
        transport = MockTransport(response="hello")
        transport.script("first", RuntimeError("boom"), "third")

        await transport.send(request)   # "first"
        await transport.send(request)   # raises RuntimeError
        assert transport.recorded_requests[0].message == "explain foo.js"
    """

    def __init__(
        self,
        response: str | Responder = "mock response",
        *,
        delay: float = 0.0,
        kind: TransportKind = TransportKind.API,
    ) -> None:
        self.kind = kind
        self.delay = delay
        self._response = response
        self._script: deque[str | BaseException] = deque()
        self._recorded: list[TransportRequest] = []
        self.closed = False
        self.close_calls = 0

    @property
    def recorded_requests(self) -> list[TransportRequest]:
        """Get all requests sent through this transport."""
        return self._recorded.copy()

    @property
    def call_count(self) -> int:
        return len(self._recorded)

    def set_response(self, response: str | Responder) -> None:
        self._response = response

    def script(self, *outcomes: str | BaseException) -> None:
        """Queue one-shot outcomes; exceptions are raised instead of returned."""
        self._script.extend(outcomes)

    async def send(self, request: TransportRequest) -> str:
        self._recorded.append(request)
        outcome: str | BaseException | Responder
        outcome = self._script.popleft() if self._script else self._response
        if self.delay:
            await asyncio.sleep(self.delay)
        if isinstance(outcome, BaseException):
            raise outcome
        if callable(outcome):
            return outcome(request)
        return outcome

    async def close(self) -> None:
        self.close_calls += 1
        self.closed = True


__all__ = ["MockTransport", "Responder"]
