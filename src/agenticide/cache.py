"""Response cache keyed by message and context fingerprint.

The cache lives in process memory, so it only pays off for a long-lived
dispatcher. Entries carry their own TTL, and concurrent misses for the same
key can share a single backend call through `get_or_compute`.
"""

from __future__ import annotations

import asyncio
import functools
import hashlib
import json
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

CacheKey = tuple[str, str]


def stable_hash(content: str) -> str:
    """SHA-256 hex digest of a string."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def context_hash(context: Any) -> str:
    """Fingerprint a context object independent of key order."""
    serialized = json.dumps(
        context if context is not None else {},
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )
    return stable_hash(serialized)


@dataclass
class CacheEntry:
    """A cached response and its expiry data."""

    response: str
    created_at: float = field(default_factory=time.monotonic)
    ttl: float = 1800.0

    def expired(self, now: float | None = None) -> bool:
        now = time.monotonic() if now is None else now
        return now - self.created_at >= self.ttl


@dataclass
class _Flight:
    """A shared computation and the number of callers awaiting it."""

    task: asyncio.Future[str]
    waiters: int = 0


class ConversationCache:
    """Memoizes (message, context hash) -> response.

    Contract:
    - get() never returns an expired entry
    - put() is only called after a successful response
    - get_or_compute() runs at most one computation per key at a time
    """

    def __init__(
        self,
        ttl: float = 1800.0,
        *,
        enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl = ttl
        self.enabled = enabled
        self._clock = clock
        self._entries: dict[CacheKey, CacheEntry] = {}
        self._inflight: dict[CacheKey, _Flight] = {}
        self._hits = 0
        self._misses = 0

    @staticmethod
    def hash(content: str) -> str:
        return stable_hash(content)

    def _key(self, message: str, ctx_hash: str) -> CacheKey:
        return (stable_hash(message), ctx_hash)

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, message: str, ctx_hash: str) -> str | None:
        """Return the cached response, or None on miss/expiry."""
        if not self.enabled:
            return None
        key = self._key(message, ctx_hash)
        entry = self._entries.get(key)
        if entry is not None and entry.expired(self._clock()):
            del self._entries[key]
            entry = None
        if entry is None:
            self._misses += 1
            return None
        self._hits += 1
        logger.debug(f"Cache hit (prompt {key[0][:8]})")
        return entry.response

    def put(self, message: str, ctx_hash: str, response: str) -> None:
        if not self.enabled:
            return
        key = self._key(message, ctx_hash)
        self._entries[key] = CacheEntry(response=response, created_at=self._clock(), ttl=self.ttl)
        logger.debug(f"Cached response (prompt {key[0][:8]})")

    async def get_or_compute(
        self,
        message: str,
        ctx_hash: str,
        compute: Callable[[], Awaitable[str]],
    ) -> tuple[str, bool]:
        """Return (response, from_cache), computing on a miss.

        A second caller that misses while the first computation for the same
        key is still running waits for that result instead of starting its
        own. The computation runs in its own task: cancelling one waiter
        leaves it running for the others, and it is cancelled only when no
        waiter is left. Failures are not cached and propagate to every waiter.
        """
        cached = self.get(message, ctx_hash)
        if cached is not None:
            return cached, True

        key = self._key(message, ctx_hash)
        flight = self._inflight.get(key)
        shared = flight is not None
        if flight is None:
            task = asyncio.ensure_future(self._compute_and_store(message, ctx_hash, compute))
            flight = _Flight(task)
            self._inflight[key] = flight
            task.add_done_callback(functools.partial(self._forget, key, flight))

        flight.waiters += 1
        try:
            response = await asyncio.shield(flight.task)
        finally:
            flight.waiters -= 1
            if flight.waiters == 0 and not flight.task.done():
                flight.task.cancel()
        return response, shared

    async def _compute_and_store(
        self, message: str, ctx_hash: str, compute: Callable[[], Awaitable[str]]
    ) -> str:
        response = await compute()
        self.put(message, ctx_hash, response)
        return response

    def _forget(self, key: CacheKey, flight: _Flight, _task: asyncio.Future[str]) -> None:
        if self._inflight.get(key) is flight:
            del self._inflight[key]

    def clear(self) -> int:
        """Drop every entry; returns how many were removed."""
        count = len(self._entries)
        self._entries.clear()
        return count

    def stats(self) -> dict[str, Any]:
        lookups = self._hits + self._misses
        return {
            "enabled": self.enabled,
            "entries": len(self._entries),
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": f"{(self._hits / lookups * 100):.2f}%" if lookups else "0%",
            "inflight": len(self._inflight),
        }


__all__ = [
    "CacheEntry",
    "ConversationCache",
    "context_hash",
    "stable_hash",
]
