"""Unit tests for the response cache."""

from __future__ import annotations

import asyncio

import pytest

from agenticide.cache import ConversationCache, context_hash, stable_hash


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class TestHashing:
    def test_stable_hash_is_sha256(self) -> None:
        assert stable_hash("abc") == (
            "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"
        )

    def test_context_hash_ignores_key_order(self) -> None:
        a = {"cwd": "/p", "symbolCount": 3, "topSymbols": ["foo", "bar"]}
        b = {"topSymbols": ["foo", "bar"], "symbolCount": 3, "cwd": "/p"}
        assert context_hash(a) == context_hash(b)

    def test_context_hash_distinguishes_values(self) -> None:
        assert context_hash({"cwd": "/p"}) != context_hash({"cwd": "/q"})

    def test_none_hashes_like_empty(self) -> None:
        assert context_hash(None) == context_hash({})


class TestGetPut:
    def test_miss_then_hit(self) -> None:
        cache = ConversationCache()
        key = context_hash({})

        assert cache.get("hello", key) is None
        cache.put("hello", key, "world")
        assert cache.get("hello", key) == "world"

        stats = cache.stats()
        assert (stats["hits"], stats["misses"], stats["entries"]) == (1, 1, 1)
        assert stats["hit_rate"] == "50.00%"

    def test_context_is_part_of_key(self) -> None:
        cache = ConversationCache()
        cache.put("hello", context_hash({"cwd": "/a"}), "A")

        assert cache.get("hello", context_hash({"cwd": "/b"})) is None

    def test_entries_expire(self) -> None:
        clock = FakeClock()
        cache = ConversationCache(ttl=10, clock=clock)
        cache.put("q", "ctx", "answer")

        clock.now += 9
        assert cache.get("q", "ctx") == "answer"
        clock.now += 1
        assert cache.get("q", "ctx") is None
        assert len(cache) == 0

    def test_disabled_cache_stores_nothing(self) -> None:
        cache = ConversationCache(enabled=False)
        cache.put("q", "ctx", "answer")

        assert cache.get("q", "ctx") is None
        assert len(cache) == 0

    def test_clear(self) -> None:
        cache = ConversationCache()
        cache.put("a", "ctx", "1")
        cache.put("b", "ctx", "2")

        assert cache.clear() == 2
        assert cache.get("a", "ctx") is None


class TestGetOrCompute:
    """Concurrent misses for one key share one computation."""

    @pytest.mark.asyncio
    async def test_compute_then_cached(self) -> None:
        cache = ConversationCache()
        calls = 0

        async def compute() -> str:
            nonlocal calls
            calls += 1
            return "answer"

        assert await cache.get_or_compute("q", "ctx", compute) == ("answer", False)
        assert await cache.get_or_compute("q", "ctx", compute) == ("answer", True)
        assert calls == 1

    @pytest.mark.asyncio
    async def test_concurrent_misses_coalesce(self) -> None:
        cache = ConversationCache()
        release = asyncio.Event()
        calls = 0

        async def compute() -> str:
            nonlocal calls
            calls += 1
            await release.wait()
            return "shared"

        first = asyncio.create_task(cache.get_or_compute("q", "ctx", compute))
        second = asyncio.create_task(cache.get_or_compute("q", "ctx", compute))
        await asyncio.sleep(0)
        assert cache.stats()["inflight"] == 1

        release.set()

        assert await first == ("shared", False)
        assert await second == ("shared", True)
        assert calls == 1
        assert cache.stats()["inflight"] == 0

    @pytest.mark.asyncio
    async def test_failure_is_shared_and_not_cached(self) -> None:
        cache = ConversationCache()
        release = asyncio.Event()

        async def failing() -> str:
            await release.wait()
            raise RuntimeError("backend down")

        first = asyncio.create_task(cache.get_or_compute("q", "ctx", failing))
        second = asyncio.create_task(cache.get_or_compute("q", "ctx", failing))
        await asyncio.sleep(0)
        release.set()

        for task in (first, second):
            with pytest.raises(RuntimeError, match="backend down"):
                await task
        assert len(cache) == 0

        async def working() -> str:
            return "recovered"

        assert await cache.get_or_compute("q", "ctx", working) == ("recovered", False)

    @pytest.mark.asyncio
    async def test_cancelling_one_waiter_keeps_the_others(self) -> None:
        cache = ConversationCache()
        release = asyncio.Event()
        calls = 0

        async def compute() -> str:
            nonlocal calls
            calls += 1
            await release.wait()
            return "shared"

        first = asyncio.create_task(cache.get_or_compute("q", "ctx", compute))
        second = asyncio.create_task(cache.get_or_compute("q", "ctx", compute))
        await asyncio.sleep(0)

        first.cancel()
        with pytest.raises(asyncio.CancelledError):
            await first

        release.set()

        assert await second == ("shared", True)
        assert calls == 1
        assert cache.get("q", "ctx") == "shared"

    @pytest.mark.asyncio
    async def test_cancelling_the_last_waiter_stops_the_computation(self) -> None:
        cache = ConversationCache()
        started = asyncio.Event()
        stopped = asyncio.Event()

        async def compute() -> str:
            started.set()
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                stopped.set()
                raise
            return "never"

        waiter = asyncio.create_task(cache.get_or_compute("q", "ctx", compute))
        await started.wait()

        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter

        await asyncio.wait_for(stopped.wait(), timeout=1)
        await asyncio.sleep(0.01)
        assert cache.stats()["inflight"] == 0
        assert len(cache) == 0
