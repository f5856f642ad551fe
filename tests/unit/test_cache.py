"""
Unit tests for the LRU cache and the query embedding cache.
"""

import asyncio

import numpy as np
import pytest

from ppmatch.retrieval.cache import LRUCache, QueryEmbeddingCache
from ppmatch.shared.exceptions import QueryEmbeddingPendingError


class TestLRUCache:

    def test_evicts_least_recently_used(self):
        cache = LRUCache[int](capacity=2)
        cache.put("a", 1)
        cache.put("b", 2)
        cache.get("a")
        cache.put("c", 3)

        assert cache.get("a") == 1
        assert cache.get("b") is None
        assert cache.get("c") == 3
        assert cache.size == 2

    def test_hit_rate(self):
        cache = LRUCache[int](capacity=2)
        cache.put("a", 1)
        cache.get("a")
        cache.get("missing")
        assert cache.hit_rate == pytest.approx(0.5)
        assert cache.stats()["hits"] == 1


class TestQueryEmbeddingCache:

    def test_key_ignores_case_and_spacing(self):
        assert QueryEmbeddingCache.make_key("Java  Spring\n") == QueryEmbeddingCache.make_key("java spring")
        assert QueryEmbeddingCache.make_key("java") != QueryEmbeddingCache.make_key("python")

    @pytest.mark.asyncio
    async def test_computes_once_then_hits(self, mock_embedder):
        cache = QueryEmbeddingCache(capacity=10)
        first = await cache.get_or_compute("java services", mock_embedder.embed, wait_seconds=1.0)
        second = await cache.get_or_compute("Java  Services", mock_embedder.embed, wait_seconds=1.0)

        assert np.array_equal(first, second)
        assert mock_embedder.calls == ["java services"]
        assert cache.stats()["hits"] == 1

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_call(self):
        calls = []
        release = asyncio.Event()

        async def embed(text):
            calls.append(text)
            await release.wait()
            return np.ones(4, dtype=np.float32)

        cache = QueryEmbeddingCache()
        waiters = [
            asyncio.create_task(cache.get_or_compute("java", embed, wait_seconds=1.0))
            for _ in range(3)
        ]
        await asyncio.sleep(0)
        assert cache.inflight == 1
        release.set()
        results = await asyncio.gather(*waiters)

        assert len(calls) == 1
        assert all(np.array_equal(r, np.ones(4)) for r in results)
        assert cache.inflight == 0

    @pytest.mark.asyncio
    async def test_timeout_keeps_embedding_running(self):
        release = asyncio.Event()
        calls = []

        async def embed(text):
            calls.append(text)
            await release.wait()
            return np.full(4, 2.0, dtype=np.float32)

        cache = QueryEmbeddingCache()
        with pytest.raises(QueryEmbeddingPendingError) as exc_info:
            await cache.get_or_compute("java", embed, wait_seconds=0.01)
        assert exc_info.value.retryable
        assert cache.inflight == 1

        release.set()
        vector = await cache.get_or_compute("java", embed, wait_seconds=1.0)
        assert np.array_equal(vector, np.full(4, 2.0))
        assert len(calls) == 1

        # a third call is served from the cache
        assert np.array_equal(await cache.get_or_compute("java", embed, wait_seconds=0.0), vector)

    @pytest.mark.asyncio
    async def test_failure_propagates_and_is_not_cached(self):
        attempts = 0

        async def embed(text):
            nonlocal attempts
            attempts += 1
            if attempts == 1:
                raise RuntimeError("provider down")
            return np.ones(4, dtype=np.float32)

        cache = QueryEmbeddingCache()
        with pytest.raises(RuntimeError):
            await cache.get_or_compute("java", embed, wait_seconds=1.0)
        assert cache.inflight == 0

        vector = await cache.get_or_compute("java", embed, wait_seconds=1.0)
        assert np.array_equal(vector, np.ones(4))
