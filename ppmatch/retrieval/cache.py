"""
PPMatch - Query Embedding Cache
===============================

Free-text queries are embedded once and cached (LRU). A query whose
embedding is still in flight is tracked so that concurrent and retried
requests share one embed() call.

A search waits at most `wait_seconds` for its embedding. If the embedding
is not ready by then the caller gets QueryEmbeddingPendingError (retryable)
while the embedding keeps running and lands in the cache for the retry.

Usage:
    cache = QueryEmbeddingCache(capacity=1000)
    vector = await cache.get_or_compute(query, pool.embed_text, wait_seconds=5.0)
"""

import asyncio
import hashlib
import logging
from collections import OrderedDict
from typing import Any, Awaitable, Callable, Dict, Generic, Optional, TypeVar

import numpy as np

from ppmatch.shared.exceptions import QueryEmbeddingPendingError

logger = logging.getLogger(__name__)

T = TypeVar('T')


# =============================================================================
# LRU Cache
# =============================================================================

class LRUCache(Generic[T]):
    """
    LRU (Least Recently Used) cache.

    Evicts least recently used items when capacity is reached.
    """

    def __init__(self, capacity: int = 1000):
        self.capacity = capacity
        self.cache: OrderedDict[str, T] = OrderedDict()
        self._hits = 0
        self._misses = 0

    def get(self, key: str) -> Optional[T]:
        """Get item from cache, updating access order."""
        if key in self.cache:
            self.cache.move_to_end(key)
            self._hits += 1
            return self.cache[key]

        self._misses += 1
        return None

    def put(self, key: str, value: T) -> None:
        """Add or update item in cache."""
        if key in self.cache:
            self.cache.move_to_end(key)
        elif len(self.cache) >= self.capacity:
            self.cache.popitem(last=False)

        self.cache[key] = value

    @property
    def size(self) -> int:
        return len(self.cache)

    @property
    def hit_rate(self) -> float:
        total = self._hits + self._misses
        return self._hits / total if total > 0 else 0

    def stats(self) -> Dict[str, Any]:
        return {
            "capacity": self.capacity,
            "size": self.size,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": self.hit_rate,
        }


# =============================================================================
# Query Embedding Cache
# =============================================================================

class QueryEmbeddingCache:
    """LRU of query -> vector plus the set of embeddings still in flight."""

    def __init__(self, capacity: int = 1000):
        self.embeddings = LRUCache[np.ndarray](capacity=capacity)
        self._inflight: Dict[str, asyncio.Task] = {}

    @staticmethod
    def make_key(text: str) -> str:
        normalized = " ".join(text.lower().split())
        return hashlib.sha256(normalized.encode("utf-8")).hexdigest()

    @property
    def inflight(self) -> int:
        return len(self._inflight)

    async def get_or_compute(
        self,
        text: str,
        embed_func: Callable[[str], Awaitable[np.ndarray]],
        wait_seconds: float,
    ) -> np.ndarray:
        """
        Cached vector, or wait up to `wait_seconds` for it to be computed.

        Raises:
            QueryEmbeddingPendingError: embedding still running after the wait
            EmbeddingError: the embedding failed
        """
        key = self.make_key(text)
        cached = self.embeddings.get(key)
        if cached is not None:
            logger.debug(f"Embedding cache HIT: {key[:16]}")
            return cached

        task = self._inflight.get(key)
        if task is None:
            logger.debug(f"Embedding cache MISS: {key[:16]}")
            task = asyncio.create_task(self._compute(key, text, embed_func))
            task.add_done_callback(self._log_failure)
            self._inflight[key] = task

        # asyncio.wait never cancels the task, so a timeout leaves it running
        done, _ = await asyncio.wait({task}, timeout=wait_seconds)
        if not done:
            raise QueryEmbeddingPendingError(
                f"Query embedding not ready after {wait_seconds:.1f}s; try again"
            )
        return task.result()

    async def _compute(
        self,
        key: str,
        text: str,
        embed_func: Callable[[str], Awaitable[np.ndarray]],
    ) -> np.ndarray:
        try:
            vector = await embed_func(text)
            self.embeddings.put(key, vector)
            return vector
        finally:
            self._inflight.pop(key, None)

    @staticmethod
    def _log_failure(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning(f"Query embedding failed: {error}")

    def stats(self) -> Dict[str, Any]:
        stats = self.embeddings.stats()
        stats["inflight"] = self.inflight
        return stats
