"""
Unit tests for the embedding pool, retry policy and circuit breaker.
"""

import asyncio

import numpy as np
import pytest

from ppmatch.core.config import EmbeddingConfig
from ppmatch.ingest.embeddings import EmbeddingPool, TextEmbedder, create_text_embedder
from ppmatch.shared.enums import ChunkType
from ppmatch.shared.exceptions import CircuitOpenError, EmbeddingError, EmbeddingTimeoutError
from ppmatch.shared.models import EmbeddingChunk
from ppmatch.utils.circuit_breaker import (
    CircuitBreaker,
    CircuitState,
    RetryConfig,
    get_circuit_health,
    retry_with_backoff,
)
from tests.conftest import MockEmbedder


def fast_config(**overrides) -> EmbeddingConfig:
    values = dict(dimension=64, max_attempts=3, initial_delay=0.0, max_delay=0.0, timeout_seconds=1.0)
    values.update(overrides)
    return EmbeddingConfig(**values)


class FlakyEmbedder(MockEmbedder):
    """Fails the first `failures` calls."""

    def __init__(self, failures: int):
        super().__init__()
        self.failures = failures

    async def embed(self, text: str) -> np.ndarray:
        if self.failures > 0:
            self.failures -= 1
            raise RuntimeError("backend hiccup")
        return await super().embed(text)


class WrongDimensionEmbedder(MockEmbedder):
    async def embed(self, text: str) -> np.ndarray:
        return np.ones(self.dimension + 1, dtype=np.float32)


class SlowEmbedder(MockEmbedder):
    async def embed(self, text: str) -> np.ndarray:
        await asyncio.sleep(5)
        return self.vector(text)


def chunk(i: int) -> EmbeddingChunk:
    return EmbeddingChunk(
        chunk_id=f"pp-1:g1:c{i}",
        record_id="pp-1",
        chunk_type=ChunkType.CAPABILITY_LEVEL,
        text=f"delivered outcome number {i}",
        ordinal=i,
        generation=1,
    )


@pytest.fixture
def breaker_name(request):
    """Unique breaker name, removed from the registry afterwards."""
    name = f"test-{request.node.name}"
    yield name
    CircuitBreaker._registry.pop(name, None)


# =============================================================================
# Pool
# =============================================================================

class TestEmbeddingPool:

    @pytest.mark.asyncio
    async def test_embed_text(self):
        pool = EmbeddingPool(MockEmbedder(), fast_config())
        vector = await pool.embed_text("java services")
        assert vector.shape == (64,)
        assert vector.dtype == np.float32
        assert pool.stats.successful_requests == 1

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self):
        pool = EmbeddingPool(FlakyEmbedder(failures=2), fast_config())
        await pool.embed_text("java services")
        assert pool.stats.retry_count == 2
        assert pool.stats.failed_requests == 0

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise_embedding_error(self):
        pool = EmbeddingPool(FlakyEmbedder(failures=10), fast_config())
        with pytest.raises(EmbeddingError):
            await pool.embed_text("java services")
        assert pool.stats.failed_requests == 1

    @pytest.mark.asyncio
    async def test_dimension_mismatch(self):
        pool = EmbeddingPool(WrongDimensionEmbedder(), fast_config())
        with pytest.raises(EmbeddingError, match="dimensions"):
            await pool.embed_text("java services")

    @pytest.mark.asyncio
    async def test_timeout(self):
        pool = EmbeddingPool(SlowEmbedder(), fast_config(max_attempts=1, timeout_seconds=0.05))
        with pytest.raises(EmbeddingTimeoutError):
            await pool.embed_text("java services")

    @pytest.mark.asyncio
    async def test_failed_chunks_left_pending(self):
        pool = EmbeddingPool(FlakyEmbedder(failures=1), fast_config(max_attempts=1))
        chunks = await pool.embed_chunks([chunk(0), chunk(1), chunk(2)])

        assert [c.chunk_id for c in chunks] == ["pp-1:g1:c0", "pp-1:g1:c1", "pp-1:g1:c2"]
        assert sum(1 for c in chunks if c.embedding_pending) == 1
        assert pool.stats.pending_chunks == 1

    @pytest.mark.asyncio
    async def test_concurrency_bounded(self):
        active = 0
        peak = 0

        class CountingEmbedder(MockEmbedder):
            async def embed(self, text):
                nonlocal active, peak
                active += 1
                peak = max(peak, active)
                await asyncio.sleep(0.01)
                active -= 1
                return self.vector(text)

        pool = EmbeddingPool(CountingEmbedder(), fast_config(max_concurrency=2))
        await pool.embed_chunks([chunk(i) for i in range(6)])
        assert peak == 2

    def test_unknown_provider(self):
        with pytest.raises(ValueError):
            create_text_embedder(EmbeddingConfig(provider="nope"))

    def test_embedder_is_abstract(self):
        with pytest.raises(TypeError):
            TextEmbedder()


# =============================================================================
# Retry
# =============================================================================

class TestRetryWithBackoff:

    @pytest.mark.asyncio
    async def test_returns_result(self):
        async def ok():
            return 42
        assert await retry_with_backoff(ok, RetryConfig(initial_delay=0.0)) == 42

    @pytest.mark.asyncio
    async def test_on_retry_called(self):
        attempts = []

        async def failing():
            raise ValueError("boom")

        with pytest.raises(ValueError):
            await retry_with_backoff(
                failing,
                RetryConfig(max_attempts=3, initial_delay=0.0, max_delay=0.0),
                lambda attempt, exc: attempts.append(attempt),
            )
        assert attempts == [1, 2]

    @pytest.mark.asyncio
    async def test_circuit_open_not_retried(self):
        calls = 0

        async def rejected():
            nonlocal calls
            calls += 1
            raise CircuitOpenError("open")

        with pytest.raises(CircuitOpenError):
            await retry_with_backoff(rejected, RetryConfig(max_attempts=3, initial_delay=0.0))
        assert calls == 1

    @pytest.mark.asyncio
    async def test_timeout_raises_timeout_error(self):
        async def slow():
            await asyncio.sleep(5)

        with pytest.raises(TimeoutError):
            await retry_with_backoff(slow, RetryConfig(max_attempts=2, initial_delay=0.0, timeout=0.02))


# =============================================================================
# Circuit Breaker
# =============================================================================

class TestCircuitBreaker:

    @pytest.mark.asyncio
    async def test_opens_after_threshold(self, breaker_name):
        breaker = CircuitBreaker(breaker_name, failure_threshold=2, reset_timeout=60.0)
        for _ in range(2):
            with pytest.raises(RuntimeError):
                async with breaker:
                    raise RuntimeError("down")

        assert breaker.state == CircuitState.OPEN
        with pytest.raises(CircuitOpenError):
            async with breaker:
                pass
        assert breaker.stats.rejected_calls == 1
        assert get_circuit_health()[breaker_name]["state"] == "open"

    @pytest.mark.asyncio
    async def test_half_open_recovers(self, breaker_name):
        breaker = CircuitBreaker(breaker_name, failure_threshold=1, success_threshold=2, reset_timeout=0.0)
        with pytest.raises(RuntimeError):
            async with breaker:
                raise RuntimeError("down")

        assert breaker.state == CircuitState.HALF_OPEN
        for _ in range(2):
            async with breaker:
                pass
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_cancellation_not_counted(self, breaker_name):
        breaker = CircuitBreaker(breaker_name, failure_threshold=1)
        with pytest.raises(asyncio.CancelledError):
            async with breaker:
                raise asyncio.CancelledError()
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_manual_reset(self, breaker_name):
        breaker = CircuitBreaker(breaker_name, failure_threshold=1, reset_timeout=60.0)
        with pytest.raises(RuntimeError):
            async with breaker:
                raise RuntimeError("down")
        breaker.reset()
        assert breaker.state == CircuitState.CLOSED
        assert breaker.to_dict()["failed_calls"] == 0
