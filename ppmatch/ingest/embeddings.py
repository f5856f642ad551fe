"""
PPMatch - Embedding Providers and Worker Pool
=============================================

The external embed(text) -> vector<float32, D> service:
- OpenAI (text-embedding-3-small/large)
- Voyage AI (voyage-3, voyage-3-lite)

`EmbeddingPool` is the only caller of a provider. It bounds concurrency
(default 4 workers), applies a per-attempt timeout (default 30s) and
retries with exponential backoff (default 3 attempts). A chunk whose
embedding still fails is returned without a vector, i.e. embedding_pending.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from ppmatch.core.config import EmbeddingConfig
from ppmatch.shared.exceptions import EmbeddingError, EmbeddingTimeoutError, RateLimitError
from ppmatch.shared.models import EmbeddingChunk
from ppmatch.utils.circuit_breaker import CircuitBreaker, RetryConfig, retry_with_backoff

logger = logging.getLogger(__name__)

# =============================================================================
# CIRCUIT BREAKERS FOR EXTERNAL APIS
# =============================================================================

openai_embeddings_breaker = CircuitBreaker(
    name="openai_embeddings",
    failure_threshold=5,
    success_threshold=2,
    reset_timeout=60.0,
)

voyage_breaker = CircuitBreaker(
    name="voyage",
    failure_threshold=5,
    success_threshold=2,
    reset_timeout=60.0,
)


@dataclass
class EmbeddingStats:
    """Statistics for embedding operations."""
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    retry_count: int = 0
    pending_chunks: int = 0

    def to_dict(self) -> dict:
        return dict(self.__dict__)


# =============================================================================
# PROVIDERS
# =============================================================================

class TextEmbedder(ABC):
    """Abstract interface for the embed(text) service."""

    @property
    @abstractmethod
    def dimension(self) -> int:
        """Return embedding dimension."""
        pass

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Return model identifier."""
        pass

    @abstractmethod
    async def embed(self, text: str) -> np.ndarray:
        """Embed a single text."""
        pass


class OpenAITextEmbedder(TextEmbedder):
    """
    OpenAI text embeddings.

    Models:
    - text-embedding-3-small (1536 dim)
    - text-embedding-3-large (3072 dim)
    """

    DIMENSIONS = {
        "text-embedding-3-small": 1536,
        "text-embedding-3-large": 3072,
        "text-embedding-ada-002": 1536,
    }

    def __init__(self, model: str = "text-embedding-3-small", api_key: Optional[str] = None):
        try:
            import openai
        except ImportError:
            raise ImportError("openai package required: pip install openai")

        self._openai = openai
        self._model = model
        self._dimension = self.DIMENSIONS.get(model, 1536)
        self._client = openai.AsyncOpenAI(api_key=api_key or None)

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def model_name(self) -> str:
        return self._model

    async def embed(self, text: str) -> np.ndarray:
        async with openai_embeddings_breaker:
            try:
                response = await self._client.embeddings.create(model=self._model, input=text)
            except self._openai.RateLimitError as e:
                raise RateLimitError(f"OpenAI rate limit: {e}") from e
        return np.array(response.data[0].embedding, dtype=np.float32)


class VoyageTextEmbedder(TextEmbedder):
    """
    Voyage AI text embeddings.

    Models:
    - voyage-3 (1024 dim)
    - voyage-3-lite (512 dim)
    """

    DIMENSIONS = {
        "voyage-3": 1024,
        "voyage-3-lite": 512,
        "voyage-2": 1024,
    }

    def __init__(self, model: str = "voyage-3", api_key: Optional[str] = None):
        try:
            import voyageai
        except ImportError:
            raise ImportError("voyageai package required: pip install voyageai")

        self._model = model
        self._dimension = self.DIMENSIONS.get(model, 1024)
        self._client = voyageai.AsyncClient(api_key=api_key or None)

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def model_name(self) -> str:
        return self._model

    async def embed(self, text: str) -> np.ndarray:
        async with voyage_breaker:
            result = await self._client.embed(
                texts=[text],
                model=self._model,
                input_type="document",
            )
        return np.array(result.embeddings[0], dtype=np.float32)


def create_text_embedder(config: EmbeddingConfig) -> TextEmbedder:
    """Factory for the configured provider."""
    if config.provider == "openai":
        return OpenAITextEmbedder(model=config.model, api_key=config.api_key)
    elif config.provider == "voyage":
        return VoyageTextEmbedder(model=config.model, api_key=config.api_key)
    else:
        raise ValueError(f"Unknown text embedder provider: {config.provider}")


# =============================================================================
# WORKER POOL
# =============================================================================

class EmbeddingPool:
    """
    Bounded-concurrency front for a TextEmbedder.

    Usage:
        pool = EmbeddingPool(embedder, EmbeddingConfig(max_concurrency=4))
        chunks = await pool.embed_chunks(chunks)
    """

    def __init__(self, embedder: TextEmbedder, config: Optional[EmbeddingConfig] = None):
        self.embedder = embedder
        self.config = config or EmbeddingConfig()
        self._semaphore = asyncio.Semaphore(self.config.max_concurrency)
        self._retry_config = RetryConfig(
            max_attempts=self.config.max_attempts,
            initial_delay=self.config.initial_delay,
            max_delay=self.config.max_delay,
            timeout=self.config.timeout_seconds,
        )
        self._stats = EmbeddingStats()

    @property
    def stats(self) -> EmbeddingStats:
        return self._stats

    @property
    def dimension(self) -> int:
        return self.embedder.dimension

    async def embed_text(self, text: str) -> np.ndarray:
        """
        Embed one text through the pool.

        Raises:
            EmbeddingError: all attempts failed or the circuit is open
        """
        def _on_retry(attempt, exc):
            self._stats.retry_count += 1

        self._stats.total_requests += 1
        async with self._semaphore:
            try:
                vector = await retry_with_backoff(
                    lambda: self.embedder.embed(text),
                    self._retry_config,
                    _on_retry,
                )
            except TimeoutError as e:
                self._stats.failed_requests += 1
                raise EmbeddingTimeoutError(f"Embedding timed out: {e}") from e
            except EmbeddingError:
                self._stats.failed_requests += 1
                raise
            except Exception as e:
                self._stats.failed_requests += 1
                raise EmbeddingError(f"Failed to embed text: {e}") from e

        vector = np.asarray(vector, dtype=np.float32).reshape(-1)
        if vector.shape[0] != self.embedder.dimension:
            self._stats.failed_requests += 1
            raise EmbeddingError(
                f"Expected {self.embedder.dimension} dimensions, got {vector.shape[0]}"
            )
        self._stats.successful_requests += 1
        return vector

    async def embed_chunks(self, chunks: Sequence[EmbeddingChunk]) -> List[EmbeddingChunk]:
        """Embed(chunks): vectors attached; failures left embedding_pending."""
        return list(await asyncio.gather(*(self._embed_chunk(c) for c in chunks)))

    async def _embed_chunk(self, chunk: EmbeddingChunk) -> EmbeddingChunk:
        try:
            vector = await self.embed_text(chunk.text)
        except EmbeddingError as e:
            self._stats.pending_chunks += 1
            logger.warning(f"Chunk {chunk.chunk_id} left embedding_pending: {e}")
            return chunk.with_vector(None)
        return chunk.with_vector(vector)
