"""
PPMatch - Service Configuration
===============================

Dataclass configuration blocks for the recommendation core.
Every block carries the documented defaults and can be read from the
environment with `from_env()`.

Usage:
    config = ServiceConfig.from_env()
    pipeline = IngestionPipeline(..., config=config)
"""

import os
from dataclasses import dataclass, field
from typing import Tuple


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, str(default)).lower() in ("1", "true", "yes")


DEFAULT_OUTCOME_KEYWORDS: Tuple[str, ...] = (
    "result", "outcome", "achievement", "success", "delivered", "completed",
    "performance", "metric", "kpi", "improved", "reduced", "increased",
    "saved", "cost", "schedule", "quality", "satisfaction",
)


@dataclass
class TaxonomyConfig:
    """Technology taxonomy and extractor thresholds."""
    new_term_threshold: float = 0.6          # strictly exceeded to create a pending term
    min_association_confidence: float = 0.6  # keyword matches below this are dropped
    context_window_chars: int = 100
    seed_vocabulary: bool = True

    @classmethod
    def from_env(cls) -> 'TaxonomyConfig':
        return cls(
            new_term_threshold=float(os.getenv("PPMATCH_NEW_TERM_THRESHOLD", "0.6")),
            min_association_confidence=float(os.getenv("PPMATCH_MIN_ASSOCIATION_CONFIDENCE", "0.6")),
            context_window_chars=int(os.getenv("PPMATCH_CONTEXT_WINDOW_CHARS", "100")),
            seed_vocabulary=_env_bool("PPMATCH_SEED_VOCABULARY", True),
        )


@dataclass
class ChunkingConfig:
    """Word-window chunking for capability-level chunks."""
    max_words: int = 500
    min_words: int = 50
    overlap_words: int = 25

    # Backend input ceiling for the single project-level chunk
    project_max_words: int = 6000

    outcome_keywords: Tuple[str, ...] = DEFAULT_OUTCOME_KEYWORDS

    def __post_init__(self):
        if self.min_words <= 0 or self.max_words < self.min_words:
            raise ValueError("chunking requires 0 < min_words <= max_words")
        if not (0 <= self.overlap_words < self.min_words):
            raise ValueError("chunking requires 0 <= overlap_words < min_words")

    @classmethod
    def from_env(cls) -> 'ChunkingConfig':
        return cls(
            max_words=int(os.getenv("PPMATCH_CHUNK_MAX_WORDS", "500")),
            min_words=int(os.getenv("PPMATCH_CHUNK_MIN_WORDS", "50")),
            overlap_words=int(os.getenv("PPMATCH_CHUNK_OVERLAP_WORDS", "25")),
            project_max_words=int(os.getenv("PPMATCH_PROJECT_MAX_WORDS", "6000")),
        )


@dataclass
class EmbeddingConfig:
    """External embed() service settings."""
    provider: str = "openai"
    model: str = "text-embedding-3-small"
    dimension: int = 1536
    api_key: str = ""

    # Worker pool and retry policy
    max_concurrency: int = 4
    timeout_seconds: float = 30.0
    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 30.0

    # Free-text queries wait this long before a retryable "try again"
    query_wait_seconds: float = 5.0
    query_cache_size: int = 1000

    @classmethod
    def from_env(cls) -> 'EmbeddingConfig':
        provider = os.getenv("PPMATCH_EMBED_PROVIDER", "openai").lower()
        default_model = "voyage-3" if provider == "voyage" else "text-embedding-3-small"
        key_var = "VOYAGE_API_KEY" if provider == "voyage" else "OPENAI_API_KEY"
        return cls(
            provider=provider,
            model=os.getenv("PPMATCH_EMBED_MODEL", default_model),
            dimension=int(os.getenv("PPMATCH_EMBED_DIMENSION", "1024" if provider == "voyage" else "1536")),
            api_key=os.getenv(key_var, ""),
            max_concurrency=int(os.getenv("PPMATCH_EMBED_WORKERS", "4")),
            timeout_seconds=float(os.getenv("PPMATCH_EMBED_TIMEOUT", "30")),
            max_attempts=int(os.getenv("PPMATCH_EMBED_MAX_ATTEMPTS", "3")),
            query_wait_seconds=float(os.getenv("PPMATCH_QUERY_EMBED_WAIT", "5")),
            query_cache_size=int(os.getenv("PPMATCH_QUERY_CACHE_SIZE", "1000")),
        )


@dataclass
class CompletionConfig:
    """External complete() service settings."""
    model: str = "claude-sonnet-4-20250514"
    api_key: str = ""
    max_tokens: int = 400
    temperature: float = 0.2
    max_concurrency: int = 4
    timeout_seconds: float = 60.0
    max_attempts: int = 3

    @classmethod
    def from_env(cls) -> 'CompletionConfig':
        return cls(
            model=os.getenv("CLAUDE_MODEL", "claude-sonnet-4-20250514"),
            api_key=os.getenv("ANTHROPIC_API_KEY", ""),
            max_tokens=int(os.getenv("PPMATCH_NARRATIVE_MAX_TOKENS", "400")),
            max_concurrency=int(os.getenv("PPMATCH_COMPLETION_WORKERS", "4")),
            timeout_seconds=float(os.getenv("PPMATCH_COMPLETION_TIMEOUT", "60")),
        )


@dataclass
class RankingConfig:
    """Ranking defaults and result windows."""
    technology_weight: float = 0.40
    domain_weight: float = 0.30
    contract_size_weight: float = 0.20
    customer_type_weight: float = 0.10

    version_mismatch_score: float = 0.5
    customer_mismatch_score: float = 0.3
    explanation_share: float = 0.15

    primary_window: int = 3
    related_window: int = 3
    key_capability_limit: int = 5

    research_min_similarity: float = 0.4
    research_limit: int = 5

    @classmethod
    def from_env(cls) -> 'RankingConfig':
        return cls(
            technology_weight=float(os.getenv("PPMATCH_WEIGHT_TECHNOLOGY", "0.40")),
            domain_weight=float(os.getenv("PPMATCH_WEIGHT_DOMAIN", "0.30")),
            contract_size_weight=float(os.getenv("PPMATCH_WEIGHT_CONTRACT_SIZE", "0.20")),
            customer_type_weight=float(os.getenv("PPMATCH_WEIGHT_CUSTOMER_TYPE", "0.10")),
            research_min_similarity=float(os.getenv("PPMATCH_RESEARCH_MIN_SIMILARITY", "0.4")),
        )


@dataclass
class ServiceConfig:
    """
    Complete configuration for the recommendation core.

    Usage:
        config = ServiceConfig(
            embedding=EmbeddingConfig(max_concurrency=8),
        )
    """
    taxonomy: TaxonomyConfig = field(default_factory=TaxonomyConfig)
    chunking: ChunkingConfig = field(default_factory=ChunkingConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    completion: CompletionConfig = field(default_factory=CompletionConfig)
    ranking: RankingConfig = field(default_factory=RankingConfig)

    @classmethod
    def from_env(cls) -> 'ServiceConfig':
        """Create config from environment variables."""
        return cls(
            taxonomy=TaxonomyConfig.from_env(),
            chunking=ChunkingConfig.from_env(),
            embedding=EmbeddingConfig.from_env(),
            completion=CompletionConfig.from_env(),
            ranking=RankingConfig.from_env(),
        )
