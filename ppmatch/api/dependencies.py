"""
PPMatch - API Dependencies
==========================

Dependency injection for FastAPI routes.
Builds the service graph once and hands components to routes.
"""

import logging
import os
from functools import lru_cache
from typing import Optional

from fastapi import Depends, HTTPException, status

from ppmatch.capabilities.aggregator import CapabilityAggregator
from ppmatch.core.config import ServiceConfig
from ppmatch.core.taxonomy import TechnologyTaxonomy
from ppmatch.core.tech_extractor import TechnologyExtractor
from ppmatch.database.store import RecordStore
from ppmatch.ingest.chunker import Chunker
from ppmatch.ingest.embeddings import EmbeddingPool, TextEmbedder, create_text_embedder
from ppmatch.ingest.pipeline import IngestionPipeline
from ppmatch.rag.completion import AnthropicCompleter, TextCompleter
from ppmatch.retrieval.cache import QueryEmbeddingCache
from ppmatch.retrieval.project_context import (
    HttpProjectContextProvider,
    InMemoryProjectContextProvider,
    ProjectContextProvider,
)
from ppmatch.retrieval.ranking import RankingEngine
from ppmatch.retrieval.search_service import ConfigurationStore, SearchService
from ppmatch.retrieval.vector_index import VectorIndex

logger = logging.getLogger(__name__)


# =============================================================================
# Configuration
# =============================================================================

class Settings:
    """Application settings from environment."""

    # Providers
    openai_api_key: str = os.getenv("OPENAI_API_KEY", "")
    voyage_api_key: str = os.getenv("VOYAGE_API_KEY", "")
    anthropic_api_key: str = os.getenv("ANTHROPIC_API_KEY", "")

    # Document-management collaborator; empty means in-process projects
    project_context_url: str = os.getenv("PROJECT_CONTEXT_URL", "")
    project_context_timeout: float = float(os.getenv("PROJECT_CONTEXT_TIMEOUT", "10"))

    # API
    api_version: str = os.getenv("APP_VERSION", "1.0.0")
    api_title: str = "PPMatch API"
    debug: bool = os.getenv("DEBUG", "false").lower() == "true"

    @property
    def cors_origins(self) -> list[str]:
        """
        Get CORS origins from environment variable.

        Returns:
            List of allowed origins. Defaults to ["*"] for development.
        """
        origins_str = os.getenv("CORS_ORIGINS", "*")
        return [origin.strip() for origin in origins_str.split(",")]


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings."""
    return Settings()


# =============================================================================
# Service Container
# =============================================================================

class ServiceContainer:
    """
    Container for all services.

    Manages initialization and lifecycle of:
    - Taxonomy, record store and vector index
    - Embedding pool and completion service
    - Ingestion pipeline, capability aggregator and search service
    """

    _instance: Optional['ServiceContainer'] = None

    def __init__(self):
        self.config: Optional[ServiceConfig] = None
        self._taxonomy = None
        self._store = None
        self._index = None
        self._pool = None
        self._aggregator = None
        self._pipeline = None
        self._search = None
        self._project_provider = None
        self._initialized = False

    @classmethod
    def get_instance(cls) -> 'ServiceContainer':
        """Get singleton instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        cls._instance = None

    def build(
        self,
        settings: Optional[Settings] = None,
        config: Optional[ServiceConfig] = None,
        embedder: Optional[TextEmbedder] = None,
        completer: Optional[TextCompleter] = None,
        project_provider: Optional[ProjectContextProvider] = None,
    ) -> 'ServiceContainer':
        """Wire every component. Explicit arguments override the environment."""
        settings = settings or get_settings()
        self.config = config = config or ServiceConfig.from_env()
        logger.info("Initializing services...")

        # 1. Taxonomy and records
        self._taxonomy = TechnologyTaxonomy(config.taxonomy)
        self._store = RecordStore()
        extractor = TechnologyExtractor(self._taxonomy)
        logger.info(f"✓ Taxonomy loaded ({len(self._taxonomy)} technologies)")

        # 2. Embedder
        if embedder is None:
            try:
                embedder = create_text_embedder(config.embedding)
                logger.info(f"✓ {config.embedding.provider} embedder initialized")
            except Exception as e:
                logger.error(f"Embedder initialization failed: {e}")

        # 3. Completion
        if completer is None:
            if settings.anthropic_api_key:
                try:
                    completer = AnthropicCompleter(config.completion)
                    logger.info("✓ Claude completer initialized")
                except Exception as e:
                    logger.error(f"Completer initialization failed: {e}")
            else:
                logger.warning("ANTHROPIC_API_KEY not set - capability narratives use templates")

        # 4. Project documents
        if project_provider is None:
            if settings.project_context_url:
                project_provider = HttpProjectContextProvider(
                    settings.project_context_url,
                    timeout=settings.project_context_timeout,
                )
            else:
                project_provider = InMemoryProjectContextProvider()
        self._project_provider = project_provider

        # 5. Aggregator works without an embedder
        self._aggregator = CapabilityAggregator(self._store, self._taxonomy, completer)

        # 6. Index, pipeline and search need the embedder
        if embedder is not None:
            self._pool = EmbeddingPool(embedder, config.embedding)
            self._index = VectorIndex(embedder.dimension)
            self._pipeline = IngestionPipeline(
                store=self._store,
                taxonomy=self._taxonomy,
                extractor=extractor,
                chunker=Chunker(config.chunking),
                pool=self._pool,
                index=self._index,
                aggregator=self._aggregator,
            )
            engine = RankingEngine(self._store, self._index, self._taxonomy, config.ranking)
            self._search = SearchService(
                store=self._store,
                index=self._index,
                extractor=extractor,
                engine=engine,
                pool=self._pool,
                query_cache=QueryEmbeddingCache(config.embedding.query_cache_size),
                project_provider=project_provider,
                configurations=ConfigurationStore(engine.default_configuration()),
                ranking_config=config.ranking,
                embedding_config=config.embedding,
            )
            logger.info("✓ Ingestion pipeline and search service initialized")
        else:
            logger.warning("No embedder - ingestion and search disabled")

        self._initialized = True
        logger.info("All services initialized")
        return self

    async def initialize(self, settings: Optional[Settings] = None) -> None:
        """Initialize all services."""
        if self._initialized:
            return
        self.build(settings)

    async def shutdown(self) -> None:
        """Shutdown all services."""
        logger.info("Shutting down services...")
        if self._pipeline:
            await self._pipeline.wait_idle()
        if self._project_provider:
            await self._project_provider.close()
        self._initialized = False
        logger.info("Services shut down")

    # Properties for service access
    @property
    def taxonomy(self) -> Optional[TechnologyTaxonomy]:
        return self._taxonomy

    @property
    def store(self) -> Optional[RecordStore]:
        return self._store

    @property
    def index(self) -> Optional[VectorIndex]:
        return self._index

    @property
    def pool(self) -> Optional[EmbeddingPool]:
        return self._pool

    @property
    def aggregator(self) -> Optional[CapabilityAggregator]:
        return self._aggregator

    @property
    def pipeline(self) -> Optional[IngestionPipeline]:
        return self._pipeline

    @property
    def search(self) -> Optional[SearchService]:
        return self._search

    @property
    def project_provider(self) -> Optional[ProjectContextProvider]:
        return self._project_provider


# =============================================================================
# FastAPI Dependencies
# =============================================================================

async def get_container() -> ServiceContainer:
    """Get service container."""
    container = ServiceContainer.get_instance()
    if not container._initialized:
        await container.initialize()
    return container


async def get_search_service(
    container: ServiceContainer = Depends(get_container)
) -> SearchService:
    """Get search service."""
    if container.search is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Search service not available"
        )
    return container.search


async def get_pipeline(
    container: ServiceContainer = Depends(get_container)
) -> IngestionPipeline:
    """Get ingestion pipeline."""
    if container.pipeline is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Ingestion pipeline not available"
        )
    return container.pipeline


async def get_taxonomy(
    container: ServiceContainer = Depends(get_container)
) -> TechnologyTaxonomy:
    """Get technology taxonomy."""
    if container.taxonomy is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Taxonomy not available"
        )
    return container.taxonomy


async def get_aggregator(
    container: ServiceContainer = Depends(get_container)
) -> CapabilityAggregator:
    """Get capability aggregator."""
    if container.aggregator is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Capability aggregator not available"
        )
    return container.aggregator
