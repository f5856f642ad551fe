"""
PPMatch - Search Service
========================

Entry points used by the API:

- project-context search: solicitation text of a project -> structured
  requirements -> Rank
- free-text search: query embedded once (cached) -> Rank on the vector
- research search: project-level partition only, lighter response
- context selection: free-text rank fed to the context-budget selector

Search configurations (named weight sets per owner) live here as well.

Usage:
    service = SearchService(store, index, extractor, engine, pool, cache, provider)
    response = await service.freetext_search("cloud migration for a federal agency")
"""

import logging
import threading
import time
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional

import numpy as np

from ppmatch.core.config import EmbeddingConfig, RankingConfig
from ppmatch.core.tech_extractor import TechnologyExtractor
from ppmatch.database.store import RecordFilter, RecordStore
from ppmatch.ingest.embeddings import EmbeddingPool
from ppmatch.rag.context import BudgetCandidate, ContextBudgetSelector, ContextSelection
from ppmatch.retrieval.cache import QueryEmbeddingCache
from ppmatch.retrieval.project_context import ProjectContextProvider
from ppmatch.retrieval.ranking import RankedResults, RankingEngine, RankQuery, format_money
from ppmatch.retrieval.requirements import RequirementParser
from ppmatch.retrieval.vector_index import VectorIndex
from ppmatch.shared.enums import ChunkType
from ppmatch.shared.exceptions import UnknownConfigurationError
from ppmatch.shared.models import SearchConfiguration, SearchResult

logger = logging.getLogger(__name__)

RESEARCH_BULLETS = 3


# =============================================================================
# Search Configurations
# =============================================================================

class ConfigurationStore:
    """
    Named weight sets per owner.

    `get_configuration(owner)` falls back to the system default when the
    owner has not marked one of theirs as default.
    """

    def __init__(self, system_default: SearchConfiguration):
        self.system_default = replace(system_default.validate(), is_default=True, owner=None)
        self._lock = threading.Lock()
        self._by_owner: Dict[str, Dict[str, SearchConfiguration]] = {}

    def list_configurations(self, owner: Optional[str] = None) -> List[SearchConfiguration]:
        owned = sorted(self._by_owner.get(owner, {}).values(), key=lambda c: c.name) if owner else []
        return [self.system_default] + owned

    def get_configuration(self, owner: Optional[str] = None) -> SearchConfiguration:
        for configuration in self._by_owner.get(owner, {}).values() if owner else ():
            if configuration.is_default:
                return configuration
        return self.system_default

    def get_named(self, owner: Optional[str], name: str) -> SearchConfiguration:
        if name == self.system_default.name:
            return self.system_default
        configuration = self._by_owner.get(owner, {}).get(name) if owner else None
        if configuration is None:
            raise UnknownConfigurationError(f"Unknown search configuration: {name}")
        return configuration

    def save_configuration(
        self,
        owner: str,
        name: str,
        weights: Dict[str, float],
        make_default: bool = False,
    ) -> SearchConfiguration:
        """
        Validate and store a configuration.

        Raises:
            InvalidWeightsError: weights outside [0, 1] or not summing to 1
        """
        configuration = SearchConfiguration.from_weights(
            weights, name=name, owner=owner, is_default=make_default
        )
        with self._lock:
            owned = dict(self._by_owner.get(owner, {}))
            if make_default:
                owned = {
                    n: replace(c, is_default=False) if c.is_default else c
                    for n, c in owned.items()
                }
            owned[name] = configuration
            by_owner = dict(self._by_owner)
            by_owner[owner] = owned
            self._by_owner = by_owner
        logger.info(f"Saved search configuration '{name}' for {owner} (default={make_default})")
        return configuration


# =============================================================================
# Responses
# =============================================================================

@dataclass
class SearchResponse:
    """Ranked windows plus timing."""
    primary: List[SearchResult]
    related: List[SearchResult]
    total_found: int
    search_time_ms: int
    offset: int = 0
    configuration: str = "default"
    requirements: Optional[Dict[str, Any]] = None

    @property
    def results(self) -> List[SearchResult]:
        return self.primary + self.related

    def to_dict(self) -> Dict[str, Any]:
        return {
            "results": [r.to_dict() for r in self.results],
            "primary": [r.to_dict() for r in self.primary],
            "related": [r.to_dict() for r in self.related],
            "total_found": self.total_found,
            "search_time_ms": self.search_time_ms,
            "offset": self.offset,
            "configuration": self.configuration,
            "requirements": self.requirements,
        }


@dataclass
class ResearchResult:
    record_id: str
    name: str
    similarity: float
    summary: str = ""
    bullets: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "record_id": self.record_id,
            "name": self.name,
            "similarity": round(self.similarity, 4),
            "summary": self.summary,
            "bullets": list(self.bullets),
        }


@dataclass
class ContextResponse:
    selection: ContextSelection
    total_found: int
    search_time_ms: int


# =============================================================================
# Service
# =============================================================================

class SearchService:
    """
    Orchestrates query embedding, requirement parsing and ranking.

    Holds no mutable ranking state: every call reads the current store and
    index snapshots.
    """

    def __init__(
        self,
        store: RecordStore,
        index: VectorIndex,
        extractor: TechnologyExtractor,
        engine: RankingEngine,
        pool: EmbeddingPool,
        query_cache: QueryEmbeddingCache,
        project_provider: ProjectContextProvider,
        configurations: Optional[ConfigurationStore] = None,
        ranking_config: Optional[RankingConfig] = None,
        embedding_config: Optional[EmbeddingConfig] = None,
    ):
        self.store = store
        self.index = index
        self.engine = engine
        self.pool = pool
        self.query_cache = query_cache
        self.project_provider = project_provider
        self.parser = RequirementParser(extractor)
        self.configurations = configurations or ConfigurationStore(engine.default_configuration())
        self.ranking_config = ranking_config or engine.config
        self.embedding_config = embedding_config or pool.config
        self.selector = ContextBudgetSelector()

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def resolve_configuration(
        self,
        weights: Optional[Dict[str, float]] = None,
        owner: Optional[str] = None,
    ) -> SearchConfiguration:
        """Request weights when given, else the owner's default."""
        if weights:
            return SearchConfiguration.from_weights(weights, name="request", owner=owner)
        return self.configurations.get_configuration(owner)

    async def embed_query(self, text: str) -> np.ndarray:
        """
        Raises:
            QueryEmbeddingPendingError: embedding not ready within the wait window
            EmbeddingError: embedding failed
        """
        return await self.query_cache.get_or_compute(
            text,
            self.pool.embed_text,
            wait_seconds=self.embedding_config.query_wait_seconds,
        )

    @staticmethod
    def _response(
        ranked: RankedResults,
        start_time: float,
        configuration: SearchConfiguration,
        requirements: Optional[Dict[str, Any]] = None,
    ) -> SearchResponse:
        return SearchResponse(
            primary=ranked.primary,
            related=ranked.related,
            total_found=ranked.total_found,
            search_time_ms=int((time.time() - start_time) * 1000),
            offset=ranked.offset,
            configuration=configuration.name,
            requirements=requirements,
        )

    # -------------------------------------------------------------------------
    # Searches
    # -------------------------------------------------------------------------

    async def project_context_search(
        self,
        project_id: str,
        weights: Optional[Dict[str, float]] = None,
        include_subcontractor: bool = True,
        offset: int = 0,
        owner: Optional[str] = None,
    ) -> SearchResponse:
        """Rank PP records against a project's past-performance requirements."""
        start_time = time.time()
        configuration = self.resolve_configuration(weights, owner)

        context = await self.project_provider.get_context(project_id)
        text = context.requirements_text
        requirements = self.parser.parse(text)
        vector = await self.embed_query(text)

        query = requirements.to_query(vector, include_subcontractor=include_subcontractor)
        ranked = await self.engine.rank(query, configuration, offset=offset)

        response = self._response(ranked, start_time, configuration, requirements.to_dict())
        logger.info(
            f"Project-context search {project_id}: {response.total_found} found "
            f"in {response.search_time_ms}ms"
        )
        return response

    async def freetext_search(
        self,
        query: str,
        weights: Optional[Dict[str, float]] = None,
        filters: Optional[RecordFilter] = None,
        offset: int = 0,
        owner: Optional[str] = None,
    ) -> SearchResponse:
        """Rank on the query embedding alone; no chunking of the query."""
        start_time = time.time()
        configuration = self.resolve_configuration(weights, owner)
        vector = await self.embed_query(query)

        rank_query = RankQuery(vector=vector, record_filter=filters, text=query)
        ranked = await self.engine.rank(rank_query, configuration, offset=offset)

        response = self._response(ranked, start_time, configuration)
        logger.info(
            f"Free-text search: {response.total_found} found in {response.search_time_ms}ms"
        )
        return response

    async def research_search(self, query: str, summary_only: bool = True) -> List[ResearchResult]:
        """Project-level similarity only, grouped by record, top N above the floor."""
        vector = await self.embed_query(query)
        active = {r.record_id for r in self.store.active_records()}
        snapshot = self.index.snapshot()
        hits = self.index.query(
            vector,
            ChunkType.PROJECT_LEVEL,
            k=snapshot.partitions[ChunkType.PROJECT_LEVEL].size,
            record_ids=active,
            snapshot=snapshot,
        )

        results: List[ResearchResult] = []
        seen = set()
        for hit in hits:
            if hit.similarity < self.ranking_config.research_min_similarity:
                break
            if hit.record_id in seen:
                continue
            seen.add(hit.record_id)
            record = self.store.get_record(hit.record_id)
            profile = self.store.get_profile(hit.record_id)
            results.append(ResearchResult(
                record_id=hit.record_id,
                name=record.name if record else hit.record_id,
                similarity=hit.similarity,
                summary=profile.summary if profile else "",
                bullets=[] if summary_only else self._research_bullets(hit.record_id),
            ))
            if len(results) >= self.ranking_config.research_limit:
                break
        return results

    def _research_bullets(self, record_id: str) -> List[str]:
        record = self.store.get_record(record_id)
        if record is None:
            return []
        bullets = []
        if record.customer:
            kind = f" ({record.customer_type.value})" if record.customer_type else ""
            bullets.append(f"Customer: {record.customer}{kind}")
        technologies = self.engine.key_capabilities(
            {a.technology_id: a for a in self.store.get_associations(record_id)}
        )
        if technologies:
            bullets.append(f"Technologies: {', '.join(technologies[:RESEARCH_BULLETS])}")
        if record.contract_value is not None:
            bullets.append(f"Contract value: {format_money(record.contract_value)}")
        if record.period_end:
            bullets.append(f"Period ended {record.period_end.isoformat()}")
        return bullets[:RESEARCH_BULLETS]

    async def select_context(
        self,
        query: str,
        budget_tokens: int,
        filters: Optional[RecordFilter] = None,
        weights: Optional[Dict[str, float]] = None,
        owner: Optional[str] = None,
    ) -> ContextResponse:
        """Free-text rank over all records, then greedy selection within the budget."""
        start_time = time.time()
        configuration = self.resolve_configuration(weights, owner).validate()
        vector = await self.embed_query(query)

        scored = await self.engine.score_all(
            RankQuery(vector=vector, record_filter=filters, text=query),
            configuration,
        )
        chunk_scores = self._capability_chunk_scores(vector, {r.record_id for r in scored})

        candidates = []
        for result in scored:
            profile = self.store.get_profile(result.record_id)
            if profile is None:
                continue
            candidates.append(BudgetCandidate(
                record_id=result.record_id,
                score=result.relevance_score,
                text=profile.narrative_text or profile.unified_text,
                name=result.name,
                chunks=chunk_scores.get(result.record_id, []),
            ))

        selection = self.selector.select(candidates, budget_tokens)
        return ContextResponse(
            selection=selection,
            total_found=len(scored),
            search_time_ms=int((time.time() - start_time) * 1000),
        )

    def _capability_chunk_scores(self, vector: np.ndarray, record_ids: set) -> Dict[str, List]:
        snapshot = self.index.snapshot()
        hits = self.index.query(
            vector,
            ChunkType.CAPABILITY_LEVEL,
            k=snapshot.partitions[ChunkType.CAPABILITY_LEVEL].size,
            record_ids=record_ids,
            snapshot=snapshot,
        )
        by_record: Dict[str, List] = {}
        for hit in hits:
            chunk = snapshot.chunks.get(hit.chunk_id)
            if chunk is None:
                continue
            by_record.setdefault(hit.record_id, []).append((hit.similarity, hit.chunk_id, chunk.text))
        return by_record
