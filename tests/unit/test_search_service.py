"""
Unit tests for the search service and search configurations.
"""

from datetime import date, timedelta
from unittest.mock import AsyncMock, patch

import pytest

from ppmatch.database.store import RecordFilter
from ppmatch.ingest.embeddings import EmbeddingPool
from ppmatch.retrieval.cache import QueryEmbeddingCache
from ppmatch.retrieval.project_context import InMemoryProjectContextProvider
from ppmatch.retrieval.ranking import RankingEngine
from ppmatch.retrieval.search_service import ConfigurationStore, SearchService
from ppmatch.retrieval.vector_index import VectorIndex
from ppmatch.shared.enums import ChunkType, CustomerType
from ppmatch.shared.exceptions import (
    InvalidWeightsError,
    ProjectContextNotFoundError,
    UnknownConfigurationError,
)
from ppmatch.shared.models import SearchConfiguration, UnifiedContentProfile
from tests.conftest import (
    DIMENSION,
    JAVA_NARRATIVE,
    PYTHON_NARRATIVE,
    SOLICITATION_TEXT,
    make_association,
    make_chunk,
    make_record,
    small_service_config,
)

TECH_HEAVY = {"technology": 0.7, "domain": 0.1, "contract_size": 0.1, "customer_type": 0.1}
DOMAIN_HEAVY = {"technology": 0.1, "domain": 0.7, "contract_size": 0.1, "customer_type": 0.1}


# =============================================================================
# Configurations
# =============================================================================

class TestConfigurationStore:

    @pytest.fixture
    def configurations(self):
        return ConfigurationStore(SearchConfiguration())

    def test_system_default(self, configurations):
        assert [c.name for c in configurations.list_configurations()] == ["default"]
        assert configurations.get_configuration("alice").name == "default"
        assert configurations.get_configuration().is_default

    def test_owner_default(self, configurations):
        configurations.save_configuration("alice", "tech-heavy", TECH_HEAVY, make_default=True)
        assert configurations.get_configuration("alice").name == "tech-heavy"
        assert configurations.get_configuration("bob").name == "default"

    def test_single_default_per_owner(self, configurations):
        configurations.save_configuration("alice", "tech-heavy", TECH_HEAVY, make_default=True)
        configurations.save_configuration("alice", "domain-heavy", DOMAIN_HEAVY, make_default=True)

        owned = {c.name: c for c in configurations.list_configurations("alice")}
        assert set(owned) == {"default", "domain-heavy", "tech-heavy"}
        assert not owned["tech-heavy"].is_default
        assert configurations.get_configuration("alice").name == "domain-heavy"

    def test_get_named(self, configurations):
        configurations.save_configuration("alice", "tech-heavy", TECH_HEAVY)
        assert configurations.get_named("alice", "tech-heavy").technology == 0.7
        assert configurations.get_named("alice", "default").name == "default"
        with pytest.raises(UnknownConfigurationError):
            configurations.get_named("bob", "tech-heavy")

    def test_invalid_weights_not_saved(self, configurations):
        with pytest.raises(InvalidWeightsError):
            configurations.save_configuration("alice", "bad", {**TECH_HEAVY, "technology": 0.9})
        assert [c.name for c in configurations.list_configurations("alice")] == ["default"]


# =============================================================================
# Service
# =============================================================================

class Harness:
    """Search service over a hand-populated store and index."""

    def __init__(self, store, taxonomy, extractor, embedder):
        self.store = store
        self.embedder = embedder
        self.index = VectorIndex(DIMENSION)
        self.provider = InMemoryProjectContextProvider()
        engine = RankingEngine(store, self.index, taxonomy)
        pool = EmbeddingPool(embedder, small_service_config().embedding)
        self.service = SearchService(
            store, self.index, extractor, engine, pool, QueryEmbeddingCache(), self.provider,
        )

    def add(self, record, text, technologies=()):
        self.store.upsert_record(record)
        profile = UnifiedContentProfile(
            record_id=record.record_id,
            version=1,
            unified_text=text,
            narrative_text=text,
            summary=text.split(". ")[0] + ".",
            word_count=len(text.split()),
            content_hash=record.record_id,
        )
        self.store.commit_profile(
            profile, [make_association(record.record_id, tid, version) for tid, version in technologies]
        )
        vector = self.embedder.vector(text)
        self.index.replace_record(record.record_id, [
            make_chunk(record.record_id, vector, text=text),
            make_chunk(record.record_id, vector, chunk_type=ChunkType.CAPABILITY_LEVEL, text=text),
        ], 1, period_end=record.period_end)


@pytest.fixture
def harness(store, taxonomy, extractor, mock_embedder):
    harness = Harness(store, taxonomy, extractor, mock_embedder)
    recent = date.today() - timedelta(days=100)
    harness.add(
        make_record("pp-java", contract_value=2.5e6, period_end=recent),
        JAVA_NARRATIVE,
        [("java", "17"), ("spring-boot", None), ("aws", None)],
    )
    harness.add(
        make_record("pp-python", name="Health Data Platform", customer="State Health Agency",
                    customer_type=CustomerType.STATE, contract_value=1e6, period_end=recent),
        PYTHON_NARRATIVE,
        [("python", None), ("postgresql", None)],
    )
    return harness


class TestSearchService:

    @pytest.mark.asyncio
    async def test_freetext_search(self, harness, mock_embedder):
        response = await harness.service.freetext_search(JAVA_NARRATIVE)

        assert response.primary[0].record_id == "pp-java"
        assert response.total_found == 2
        assert response.configuration == "default"
        assert mock_embedder.calls == [JAVA_NARRATIVE]

    @pytest.mark.asyncio
    async def test_query_embedded_once(self, harness, mock_embedder):
        await harness.service.freetext_search("java claims")
        await harness.service.freetext_search("Java  Claims")
        assert len(mock_embedder.calls) == 1

    @pytest.mark.asyncio
    async def test_freetext_filters(self, harness):
        response = await harness.service.freetext_search(
            JAVA_NARRATIVE, filters=RecordFilter(customer_type=CustomerType.STATE)
        )
        assert [r.record_id for r in response.results] == ["pp-python"]

    @pytest.mark.asyncio
    async def test_request_weights(self, harness):
        response = await harness.service.freetext_search(JAVA_NARRATIVE, weights=DOMAIN_HEAVY)
        assert response.configuration == "request"
        with pytest.raises(InvalidWeightsError):
            await harness.service.freetext_search(JAVA_NARRATIVE, weights={"technology": 1.0})

    @pytest.mark.asyncio
    async def test_owner_default_used(self, harness):
        harness.service.configurations.save_configuration("alice", "tech-heavy", TECH_HEAVY, make_default=True)
        response = await harness.service.freetext_search(JAVA_NARRATIVE, owner="alice")
        assert response.configuration == "tech-heavy"

    @pytest.mark.asyncio
    async def test_project_context_search(self, harness):
        harness.provider.register("proj-1", ["Cover letter.", SOLICITATION_TEXT])
        response = await harness.service.project_context_search("proj-1")

        top = response.primary[0]
        assert top.record_id == "pp-java"
        assert top.explanation[0].startswith("Technology match (2/2)")
        assert [t["technology_id"] for t in response.requirements["technologies"]] == ["java", "spring-boot"]

    @pytest.mark.asyncio
    async def test_project_context_missing(self, harness):
        with pytest.raises(ProjectContextNotFoundError):
            await harness.service.project_context_search("nope")

    @pytest.mark.asyncio
    async def test_research_search(self, harness):
        results = await harness.service.research_search(JAVA_NARRATIVE)

        assert results[0].record_id == "pp-java"
        assert results[0].similarity == pytest.approx(1.0)
        assert results[0].bullets == []
        assert all(r.similarity >= 0.4 for r in results)

    @pytest.mark.asyncio
    async def test_research_bullets(self, harness):
        results = await harness.service.research_search(JAVA_NARRATIVE, summary_only=False)
        assert results[0].bullets[0] == "Customer: USDA (federal)"
        assert results[0].bullets[1] == "Technologies: AWS, Java 17, Spring Boot"

    @pytest.mark.asyncio
    async def test_research_below_floor(self, harness, mock_embedder):
        opposite = -(mock_embedder.vector(JAVA_NARRATIVE) + mock_embedder.vector(PYTHON_NARRATIVE))
        with patch.object(harness.service, "embed_query", AsyncMock(return_value=opposite)):
            assert await harness.service.research_search("anything") == []

    @pytest.mark.asyncio
    async def test_select_context_within_budget(self, harness):
        response = await harness.service.select_context(JAVA_NARRATIVE, budget_tokens=1000)
        selection = response.selection
        assert [s.record_id for s in selection.selected][0] == "pp-java"
        assert selection.total_tokens <= 1000
        assert response.total_found == 2

    @pytest.mark.asyncio
    async def test_select_context_tight_budget(self, harness):
        response = await harness.service.select_context(JAVA_NARRATIVE, budget_tokens=10)
        assert response.selection.total_tokens <= 10
        assert response.selection.selected == []
