"""
PPMatch - Test Configuration
============================

Shared pytest fixtures for all tests.
"""

import hashlib
import re
import sys
from datetime import date
from pathlib import Path
from typing import List, Optional

import numpy as np
import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from ppmatch.core.config import (  # noqa: E402
    ChunkingConfig,
    EmbeddingConfig,
    ServiceConfig,
    TaxonomyConfig,
)
from ppmatch.core.taxonomy import TechnologyTaxonomy  # noqa: E402
from ppmatch.core.tech_extractor import TechnologyExtractor  # noqa: E402
from ppmatch.database.store import RecordStore  # noqa: E402
from ppmatch.ingest.embeddings import TextEmbedder  # noqa: E402
from ppmatch.ingest.unifier import ContentUnifier  # noqa: E402
from ppmatch.rag.completion import TextCompleter  # noqa: E402
from ppmatch.shared.enums import ChunkType, ContractRole, CustomerType  # noqa: E402
from ppmatch.shared.exceptions import CompletionError  # noqa: E402
from ppmatch.shared.models import (  # noqa: E402
    EmbeddingChunk,
    PastPerformanceRecord,
    PPTechnologyAssociation,
)

DIMENSION = 64


# =============================================================================
# Sample Text
# =============================================================================

JAVA_NARRATIVE = (
    "The team developed a claims processing system using Java 17 and Spring Boot "
    "for the USDA. We delivered twelve releases on schedule and reduced processing "
    "time by forty percent. The application runs on AWS with Kubernetes."
)

PYTHON_NARRATIVE = (
    "Our analysts built a data platform with Python and PostgreSQL for a state "
    "health agency. The solution improved reporting quality and increased data "
    "availability for county offices."
)

SOLICITATION_TEXT = (
    "Past Performance: Offerors must demonstrate Java 17+ and Spring Boot experience "
    "on contracts valued between $2 million and $5 million for a federal agency "
    "within the last 5 years."
)


# =============================================================================
# Mock Services
# =============================================================================

_TOKEN = re.compile(r"[a-z0-9]+")


class MockEmbedder(TextEmbedder):
    """
    Deterministic bag-of-words embedder.

    Each token hashes to one dimension, so texts sharing words have a
    positive cosine similarity and identical texts have similarity 1.
    """

    def __init__(self, dimension: int = DIMENSION):
        self._dimension = dimension
        self.calls: List[str] = []

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def model_name(self) -> str:
        return "mock-bow"

    def vector(self, text: str) -> np.ndarray:
        vec = np.zeros(self._dimension, dtype=np.float32)
        for token in _TOKEN.findall(text.lower()):
            bucket = int(hashlib.md5(token.encode("utf-8")).hexdigest(), 16) % self._dimension
            vec[bucket] += 1.0
        if not vec.any():
            vec[0] = 1.0
        return vec

    async def embed(self, text: str) -> np.ndarray:
        self.calls.append(text)
        return self.vector(text)


class MockCompleter(TextCompleter):
    """Returns a canned narrative and records prompts."""

    def __init__(self, text: str = "Proven capability across the portfolio."):
        self.text = text
        self.prompts: List[str] = []
        self.fail = False

    async def complete(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.fail:
            raise CompletionError("completion backend unavailable")
        return self.text


# =============================================================================
# Factories
# =============================================================================

def make_record(
    record_id: str = "pp-1",
    name: str = "Claims Modernization",
    customer: str = "USDA",
    customer_type: Optional[CustomerType] = CustomerType.FEDERAL,
    contract_value: Optional[float] = 2_500_000.0,
    role: ContractRole = ContractRole.PRIME,
    period_start: Optional[date] = date(2019, 10, 1),
    period_end: Optional[date] = date(2023, 9, 30),
    resource_count: int = 12,
) -> PastPerformanceRecord:
    return PastPerformanceRecord(
        record_id=record_id,
        name=name,
        customer=customer,
        customer_type=customer_type,
        contract_value=contract_value,
        role=role,
        period_start=period_start,
        period_end=period_end,
        resource_count=resource_count,
    )


def make_association(
    record_id: str,
    technology_id: str,
    version: Optional[str] = None,
    confidence: float = 0.9,
) -> PPTechnologyAssociation:
    return PPTechnologyAssociation(
        record_id=record_id,
        technology_id=technology_id,
        confidence=confidence,
        version=version,
    )


def make_chunk(
    record_id: str,
    vector: Optional[np.ndarray],
    generation: int = 1,
    chunk_type: ChunkType = ChunkType.PROJECT_LEVEL,
    ordinal: int = 0,
    text: str = "chunk text",
) -> EmbeddingChunk:
    suffix = "p" if chunk_type == ChunkType.PROJECT_LEVEL else "c"
    return EmbeddingChunk(
        chunk_id=f"{record_id}:g{generation}:{suffix}{ordinal}",
        record_id=record_id,
        chunk_type=chunk_type,
        text=text,
        ordinal=ordinal,
        generation=generation,
        vector=None if vector is None else np.asarray(vector, dtype=np.float32),
    )


def unit_vector(index: int, dimension: int = DIMENSION) -> np.ndarray:
    vec = np.zeros(dimension, dtype=np.float32)
    vec[index] = 1.0
    return vec


def small_service_config() -> ServiceConfig:
    """Small dimensions and no backoff sleeps."""
    return ServiceConfig(
        taxonomy=TaxonomyConfig(),
        chunking=ChunkingConfig(),
        embedding=EmbeddingConfig(
            provider="mock",
            dimension=DIMENSION,
            max_attempts=1,
            initial_delay=0.0,
            max_delay=0.0,
            timeout_seconds=5.0,
            query_wait_seconds=5.0,
        ),
    )


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def taxonomy():
    """Seeded taxonomy."""
    return TechnologyTaxonomy()


@pytest.fixture
def empty_taxonomy():
    return TechnologyTaxonomy(seed=False)


@pytest.fixture
def extractor(taxonomy):
    return TechnologyExtractor(taxonomy)


@pytest.fixture
def store():
    return RecordStore()


@pytest.fixture
def unifier():
    return ContentUnifier()


@pytest.fixture
def mock_embedder():
    """Get mock embedder."""
    return MockEmbedder()


@pytest.fixture
def mock_completer():
    """Get mock completer."""
    return MockCompleter()


@pytest.fixture
def sample_record():
    return make_record()


# =============================================================================
# Environment
# =============================================================================

@pytest.fixture(autouse=True)
def set_test_env(monkeypatch):
    """Keep tests away from real backends."""
    monkeypatch.setenv("DEBUG", "true")
    monkeypatch.setenv("OPENAI_API_KEY", "")
    monkeypatch.setenv("VOYAGE_API_KEY", "")
    monkeypatch.setenv("ANTHROPIC_API_KEY", "")
    monkeypatch.setenv("PROJECT_CONTEXT_URL", "")


# =============================================================================
# Helpers
# =============================================================================

def assert_response_ok(response, expected_status: int = 200):
    """Assert response has expected status."""
    assert response.status_code == expected_status, f"Expected {expected_status}, got {response.status_code}: {response.text}"
