"""
API tests through the FastAPI app with an in-process service container.
"""

from datetime import date, timedelta
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from ppmatch.api.dependencies import ServiceContainer
from ppmatch.api.main import create_app
from ppmatch.retrieval.project_context import InMemoryProjectContextProvider
from ppmatch.shared.enums import TechnologyCategory
from ppmatch.shared.exceptions import QueryEmbeddingPendingError
from tests.conftest import (
    JAVA_NARRATIVE,
    PYTHON_NARRATIVE,
    SOLICITATION_TEXT,
    MockCompleter,
    MockEmbedder,
    small_service_config,
)

pytestmark = pytest.mark.integration

PERIOD_END = date.today() - timedelta(days=30)

JAVA_RECORD = {
    "name": "Claims Modernization",
    "customer": "USDA",
    "customerType": "federal",
    "contractValue": "$2.5M",
    "role": "prime",
    "periodStart": (PERIOD_END - timedelta(days=3 * 365)).isoformat(),
    "periodEnd": PERIOD_END.isoformat(),
    "resourceCount": 12,
}

PYTHON_RECORD = {
    **JAVA_RECORD,
    "name": "Health Data Platform",
    "customer": "State Health Agency",
    "customerType": "state",
    "contractValue": 1000000,
}

TECH_HEAVY = {"technology": 0.7, "domain": 0.1, "contractSize": 0.1, "customerType": 0.1}


@pytest.fixture
def container():
    container = ServiceContainer().build(
        config=small_service_config(),
        embedder=MockEmbedder(),
        completer=MockCompleter(),
        project_provider=InMemoryProjectContextProvider(),
    )
    ServiceContainer._instance = container
    yield container
    ServiceContainer.reset_instance()


@pytest.fixture
def client(container):
    with TestClient(create_app()) as client:
        yield client


def ingest(client, record_id, text, record):
    response = client.post(f"/api/v1/ingest/{record_id}", json={"unifiedText": text, "record": record})
    assert response.status_code == 200, response.text
    return response.json()


@pytest.fixture
def portfolio(client):
    ingest(client, "pp-java", JAVA_NARRATIVE, JAVA_RECORD)
    ingest(client, "pp-python", PYTHON_NARRATIVE, PYTHON_RECORD)
    return client


# =============================================================================
# Health
# =============================================================================

class TestHealth:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200

        data = response.json()
        assert data["status"] == "healthy"
        assert {"taxonomy", "index", "embeddings", "ingestion", "capabilities", "circuit_breakers"} <= set(
            data["components"]
        )
        assert data["components"]["taxonomy"]["details"]["total"] > 0

    def test_root(self, client):
        assert client.get("/").json()["health"] == "/health"


# =============================================================================
# Ingestion
# =============================================================================

class TestIngestRoutes:

    def test_ingest_ack(self, client):
        ack = ingest(client, "pp-java", JAVA_NARRATIVE, JAVA_RECORD)

        assert ack["recordID"] == "pp-java"
        assert ack["status"] == "committed"
        assert ack["generation"] == 1
        assert ack["chunkCount"] == 1
        assert ack["pendingChunks"] == 0
        assert {"java", "spring-boot"} <= set(ack["technologies"])
        assert ack["error"] is None

    def test_ingest_with_documents(self, client, container):
        response = client.post("/api/v1/ingest/pp-docs", json={
            "record": JAVA_RECORD,
            "documents": [
                {"documentID": "d1", "documentClass": "narrative", "filename": "narrative.docx",
                 "text": JAVA_NARRATIVE},
            ],
        })
        assert response.status_code == 200
        assert response.json()["status"] == "committed"
        assert container.store.get_record("pp-docs").contract_value == 2_500_000.0

    def test_unknown_record(self, client):
        response = client.post("/api/v1/ingest/missing", json={"unifiedText": JAVA_NARRATIVE})

        assert response.status_code == 404
        assert response.json()["code"] == "RECORD_NOT_FOUND"
        assert response.json()["retryable"] is False

    def test_archive(self, portfolio):
        response = portfolio.post("/api/v1/ingest/pp-java/archive")
        assert response.status_code == 200
        assert response.json() == {"recordID": "pp-java", "status": "archived"}

        results = portfolio.post("/api/v1/search/freetext", json={"query": JAVA_NARRATIVE}).json()["results"]
        assert "pp-java" not in [r["recordID"] for r in results]

    def test_archive_unknown(self, client):
        assert client.post("/api/v1/ingest/missing/archive").status_code == 404

    def test_retry_pending(self, portfolio):
        response = portfolio.post("/api/v1/ingest/retry-pending")
        assert response.status_code == 200
        assert response.json() == {
            "attempted": 0,
            "embedded": 0,
            "stillPending": 0,
            "stale": 0,
            "narrativesRegenerated": 0,
        }


# =============================================================================
# Search
# =============================================================================

class TestSearchRoutes:

    def test_freetext(self, portfolio):
        response = portfolio.post("/api/v1/search/freetext", json={"query": JAVA_NARRATIVE})
        assert response.status_code == 200

        data = response.json()
        assert data["results"][0]["recordID"] == "pp-java"
        assert data["totalFound"] == 2
        assert data["configuration"] == "default"
        assert "searchTimeMs" in data
        assert data["results"][0]["relevanceScore"] > data["results"][1]["relevanceScore"]

    def test_freetext_filters(self, portfolio):
        response = portfolio.post("/api/v1/search/freetext", json={
            "query": JAVA_NARRATIVE,
            "filters": {"customerType": "state"},
        })
        assert [r["recordID"] for r in response.json()["results"]] == ["pp-python"]

    def test_project_context(self, portfolio, container):
        container.project_provider.register("proj-1", [SOLICITATION_TEXT])

        response = portfolio.post("/api/v1/search/project-context", json={"projectID": "proj-1"})
        assert response.status_code == 200

        top = response.json()["results"][0]
        assert top["recordID"] == "pp-java"
        assert top["explanation"][0] == "Technology match (2/2): Java 17, Spring Boot"
        assert "Java 17" in top["keyCapabilities"]
        assert response.json()["requirements"]["customer_type"] == "federal"

    def test_unknown_project(self, portfolio):
        response = portfolio.post("/api/v1/search/project-context", json={"projectID": "nope"})
        assert response.status_code == 404
        assert response.json()["code"] == "PROJECT_CONTEXT_NOT_FOUND"

    def test_invalid_weights(self, portfolio):
        response = portfolio.post("/api/v1/search/freetext", json={
            "query": JAVA_NARRATIVE,
            "weights": {**TECH_HEAVY, "technology": 0.9},
        })
        assert response.status_code == 422
        assert response.json()["code"] == "INVALID_WEIGHTS"

    def test_validation_error(self, client):
        response = client.post("/api/v1/search/freetext", json={"query": ""})
        assert response.status_code == 422
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_query_embedding_pending_is_retryable(self, portfolio, container):
        pending = AsyncMock(side_effect=QueryEmbeddingPendingError("query embedding still running"))
        with patch.object(container.search, "embed_query", pending):
            response = portfolio.post("/api/v1/search/freetext", json={"query": "cloud migration"})

        assert response.status_code == 503
        assert response.headers["retry-after"] == "2"
        assert response.json()["retryable"] is True

    def test_research(self, portfolio):
        response = portfolio.post("/api/v1/search/research", json={
            "query": JAVA_NARRATIVE,
            "returnSummaryOnly": False,
        })
        assert response.status_code == 200

        top = response.json()["results"][0]
        assert top["recordID"] == "pp-java"
        assert top["similarity"] == pytest.approx(1.0, abs=1e-3)
        assert top["bullets"][0] == "Customer: USDA (federal)"

    def test_context(self, portfolio):
        response = portfolio.post("/api/v1/search/context", json={
            "query": JAVA_NARRATIVE,
            "budgetTokens": 1000,
        })
        assert response.status_code == 200

        data = response.json()
        assert data["selected"][0]["recordID"] == "pp-java"
        assert data["budgetTokens"] == 1000
        assert data["totalTokens"] <= 1000
        assert data["totalTokens"] == sum(s["estimatedTokens"] for s in data["selected"])

    def test_configurations(self, client):
        response = client.post("/api/v1/search/configurations", json={
            "owner": "alice",
            "name": "tech-heavy",
            "weights": TECH_HEAVY,
            "makeDefault": True,
        })
        assert response.status_code == 200
        assert response.json()["isDefault"] is True
        assert response.json()["weights"]["technology"] == 0.7

        listing = client.get("/api/v1/search/configurations", params={"owner": "alice"}).json()
        assert {c["name"] for c in listing["configurations"]} == {"default", "tech-heavy"}
        assert listing["active"]["name"] == "tech-heavy"
        assert client.get("/api/v1/search/configurations").json()["active"]["name"] == "default"

    def test_owner_default_applied(self, portfolio):
        portfolio.post("/api/v1/search/configurations", json={
            "owner": "alice", "name": "tech-heavy", "weights": TECH_HEAVY, "makeDefault": True,
        })
        response = portfolio.post("/api/v1/search/freetext", json={"query": JAVA_NARRATIVE, "owner": "alice"})
        assert response.json()["configuration"] == "tech-heavy"


# =============================================================================
# Technologies and capabilities
# =============================================================================

class TestTechnologyRoutes:

    def test_list(self, client, container):
        container.taxonomy.propose("Quarkus", TechnologyCategory.FRAMEWORK, 0.9)

        data = client.get("/api/v1/technologies").json()
        assert "java" in [t["technologyID"] for t in data["approved"]]
        assert [t["technologyID"] for t in data["pendingApproval"]] == ["quarkus"]
        assert "quarkus" not in [t["technologyID"] for items in data["categories"].values() for t in items]

    def test_approve_and_reject(self, client, container):
        container.taxonomy.propose("Quarkus", TechnologyCategory.FRAMEWORK, 0.9)

        approved = client.post("/api/v1/technologies/approve", json={"technologyIDs": ["quarkus", "nope"]})
        assert approved.status_code == 200
        assert approved.json()["changed"] == ["quarkus"]
        assert approved.json()["notFound"] == ["nope"]

        rejected = client.post("/api/v1/technologies/reject", json={"technologyIDs": ["quarkus"]})
        assert rejected.json()["invalid"] == ["quarkus"]

    def test_empty_id_list_rejected(self, client):
        response = client.post("/api/v1/technologies/approve", json={"technologyIDs": []})
        assert response.status_code == 422

    def test_search(self, client):
        results = client.get("/api/v1/technologies/search", params={"q": "java"}).json()["results"]
        assert results[0]["technologyID"] == "java"

    def test_stats(self, portfolio):
        stats = portfolio.get("/api/v1/technologies/stats").json()
        assert stats["total"] > 0
        assert "ambiguous" in stats
        assert "java" in [t["technology_id"] for t in stats["most_used"]]

    def test_unified_capabilities(self, portfolio):
        response = portfolio.get("/api/v1/capabilities/unified")
        assert response.status_code == 200

        java = response.json()["java"]
        assert java["projectCount"] == 1
        assert java["totalYears"] > 0
        assert java["recentUsage"] == PERIOD_END.isoformat()
        assert java["narrativeText"] == "Proven capability across the portfolio."
