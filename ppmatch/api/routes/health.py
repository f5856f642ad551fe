"""
PPMatch - Health Routes
=======================

Health check and component status.
"""

import logging

from fastapi import APIRouter, Depends

from ppmatch.api.dependencies import ServiceContainer, Settings, get_container, get_settings
from ppmatch.api.models import ComponentStatus, HealthResponse
from ppmatch.utils.circuit_breaker import CircuitState, get_circuit_health

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Index sizes, pending embeddings, taxonomy counts and circuit breaker states",
)
async def health_check(
    container: ServiceContainer = Depends(get_container),
    settings: Settings = Depends(get_settings),
):
    """
    Checks:
    - Vector index loaded (chunks per partition, pending embeddings)
    - Taxonomy counts by state
    - Ingestion pipeline and search available
    - External service circuit breakers
    """
    components = {}
    overall_status = "healthy"

    if container.taxonomy is not None:
        stats = container.taxonomy.stats()
        components["taxonomy"] = ComponentStatus(
            status="healthy",
            details={"total": stats["total"], "by_state": stats["by_state"]},
        )
    else:
        components["taxonomy"] = ComponentStatus(status="unhealthy", details={"error": "Not initialized"})
        overall_status = "unhealthy"

    if container.index is not None:
        details = container.index.stats()
        details["records"] = len(container.store) if container.store is not None else 0
        components["index"] = ComponentStatus(status="healthy", details=details)
    else:
        components["index"] = ComponentStatus(status="unhealthy", details={"error": "No embedder"})
        overall_status = "unhealthy"

    if container.pool is not None:
        components["embeddings"] = ComponentStatus(
            status="healthy",
            details=container.pool.stats.to_dict(),
        )

    if container.pipeline is not None:
        components["ingestion"] = ComponentStatus(
            status="healthy",
            details={"in_flight": container.pipeline.in_flight},
        )

    if container.aggregator is not None:
        components["capabilities"] = ComponentStatus(
            status="healthy",
            details={
                "rollups": len(container.aggregator.snapshot()),
                "narrative_calls": container.aggregator.narrative_calls,
            },
        )

    breakers = get_circuit_health()
    open_breakers = [name for name, b in breakers.items() if b["state"] != CircuitState.CLOSED.value]
    components["circuit_breakers"] = ComponentStatus(
        status="degraded" if open_breakers else "healthy",
        details=breakers,
    )
    if open_breakers and overall_status == "healthy":
        overall_status = "degraded"

    return HealthResponse(
        status=overall_status,
        version=settings.api_version,
        components=components,
    )
