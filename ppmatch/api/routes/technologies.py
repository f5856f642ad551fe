"""
PPMatch - Technology Routes
===========================

Taxonomy management for the admin UI: listing, approval workflow,
search and usage statistics.
"""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, Query

from ppmatch.api.dependencies import get_aggregator, get_taxonomy
from ppmatch.api.models import (
    TechnologyIdsRequest,
    TechnologyItem,
    TechnologyListResponse,
    TechnologySearchResponse,
    TransitionResponse,
)
from ppmatch.capabilities.aggregator import CapabilityAggregator
from ppmatch.core.taxonomy import TechnologyTaxonomy
from ppmatch.shared.enums import ApprovalState
from ppmatch.shared.models import Technology

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/technologies", tags=["Technologies"])


def convert_technology(tech: Technology) -> TechnologyItem:
    return TechnologyItem(
        technology_id=tech.technology_id,
        name=tech.name,
        category=tech.category.value,
        aliases=list(tech.aliases),
        state=tech.state.value,
        usage_count=tech.usage_count,
    )


@router.get(
    "",
    response_model=TechnologyListResponse,
    summary="List technologies",
    description="Approved and pending technologies, approved ones grouped by category",
)
async def list_technologies(taxonomy: TechnologyTaxonomy = Depends(get_taxonomy)):
    return TechnologyListResponse(
        approved=[convert_technology(t) for t in taxonomy.list(state=ApprovalState.APPROVED)],
        pending_approval=[convert_technology(t) for t in taxonomy.list(state=ApprovalState.PENDING)],
        categories={
            category: [convert_technology(t) for t in items]
            for category, items in taxonomy.grouped_by_category().items()
        },
    )


@router.post(
    "/approve",
    response_model=TransitionResponse,
    summary="Approve pending technologies",
)
async def approve_technologies(
    request: TechnologyIdsRequest,
    taxonomy: TechnologyTaxonomy = Depends(get_taxonomy),
    aggregator: CapabilityAggregator = Depends(get_aggregator),
):
    result = taxonomy.approve(request.technology_ids)
    # Newly approved technologies become visible and get narratives
    if result.changed:
        await aggregator.on_technology_approved(result.changed)
    return TransitionResponse(**result.to_dict())


@router.post(
    "/reject",
    response_model=TransitionResponse,
    summary="Reject pending technologies",
)
async def reject_technologies(
    request: TechnologyIdsRequest,
    taxonomy: TechnologyTaxonomy = Depends(get_taxonomy),
):
    result = taxonomy.reject(request.technology_ids)
    return TransitionResponse(**result.to_dict())


@router.get(
    "/search",
    response_model=TechnologySearchResponse,
    summary="Search technologies by name or alias",
)
async def search_technologies(
    q: str = Query(..., min_length=1, max_length=100, description="Name or alias prefix"),
    limit: int = Query(20, ge=1, le=100),
    taxonomy: TechnologyTaxonomy = Depends(get_taxonomy),
):
    return TechnologySearchResponse(
        results=[convert_technology(t) for t in taxonomy.search(q, limit=limit)]
    )


@router.get(
    "/stats",
    summary="Technology usage statistics",
)
async def technology_stats(taxonomy: TechnologyTaxonomy = Depends(get_taxonomy)) -> Dict[str, Any]:
    stats = taxonomy.stats()
    stats["ambiguous"] = taxonomy.ambiguous_aliases()
    return stats
