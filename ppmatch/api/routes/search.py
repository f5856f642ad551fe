"""
PPMatch - Search Routes
=======================

Project-context, free-text, research and context-selection searches,
plus named search configurations.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from ppmatch.api.dependencies import get_search_service
from ppmatch.api.models import (
    ConfigurationItem,
    ConfigurationListResponse,
    ConfigurationRequest,
    ContextItem,
    ContextSelectionRequest,
    ContextSelectionResponse,
    ErrorResponse,
    FreetextSearchRequest,
    ProjectContextSearchRequest,
    ResearchResponse,
    ResearchResultItem,
    ResearchSearchRequest,
    SearchResponse,
    SearchResultItem,
)
from ppmatch.retrieval.search_service import SearchService
from ppmatch.shared.models import SearchConfiguration, SearchResult

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/search", tags=["Search"])

ERROR_RESPONSES = {
    422: {"model": ErrorResponse, "description": "Invalid weights"},
    503: {"model": ErrorResponse, "description": "Embedding not ready; retry"},
}


# =============================================================================
# Helper Functions
# =============================================================================

def convert_to_result_item(result: SearchResult) -> SearchResultItem:
    return SearchResultItem(
        record_id=result.record_id,
        name=result.name,
        relevance_score=round(result.relevance_score, 4),
        explanation=result.explanation,
        key_capabilities=result.key_capabilities,
        summary=result.summary,
    )


def convert_response(response) -> SearchResponse:
    return SearchResponse(
        results=[convert_to_result_item(r) for r in response.results],
        primary=[convert_to_result_item(r) for r in response.primary],
        related=[convert_to_result_item(r) for r in response.related],
        total_found=response.total_found,
        search_time_ms=response.search_time_ms,
        offset=response.offset,
        configuration=response.configuration,
        requirements=response.requirements,
    )


def convert_configuration(configuration: SearchConfiguration) -> ConfigurationItem:
    return ConfigurationItem(
        name=configuration.name,
        owner=configuration.owner,
        is_default=configuration.is_default,
        weights=configuration.weights,
    )


# =============================================================================
# Search Endpoints
# =============================================================================

@router.post(
    "/project-context",
    response_model=SearchResponse,
    responses=ERROR_RESPONSES,
    summary="Search by project solicitation",
    description="Rank PP records against a project's past-performance requirements",
)
async def project_context_search(
    request: ProjectContextSearchRequest,
    search_service: SearchService = Depends(get_search_service),
):
    response = await search_service.project_context_search(
        project_id=request.project_id,
        weights=request.weights.to_dict() if request.weights else None,
        include_subcontractor=request.include_subcontractor,
        offset=request.offset,
        owner=request.owner,
    )
    return convert_response(response)


@router.post(
    "/freetext",
    response_model=SearchResponse,
    responses=ERROR_RESPONSES,
    summary="Free-text search",
)
async def freetext_search(
    request: FreetextSearchRequest,
    search_service: SearchService = Depends(get_search_service),
):
    response = await search_service.freetext_search(
        query=request.query,
        weights=request.weights.to_dict() if request.weights else None,
        filters=request.filters.to_record_filter() if request.filters else None,
        offset=request.offset,
        owner=request.owner,
    )
    return convert_response(response)


@router.post(
    "/research",
    response_model=ResearchResponse,
    responses=ERROR_RESPONSES,
    summary="Research search",
    description="Project-level similarity only; lighter response",
)
async def research_search(
    request: ResearchSearchRequest,
    search_service: SearchService = Depends(get_search_service),
):
    results = await search_service.research_search(
        request.query, summary_only=request.return_summary_only
    )
    return ResearchResponse(results=[
        ResearchResultItem(
            record_id=r.record_id,
            name=r.name,
            similarity=round(r.similarity, 4),
            summary=r.summary,
            bullets=r.bullets,
        )
        for r in results
    ])


@router.post(
    "/context",
    response_model=ContextSelectionResponse,
    responses=ERROR_RESPONSES,
    summary="Select context within a token budget",
)
async def select_context(
    request: ContextSelectionRequest,
    search_service: SearchService = Depends(get_search_service),
):
    response = await search_service.select_context(
        query=request.query,
        budget_tokens=request.budget_tokens,
        filters=request.filters.to_record_filter() if request.filters else None,
        weights=request.weights.to_dict() if request.weights else None,
    )
    selection = response.selection
    return ContextSelectionResponse(
        selected=[
            ContextItem(
                record_id=s.record_id,
                name=s.name,
                score=round(s.score, 4),
                text=s.text,
                estimated_tokens=s.estimated_tokens,
                truncated=s.truncated,
                chunk_id=s.chunk_id,
            )
            for s in selection.selected
        ],
        budget_tokens=selection.budget_tokens,
        total_tokens=selection.total_tokens,
        skipped=selection.skipped,
        total_found=response.total_found,
        search_time_ms=response.search_time_ms,
    )


# =============================================================================
# Search Configurations
# =============================================================================

@router.get(
    "/configurations",
    response_model=ConfigurationListResponse,
    summary="List search configurations",
)
async def list_configurations(
    owner: Optional[str] = Query(None, description="Configuration owner"),
    search_service: SearchService = Depends(get_search_service),
):
    configurations = search_service.configurations
    return ConfigurationListResponse(
        configurations=[convert_configuration(c) for c in configurations.list_configurations(owner)],
        active=convert_configuration(configurations.get_configuration(owner)),
    )


@router.post(
    "/configurations",
    response_model=ConfigurationItem,
    responses={422: {"model": ErrorResponse, "description": "Invalid weights"}},
    summary="Save a search configuration",
)
async def save_configuration(
    request: ConfigurationRequest,
    search_service: SearchService = Depends(get_search_service),
):
    configuration = search_service.configurations.save_configuration(
        owner=request.owner,
        name=request.name,
        weights=request.weights.to_dict(),
        make_default=request.make_default,
    )
    return convert_configuration(configuration)
