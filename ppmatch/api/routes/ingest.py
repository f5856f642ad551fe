"""
PPMatch - Ingestion Routes
==========================

Write entry points invoked by the document-management collaborator once
text extraction has finished.
"""

import logging

from fastapi import APIRouter, Depends

from ppmatch.api.dependencies import get_pipeline
from ppmatch.api.models import (
    ArchiveResponse,
    ErrorResponse,
    IngestRequest,
    IngestResponse,
    RetryPendingResponse,
)
from ppmatch.ingest.pipeline import IngestionPipeline

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ingest", tags=["Ingestion"])


# Declared before /{record_id} so the literal path wins
@router.post(
    "/retry-pending",
    response_model=RetryPendingResponse,
    summary="Re-embed pending chunks",
)
async def retry_pending(pipeline: IngestionPipeline = Depends(get_pipeline)):
    report = await pipeline.retry_pending()
    return RetryPendingResponse(**report.to_dict())


@router.post(
    "/{record_id}",
    response_model=IngestResponse,
    responses={404: {"model": ErrorResponse, "description": "Unknown record"}},
    summary="Ingest a PP record",
    description="Unify, extract, chunk and embed a record; returns an ack",
)
async def ingest_record(
    record_id: str,
    request: IngestRequest,
    pipeline: IngestionPipeline = Depends(get_pipeline),
):
    ack = await pipeline.ingest(
        record_id,
        request.unified_text,
        [d.to_document() for d in request.documents],
        record=request.record.to_record(record_id) if request.record else None,
    )
    return IngestResponse(
        record_id=ack.record_id,
        status=ack.status.value,
        generation=ack.generation,
        chunk_count=ack.chunk_count,
        pending_chunks=ack.pending_chunks,
        technologies=ack.technologies,
        new_technologies=ack.new_technologies,
        duration_seconds=round(ack.duration_seconds, 3),
        error=ack.error,
    )


@router.post(
    "/{record_id}/archive",
    response_model=ArchiveResponse,
    responses={404: {"model": ErrorResponse, "description": "Unknown record"}},
    summary="Archive a PP record",
)
async def archive_record(
    record_id: str,
    pipeline: IngestionPipeline = Depends(get_pipeline),
):
    record = await pipeline.archive(record_id)
    return ArchiveResponse(record_id=record.record_id, status=record.status)
