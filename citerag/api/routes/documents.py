"""Document processing endpoints."""

from __future__ import annotations

import asyncio
from dataclasses import asdict

from fastapi import APIRouter

from citerag.api.models import BatchProcessResponse, ProcessingStatsResponse, ProcessResponse
from citerag.factory import get_pipeline
from citerag.ingestion.pipeline import ProcessingResult

router = APIRouter(prefix="/api/documents")


def _to_response(result: ProcessingResult) -> ProcessResponse:
    return ProcessResponse.model_validate(asdict(result))


@router.post("/process-pending", response_model=BatchProcessResponse)
async def process_pending() -> BatchProcessResponse:
    """Process every pending document sequentially."""
    results = await asyncio.to_thread(get_pipeline().process_pending_documents)
    succeeded = sum(1 for r in results if r.success)
    return BatchProcessResponse(
        processed=len(results),
        succeeded=succeeded,
        failed=len(results) - succeeded,
        results=[_to_response(r) for r in results],
    )


@router.get("/stats", response_model=ProcessingStatsResponse)
async def stats() -> ProcessingStatsResponse:
    counts = await asyncio.to_thread(get_pipeline().get_processing_stats)
    return ProcessingStatsResponse.model_validate(asdict(counts))


@router.post("/{document_id}/process", response_model=ProcessResponse)
async def process_document(document_id: str) -> ProcessResponse:
    """Run the ingestion pipeline for one document.

    Failures are reported in the body (``success=false``) and the document
    is marked failed.
    """
    result = await asyncio.to_thread(get_pipeline().process_document, document_id)
    return _to_response(result)


@router.post("/{document_id}/reprocess", response_model=ProcessResponse)
async def reprocess_document(document_id: str) -> ProcessResponse:
    """Delete the document's chunks and process it again from scratch."""
    result = await asyncio.to_thread(get_pipeline().reprocess_document, document_id)
    return _to_response(result)
