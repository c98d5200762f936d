"""Query endpoint: retrieve context and synthesize a cited answer."""

from __future__ import annotations

import asyncio
from dataclasses import asdict

from fastapi import APIRouter, HTTPException

from citerag.api.models import QueryRequest, QueryResponse
from citerag.errors import CompletionProviderError, EmbeddingProviderError
from citerag.factory import get_query_service
from citerag.retrieval.models import RetrievalFilters

router = APIRouter()


@router.post("/api/query", response_model=QueryResponse)
async def query(request: QueryRequest) -> QueryResponse:
    """Answer a question over the ingested documents.

    Optional ``document_ids`` / ``categories`` restrict retrieval strictly;
    an empty selection yields ``success=false`` with a message rather than
    unrelated sources.
    """
    service = get_query_service()
    filters = RetrievalFilters(document_ids=request.document_ids, categories=request.categories)
    try:
        result = await asyncio.to_thread(service.ask_question, request.question, filters)
    except (CompletionProviderError, EmbeddingProviderError) as exc:
        # Upstream model errors become 503 so the browser gets a JSON body
        # with CORS headers intact.
        raise HTTPException(status_code=503, detail=f"LLM unavailable: {exc.message}") from exc

    return QueryResponse.model_validate(asdict(result))
