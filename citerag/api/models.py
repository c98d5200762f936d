"""Pydantic request/response schemas for the citerag API."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class QueryRequest(BaseModel):
    """Request body for the /api/query endpoint."""

    question: str
    document_ids: list[str] = Field(default_factory=list)
    categories: list[str] = Field(default_factory=list)


class CitationModel(BaseModel):
    chunk_id: str
    document_id: str
    document_title: str
    quote: str
    excerpt: str
    similarity: float
    position: int
    category_name: str | None = None
    page_number: int | None = None
    media_id: str | None = None
    media_url: str | None = None
    start_time: int | None = None
    end_time: int | None = None


class ReadingTimeModel(BaseModel):
    summary: str
    detail: str


class QueryResponse(BaseModel):
    """Response body for the /api/query endpoint."""

    success: bool
    answer: str | None = None
    summary: str | None = None
    citations: list[CitationModel] = Field(default_factory=list)
    reading_time: ReadingTimeModel | None = None
    message: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class ValidationResultModel(BaseModel):
    valid: bool
    severity: str
    chunk_index: int
    token_count: int
    content_preview: str
    reason: str | None = None
    page_number: int | None = None
    stored_index: int | None = None


class ProcessResponse(BaseModel):
    """Outcome of processing one document."""

    success: bool
    document_id: str
    chunk_count: int = 0
    extraction_method: str | None = None
    confidence: float | None = None
    total_tokens: int = 0
    embedding_tokens: int = 0
    error: str | None = None
    validation_results: list[ValidationResultModel] = Field(default_factory=list)


class BatchProcessResponse(BaseModel):
    processed: int
    succeeded: int
    failed: int
    results: list[ProcessResponse]


class ProcessingStatsResponse(BaseModel):
    total: int
    pending: int
    processing: int
    completed: int
    failed: int
