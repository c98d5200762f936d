"""Tests for API endpoints (no external API keys required)."""

from unittest.mock import MagicMock, patch

from fastapi.testclient import TestClient

from citerag.api.main import app
from citerag.errors import CompletionProviderError, EmbeddingProviderError
from citerag.ingestion.models import ChunkValidationResult, Severity
from citerag.ingestion.pipeline import ProcessingResult, ProcessingStats
from citerag.retrieval.models import Citation, QueryResult, ReadingTime

client = TestClient(app)


def _query_result() -> QueryResult:
    return QueryResult(
        success=True,
        answer="## Signed\nBoth parties signed [Source 1].",
        summary="Both parties signed.",
        citations=[
            Citation(
                chunk_id="c1",
                document_id="doc-1",
                document_title="Lease",
                quote="Both parties signed.",
                excerpt="Both parties signed.",
                similarity=0.81,
                position=1,
                page_number=2,
            )
        ],
        reading_time=ReadingTime(summary="< 1 min read", detail="< 1 min read"),
        metadata={"model": "x-ai/grok-4-fast", "retrieval_status": "found"},
    )


def test_health():
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


def test_query_validation():
    """Test that query endpoint validates input."""
    response = client.post("/api/query", json={})
    assert response.status_code == 422  # missing required field


def test_query_returns_answer_with_citations():
    service = MagicMock()
    service.ask_question.return_value = _query_result()

    with patch("citerag.api.routes.query.get_query_service", return_value=service):
        response = client.post(
            "/api/query",
            json={"question": "Who signed the lease?", "document_ids": ["doc-1"]},
        )

    assert response.status_code == 200, response.text
    data = response.json()
    assert data["success"] is True
    assert data["citations"][0]["page_number"] == 2
    assert data["reading_time"]["detail"] == "< 1 min read"
    question, filters = service.ask_question.call_args.args
    assert question == "Who signed the lease?"
    assert filters.document_ids == ["doc-1"]
    assert filters.categories == []


def test_query_empty_selection_is_not_an_error():
    service = MagicMock()
    service.ask_question.return_value = QueryResult(
        success=False, message="No relevant content found in the selected documents."
    )
    with patch("citerag.api.routes.query.get_query_service", return_value=service):
        response = client.post(
            "/api/query", json={"question": "Who signed?", "categories": ["Tax"]}
        )
    assert response.status_code == 200
    assert response.json()["success"] is False
    assert response.json()["citations"] == []


def test_query_completion_failure_returns_503():
    """All models failing surfaces as 503 with a JSON detail, not a 500."""
    service = MagicMock()
    service.ask_question.side_effect = CompletionProviderError(
        "All 3 models failed", provider_name="openrouter"
    )
    with patch("citerag.api.routes.query.get_query_service", return_value=service):
        response = client.post("/api/query", json={"question": "Who signed the lease?"})

    assert response.status_code == 503
    assert response.json()["detail"] == "LLM unavailable: All 3 models failed"


def test_query_embedding_failure_returns_503():
    service = MagicMock()
    service.ask_question.side_effect = EmbeddingProviderError("quota exceeded", provider_name="openai")
    with patch("citerag.api.routes.query.get_query_service", return_value=service):
        response = client.post("/api/query", json={"question": "Who signed the lease?"})
    assert response.status_code == 503


def test_process_document():
    pipeline = MagicMock()
    pipeline.process_document.return_value = ProcessingResult(
        success=True,
        document_id="doc-1",
        chunk_count=3,
        extraction_method="text-layer",
        confidence=0.95,
        validation_results=[
            ChunkValidationResult(
                valid=False,
                severity=Severity.WARNING,
                chunk_index=2,
                token_count=12,
                content_preview="Tiny",
                reason="Chunk too short (< 50 tokens)",
            )
        ],
    )
    with patch("citerag.api.routes.documents.get_pipeline", return_value=pipeline):
        response = client.post("/api/documents/doc-1/process")

    assert response.status_code == 200, response.text
    data = response.json()
    assert data["chunk_count"] == 3
    assert data["validation_results"][0]["severity"] == "warning"
    pipeline.process_document.assert_called_once_with("doc-1")


def test_process_failure_reported_in_body():
    pipeline = MagicMock()
    pipeline.process_document.return_value = ProcessingResult.failure("doc-1", "corrupt PDF")
    with patch("citerag.api.routes.documents.get_pipeline", return_value=pipeline):
        response = client.post("/api/documents/doc-1/process")
    assert response.status_code == 200
    assert response.json()["success"] is False
    assert response.json()["error"] == "corrupt PDF"


def test_reprocess_document():
    pipeline = MagicMock()
    pipeline.reprocess_document.return_value = ProcessingResult(success=True, document_id="doc-1")
    with patch("citerag.api.routes.documents.get_pipeline", return_value=pipeline):
        response = client.post("/api/documents/doc-1/reprocess")
    assert response.status_code == 200
    pipeline.reprocess_document.assert_called_once_with("doc-1")


def test_process_pending_summarizes_batch():
    pipeline = MagicMock()
    pipeline.process_pending_documents.return_value = [
        ProcessingResult(success=True, document_id="a", chunk_count=4),
        ProcessingResult.failure("b", "boom"),
    ]
    with patch("citerag.api.routes.documents.get_pipeline", return_value=pipeline):
        response = client.post("/api/documents/process-pending")

    assert response.status_code == 200
    data = response.json()
    assert (data["processed"], data["succeeded"], data["failed"]) == (2, 1, 1)
    assert [r["document_id"] for r in data["results"]] == ["a", "b"]


def test_stats():
    pipeline = MagicMock()
    pipeline.get_processing_stats.return_value = ProcessingStats(
        total=5, pending=1, processing=0, completed=3, failed=1
    )
    with patch("citerag.api.routes.documents.get_pipeline", return_value=pipeline):
        response = client.get("/api/documents/stats")
    assert response.status_code == 200
    assert response.json()["completed"] == 3


def test_process_endpoint_no_get_method():
    response = client.get("/api/documents/doc-1/process")
    assert response.status_code == 405
