"""Question answering: validate, retrieve, synthesize."""

from __future__ import annotations

import logging
import time

from citerag.retrieval.generation import AnswerSynthesizer
from citerag.retrieval.models import QueryResult, RetrievalFilters, RetrievalStatus
from citerag.retrieval.search import Retriever

logger = logging.getLogger(__name__)

MIN_QUESTION_CHARS = 5
MAX_QUESTION_CHARS = 5000

NO_MATCH_IN_SELECTION_MESSAGE = (
    "No relevant content found in the selected documents. "
    "Try rephrasing the question or widening the selection."
)
EMPTY_CORPUS_MESSAGE = "No documents are available to answer this question yet."


def validate_question(question: str) -> str | None:
    """Return a user-facing message if *question* is unacceptable."""
    length = len(question.strip())
    if length < MIN_QUESTION_CHARS:
        return "Please ask a more detailed question."
    if length > MAX_QUESTION_CHARS:
        return f"Your question is too long. Please keep it under {MAX_QUESTION_CHARS} characters."
    return None


class QueryService:
    def __init__(self, retriever: Retriever, synthesizer: AnswerSynthesizer) -> None:
        self.retriever = retriever
        self.synthesizer = synthesizer

    def ask_question(
        self, question: str, filters: RetrievalFilters | None = None
    ) -> QueryResult:
        """Answer *question*, optionally restricted to documents / categories.

        Invalid questions and empty selections return an unsuccessful result
        with a message. Provider failures propagate.
        """
        message = validate_question(question)
        if message:
            return QueryResult(success=False, message=message)

        question = question.strip()
        started = time.perf_counter()
        outcome = self.retriever.retrieve(question, filters)
        metadata: dict[str, object] = {
            "retrieval_status": outcome.status.value,
            "query_variants": len(outcome.variants),
            "filtered": outcome.filtered,
        }

        if outcome.status is RetrievalStatus.NO_MATCH_IN_SELECTION:
            return QueryResult(success=False, message=NO_MATCH_IN_SELECTION_MESSAGE, metadata=metadata)
        if outcome.status is RetrievalStatus.EMPTY:
            return QueryResult(success=False, message=EMPTY_CORPUS_MESSAGE, metadata=metadata)

        answer = self.synthesizer.synthesize(
            question,
            outcome.hits,
            embedding_tokens=outcome.embedding_tokens,
            low_confidence=outcome.low_confidence,
        )
        metadata.update(
            {
                "model": answer.model,
                "chunk_count": len(outcome.hits),
                "low_confidence": outcome.low_confidence,
                "prompt_tokens": answer.prompt_tokens,
                "completion_tokens": answer.completion_tokens,
                "embedding_tokens": outcome.embedding_tokens,
                "cost_usd": answer.cost_usd,
                "duration_ms": round((time.perf_counter() - started) * 1000),
            }
        )
        logger.info("Answered with %s from %d chunks", answer.model, len(outcome.hits))
        return QueryResult(
            success=True,
            answer=answer.answer,
            summary=answer.summary,
            citations=answer.citations,
            reading_time=answer.reading_time,
            metadata=metadata,
        )
