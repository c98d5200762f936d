"""Chunk quality gate run before embedding."""

from __future__ import annotations

import logging

from citerag.ingestion.models import Chunk, ChunkValidationResult, Severity
from citerag.ingestion.text import has_sentence_terminator

logger = logging.getLogger(__name__)

MIN_CHARS = 10
MIN_TOKENS = 50
MAX_TOKENS = 8000
MIN_ALNUM_RATIO = 0.4
STRUCTURE_CHECK_TOKENS = 100
PREVIEW_CHARS = 100


def alnum_ratio(text: str) -> float:
    """Share of alphanumeric code points (any script) in *text*."""
    if not text:
        return 0.0
    return sum(1 for char in text if char.isalnum()) / len(text)


def validate_chunk(chunk: Chunk) -> ChunkValidationResult:
    """Check one chunk; the first failing rule decides the result."""

    def result(valid: bool, severity: Severity, reason: str | None = None) -> ChunkValidationResult:
        return ChunkValidationResult(
            valid=valid,
            severity=severity,
            chunk_index=chunk.chunk_index,
            token_count=chunk.token_count,
            content_preview=chunk.content[:PREVIEW_CHARS],
            reason=reason,
            page_number=chunk.page_number,
        )

    content = chunk.content.strip()
    if not content:
        return result(False, Severity.ERROR, "Empty content (whitespace only)")
    if len(content) < MIN_CHARS:
        return result(False, Severity.ERROR, f"Content too short (< {MIN_CHARS} characters)")
    if alnum_ratio(content) < MIN_ALNUM_RATIO:
        return result(False, Severity.WARNING, "Chunk contains too few alphanumeric characters")
    if chunk.token_count < MIN_TOKENS:
        return result(False, Severity.WARNING, f"Chunk too short (< {MIN_TOKENS} tokens)")
    if chunk.token_count > MAX_TOKENS:
        return result(False, Severity.ERROR, f"Chunk exceeds token limit (> {MAX_TOKENS} tokens)")
    if chunk.token_count > STRUCTURE_CHECK_TOKENS and not has_sentence_terminator(content):
        return result(False, Severity.WARNING, "Chunk lacks proper sentence structure")
    return result(True, Severity.INFO)


def validate_chunks(chunks: list[Chunk]) -> tuple[list[Chunk], list[ChunkValidationResult]]:
    """Split *chunks* into the valid ones and a result for every chunk.

    Invalid chunks are logged and reported, never embedded.
    """
    valid: list[Chunk] = []
    results: list[ChunkValidationResult] = []
    for chunk in chunks:
        outcome = validate_chunk(chunk)
        results.append(outcome)
        if outcome.valid:
            valid.append(chunk)
        else:
            logger.warning(
                "Skipping chunk %d (page %s): %s",
                chunk.chunk_index,
                chunk.page_number,
                outcome.reason,
            )
    logger.info("Validated %d chunks: %d valid", len(chunks), len(valid))
    return valid, results
