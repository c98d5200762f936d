"""Pipeline configuration: backend enum and immutable parameter dataclasses."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from citerag.config import Settings


class CompletionBackend(str, Enum):
    """Available chat-completion backends for answer synthesis."""

    OPENROUTER = "openrouter"
    ANTHROPIC = "anthropic"


@dataclass(frozen=True)
class ChunkingConfig:
    """Immutable chunking parameters.

    Token counts are estimates (word count * 1.3). The overlap carried into
    the next chunk is bounded in characters by ``overlap_tokens * chars_per_token``.
    """

    max_tokens: int = 1000
    min_tokens: int = 500
    overlap_tokens: int = 100
    chars_per_token: int = 4

    @property
    def overlap_chars(self) -> int:
        return self.overlap_tokens * self.chars_per_token

    @classmethod
    def from_settings(cls, settings: Settings) -> ChunkingConfig:
        return cls(
            max_tokens=settings.chunk_max_tokens,
            min_tokens=settings.chunk_min_tokens,
            overlap_tokens=settings.chunk_overlap_tokens,
        )


@dataclass(frozen=True)
class ExtractionConfig:
    """Immutable extraction parameters (OCR escalation)."""

    ocr_density_threshold: float = 100.0
    max_ocr_pages: int = 25

    @classmethod
    def from_settings(cls, settings: Settings) -> ExtractionConfig:
        return cls(
            ocr_density_threshold=settings.ocr_density_threshold,
            max_ocr_pages=settings.max_ocr_pages,
        )


@dataclass(frozen=True)
class EmbeddingConfig:
    """Immutable embedding parameters."""

    model: str = "text-embedding-3-small"
    dimensions: int = 1536
    batch_size: int = 100
    batch_delay: float = 1.0
    # USD per 1M tokens
    price_per_million: float = 0.02

    @classmethod
    def from_settings(cls, settings: Settings) -> EmbeddingConfig:
        return cls(
            model=settings.embedding_model,
            dimensions=settings.embedding_dimensions,
            batch_size=settings.embedding_batch_size,
            batch_delay=settings.embedding_batch_delay,
        )


@dataclass(frozen=True)
class RetrievalConfig:
    """Immutable retrieval parameters.

    Threshold and cap are fixed per deployment and applied to every query
    variant alike.
    """

    match_threshold: float = 0.30
    match_count: int = 12
    fallback_sample_size: int = 3
    max_workers: int = 4
    domain_context: str = ""

    @classmethod
    def from_settings(cls, settings: Settings) -> RetrievalConfig:
        return cls(
            match_threshold=settings.match_threshold,
            match_count=settings.match_count,
            fallback_sample_size=settings.fallback_sample_size,
            max_workers=settings.retrieval_workers,
            domain_context=settings.query_domain_context,
        )
