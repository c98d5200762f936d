"""Data models for retrieval and answer synthesis."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


@dataclass
class SearchHit:
    """A chunk returned by the similarity index, optionally enriched."""

    chunk_id: str
    document_id: str
    content: str
    similarity: float = 0.0
    chunk_index: int | None = None
    page_number: int | None = None
    start_time: int | None = None
    end_time: int | None = None
    document_title: str | None = None
    category_name: str | None = None
    media_id: str | None = None
    media_url: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> SearchHit:
        return cls(
            chunk_id=str(row["id"]),
            document_id=str(row["document_id"]),
            content=row.get("content") or "",
            similarity=float(row.get("similarity") or 0.0),
            chunk_index=row.get("chunk_index"),
            page_number=row.get("page_number"),
            start_time=row.get("start_time"),
            end_time=row.get("end_time"),
        )


@dataclass
class RetrievalFilters:
    """Allow-lists applied strictly to retrieval results."""

    document_ids: list[str] = field(default_factory=list)
    categories: list[str] = field(default_factory=list)

    @property
    def is_active(self) -> bool:
        return bool(self.document_ids or self.categories)


class RetrievalStatus(StrEnum):
    FOUND = "found"
    NO_MATCH_IN_SELECTION = "no_match_in_selection"
    FALLBACK = "fallback"
    EMPTY = "empty"


@dataclass
class RetrievalOutcome:
    status: RetrievalStatus
    hits: list[SearchHit] = field(default_factory=list)
    variants: list[str] = field(default_factory=list)
    filtered: bool = False
    low_confidence: bool = False
    embedding_tokens: int = 0


@dataclass
class Citation:
    """A retrieval hit rendered with provenance for display."""

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


@dataclass
class ReadingTime:
    summary: str
    detail: str


@dataclass
class Answer:
    """Synthesized answer plus accounting for the model that produced it."""

    answer: str
    summary: str
    citations: list[Citation]
    reading_time: ReadingTime
    model: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    cost_usd: float = 0.0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


@dataclass
class QueryResult:
    success: bool
    answer: str | None = None
    summary: str | None = None
    citations: list[Citation] = field(default_factory=list)
    reading_time: ReadingTime | None = None
    message: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class UsageRecord:
    """Audit entry for one answered question."""

    question: str
    model: str
    prompt_tokens: int
    completion_tokens: int
    embedding_tokens: int
    cost_usd: float
    document_titles: list[str]
    response_preview: str

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens + self.embedding_tokens

    def to_row(self) -> dict[str, Any]:
        return {
            "question": self.question,
            "model": self.model,
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "embedding_tokens": self.embedding_tokens,
            "total_tokens": self.total_tokens,
            "cost_usd": self.cost_usd,
            "document_titles": self.document_titles,
            "response_preview": self.response_preview,
        }
