"""Data models for the ingestion pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from citerag.ingestion.text import extract_media_id


class SourceKind(StrEnum):
    PDF = "pdf"
    TEXT = "txt"


class DocumentStatus(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class Severity(StrEnum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


@dataclass(frozen=True)
class PageMapping:
    """Character span ``[start_char, end_char)`` of one page in the full text."""

    page_number: int
    start_char: int
    end_char: int


@dataclass(frozen=True)
class TimestampMapping:
    """Elapsed time (seconds) that applies from ``char_index`` onwards."""

    char_index: int
    seconds: int
    marker: str = ""


@dataclass
class ExtractionResult:
    """Normalized text of one document plus its positional maps."""

    full_text: str
    page_count: int
    extraction_method: str
    confidence: float
    page_mappings: list[PageMapping] = field(default_factory=list)
    timestamp_mappings: list[TimestampMapping] = field(default_factory=list)

    @property
    def char_count(self) -> int:
        return len(self.full_text)

    @property
    def avg_chars_per_page(self) -> float:
        return self.char_count / self.page_count if self.page_count else 0.0


@dataclass
class Chunk:
    """A chunk ready for validation, embedding and storage."""

    content: str
    chunk_index: int = 0
    token_count: int = 0
    start_char: int = 0
    end_char: int = 0
    page_number: int | None = None
    start_time: int | None = None
    end_time: int | None = None


@dataclass
class ChunkValidationResult:
    """Outcome for one candidate chunk.

    ``chunk_index`` is the candidate ordinal from chunking. ``stored_index`` is
    the contiguous ordinal the chunk is persisted under, or None if rejected.
    """

    valid: bool
    severity: Severity
    chunk_index: int
    token_count: int
    content_preview: str
    reason: str | None = None
    page_number: int | None = None
    stored_index: int | None = None


@dataclass
class Document:
    """A stored source document as read from the ``documents`` table."""

    id: str
    title: str
    file_type: str
    file_path: str
    status: DocumentStatus = DocumentStatus.PENDING
    category_id: str | None = None
    category_name: str | None = None
    page_count: int | None = None
    media_url: str | None = None
    media_id: str | None = None
    extraction_method: str | None = None
    extraction_confidence: float | None = None
    error_message: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Document:
        """Build from a Supabase row, optionally joined with ``categories(name)``."""
        category = row.get("categories") or {}
        media_url = row.get("media_url")
        return cls(
            id=str(row["id"]),
            title=row.get("title") or "Untitled",
            file_type=(row.get("file_type") or "").lower(),
            file_path=row.get("file_path") or "",
            status=DocumentStatus(row.get("status") or DocumentStatus.PENDING),
            category_id=row.get("category_id"),
            category_name=category.get("name") if isinstance(category, dict) else None,
            page_count=row.get("page_count"),
            media_url=media_url,
            media_id=row.get("media_id") or extract_media_id(media_url),
            extraction_method=row.get("extraction_method"),
            extraction_confidence=row.get("extraction_confidence"),
            error_message=row.get("error_message"),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )
