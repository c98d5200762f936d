"""Exception hierarchy for citerag.

Every error carries a human-readable ``message`` and an optional
``provider_name`` naming the external service involved (e.g. "openai",
"supabase", "tesseract"), so handlers and logs can tell them apart.

    CiteRagError
    +-- ExtractionError          (unreadable / corrupt source document)
    +-- UnsupportedFormatError   (no extractor for the source kind)
    +-- EmbeddingProviderError   (embedding call or vector validation failed)
    +-- CompletionProviderError  (chat completion failed or was malformed)
    +-- StorageError             (blob store or database write/read failed)
    +-- DocumentNotFoundError
"""

from __future__ import annotations


class CiteRagError(Exception):
    """Base exception for all citerag errors."""

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        provider_name: str | None = None,
    ) -> None:
        self._message = message
        self._provider_name = provider_name
        super().__init__(self._message)

    @property
    def message(self) -> str:
        return self._message

    @property
    def provider_name(self) -> str | None:
        return self._provider_name

    def __str__(self) -> str:
        if self._provider_name:
            return f"[{self._provider_name}] {self._message}"
        return self._message


class ExtractionError(CiteRagError):
    """Raised when text cannot be extracted from a source document."""


class UnsupportedFormatError(ExtractionError):
    """Raised when no extractor exists for a document's source kind."""


class EmbeddingProviderError(CiteRagError):
    """Raised when embedding generation fails or returns unusable vectors."""


class CompletionProviderError(CiteRagError):
    """Raised when a chat-completion call fails or returns no usable text."""


class StorageError(CiteRagError):
    """Raised when the blob store or database rejects an operation."""


class DocumentNotFoundError(CiteRagError):
    """Raised when a document id does not resolve to a stored document."""

    def __init__(self, document_id: str) -> None:
        super().__init__(f"Document not found: {document_id}")
        self.document_id = document_id
