"""Supabase persistence for documents, chunks and source files."""

from __future__ import annotations

import logging
from collections import Counter
from datetime import UTC, datetime
from typing import Any, Protocol, cast

from supabase import Client, create_client

from citerag.config import settings
from citerag.errors import StorageError
from citerag.ingestion.models import Chunk, Document, DocumentStatus, ExtractionResult
from citerag.retrieval.models import SearchHit

logger = logging.getLogger(__name__)

DOCUMENTS_TABLE = "documents"
CHUNKS_TABLE = "document_chunks"
CATEGORIES_TABLE = "categories"
DOCUMENT_COLUMNS = "*, categories(name)"


def get_supabase_client() -> Client:
    """Create and return a Supabase client from settings."""
    return create_client(settings.supabase_url, settings.supabase_key)


class DocumentStore(Protocol):
    def get_document(self, document_id: str) -> Document | None: ...

    def get_documents(self, document_ids: list[str]) -> dict[str, Document]: ...

    def list_documents_by_status(self, status: DocumentStatus) -> list[Document]: ...

    def update_status(
        self, document_id: str, status: DocumentStatus, error_message: str | None = None
    ) -> None: ...

    def record_extraction(self, document_id: str, extraction: ExtractionResult) -> None: ...

    def insert_chunks(
        self,
        document_id: str,
        chunks: list[Chunk],
        embeddings: list[list[float]],
        batch_size: int = 50,
    ) -> int: ...

    def delete_chunks(self, document_id: str) -> None: ...

    def status_counts(self) -> dict[str, int]: ...

    def document_ids_for_categories(self, categories: list[str]) -> list[str]: ...

    def sample_chunks(self, limit: int) -> list[SearchHit]: ...


class BlobStore(Protocol):
    def download(self, locator: str) -> bytes: ...


def _now() -> str:
    return datetime.now(UTC).isoformat()


class SupabaseDocumentStore:
    """Document and chunk tables accessed through the Supabase client."""

    def __init__(self, client: Client) -> None:
        self.client = client

    def _rows(self, result: Any) -> list[dict[str, Any]]:
        # Supabase .data is typed as JSON (broad union); cast to concrete type.
        return cast(list[dict[str, Any]], result.data or [])

    def get_document(self, document_id: str) -> Document | None:
        result = (
            self.client.table(DOCUMENTS_TABLE)
            .select(DOCUMENT_COLUMNS)
            .eq("id", document_id)
            .execute()
        )
        rows = self._rows(result)
        return Document.from_row(rows[0]) if rows else None

    def get_documents(self, document_ids: list[str]) -> dict[str, Document]:
        if not document_ids:
            return {}
        result = (
            self.client.table(DOCUMENTS_TABLE)
            .select(DOCUMENT_COLUMNS)
            .in_("id", document_ids)
            .execute()
        )
        documents = [Document.from_row(row) for row in self._rows(result)]
        return {doc.id: doc for doc in documents}

    def list_documents_by_status(self, status: DocumentStatus) -> list[Document]:
        result = (
            self.client.table(DOCUMENTS_TABLE)
            .select(DOCUMENT_COLUMNS)
            .eq("status", status.value)
            .order("created_at")
            .execute()
        )
        return [Document.from_row(row) for row in self._rows(result)]

    def update_status(
        self, document_id: str, status: DocumentStatus, error_message: str | None = None
    ) -> None:
        try:
            self.client.table(DOCUMENTS_TABLE).update(
                {"status": status.value, "error_message": error_message, "updated_at": _now()}
            ).eq("id", document_id).execute()
        except Exception as exc:
            raise StorageError(
                f"Failed to set status {status.value} on {document_id}: {exc}",
                provider_name="supabase",
            ) from exc

    def record_extraction(self, document_id: str, extraction: ExtractionResult) -> None:
        try:
            self.client.table(DOCUMENTS_TABLE).update(
                {
                    "page_count": extraction.page_count,
                    "extraction_method": extraction.extraction_method,
                    "extraction_confidence": extraction.confidence,
                    "extracted_text": extraction.full_text,
                    "updated_at": _now(),
                }
            ).eq("id", document_id).execute()
        except Exception as exc:
            raise StorageError(
                f"Failed to record extraction for {document_id}: {exc}",
                provider_name="supabase",
            ) from exc

    def insert_chunks(
        self,
        document_id: str,
        chunks: list[Chunk],
        embeddings: list[list[float]],
        batch_size: int = 50,
    ) -> int:
        """Insert chunks with their embeddings in batches; returns rows written.

        A failing batch raises :class:`StorageError`; earlier batches stay
        written until the document is reprocessed.
        """
        rows: list[dict[str, object]] = []
        for chunk, embedding in zip(chunks, embeddings, strict=True):
            rows.append(
                {
                    "document_id": document_id,
                    "chunk_index": chunk.chunk_index,
                    "content": chunk.content,
                    "token_count": chunk.token_count,
                    "page_number": chunk.page_number,
                    "start_char": chunk.start_char,
                    "end_char": chunk.end_char,
                    "start_time": chunk.start_time,
                    "end_time": chunk.end_time,
                    "embedding": embedding,
                }
            )

        inserted = 0
        for i in range(0, len(rows), batch_size):
            batch = rows[i : i + batch_size]
            try:
                self.client.table(CHUNKS_TABLE).insert(batch).execute()
            except Exception as exc:
                raise StorageError(
                    f"Failed to store chunk batch {i // batch_size + 1} "
                    f"({inserted}/{len(rows)} rows written): {exc}",
                    provider_name="supabase",
                ) from exc
            inserted += len(batch)
            logger.info("Stored %d/%d chunks for %s", inserted, len(rows), document_id)
        return inserted

    def delete_chunks(self, document_id: str) -> None:
        try:
            self.client.table(CHUNKS_TABLE).delete().eq("document_id", document_id).execute()
        except Exception as exc:
            raise StorageError(
                f"Failed to delete chunks for {document_id}: {exc}", provider_name="supabase"
            ) from exc

    def status_counts(self) -> dict[str, int]:
        result = self.client.table(DOCUMENTS_TABLE).select("status").execute()
        return dict(Counter(row["status"] for row in self._rows(result)))

    def document_ids_for_categories(self, categories: list[str]) -> list[str]:
        if not categories:
            return []
        found = (
            self.client.table(CATEGORIES_TABLE).select("id").in_("name", categories).execute()
        )
        category_ids = [row["id"] for row in self._rows(found)]
        if not category_ids:
            return []
        result = (
            self.client.table(DOCUMENTS_TABLE)
            .select("id")
            .in_("category_id", category_ids)
            .execute()
        )
        return [str(row["id"]) for row in self._rows(result)]

    def sample_chunks(self, limit: int) -> list[SearchHit]:
        result = (
            self.client.table(CHUNKS_TABLE)
            .select("id, document_id, content, chunk_index, page_number, start_time, end_time")
            .order("created_at", desc=True)
            .limit(limit)
            .execute()
        )
        return [SearchHit.from_row(row) for row in self._rows(result)]


class SupabaseBlobStore:
    """Source files in a Supabase Storage bucket."""

    def __init__(self, client: Client, bucket: str = "documents") -> None:
        self.client = client
        self.bucket = bucket

    def download(self, locator: str) -> bytes:
        try:
            return self.client.storage.from_(self.bucket).download(locator)
        except Exception as exc:
            raise StorageError(
                f"Failed to download {locator!r} from bucket {self.bucket!r}: {exc}",
                provider_name="supabase",
            ) from exc
