"""Document ingestion pipeline: extract -> chunk -> validate -> embed -> store."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from enum import StrEnum
from functools import partial

from citerag.errors import CiteRagError, DocumentNotFoundError
from citerag.ingestion.chunking import add_chunk_context, chunk_text
from citerag.ingestion.embeddings import EmbeddingBatcher
from citerag.ingestion.models import Chunk, ChunkValidationResult, Document, DocumentStatus
from citerag.ingestion.parsers import OcrProvider, extract_text
from citerag.ingestion.storage import BlobStore, DocumentStore
from citerag.ingestion.validation import validate_chunks
from citerag.pipeline_config import ChunkingConfig, ExtractionConfig

logger = logging.getLogger(__name__)


class ProcessingStage(StrEnum):
    EXTRACTION = "extraction"
    CHUNKING = "chunking"
    VALIDATION = "validation"
    EMBEDDING = "embedding"
    STORAGE = "storage"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class ProcessingStatus:
    """Progress event passed to ``on_progress`` callbacks."""

    stage: ProcessingStage
    progress: int
    message: str
    error: str | None = None
    validation_results: list[ChunkValidationResult] = field(default_factory=list)


@dataclass
class ProcessingResult:
    success: bool
    document_id: str
    chunk_count: int = 0
    extraction_method: str | None = None
    confidence: float | None = None
    total_tokens: int = 0
    embedding_tokens: int = 0
    error: str | None = None
    validation_results: list[ChunkValidationResult] = field(default_factory=list)

    @classmethod
    def failure(cls, document_id: str, error: str) -> ProcessingResult:
        return cls(success=False, document_id=document_id, error=error)


@dataclass
class ProcessingStats:
    total: int = 0
    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0


ProgressCallback = Callable[[ProcessingStatus], None]


def _ignore_progress(status: ProcessingStatus) -> None:
    return None


def renumber_chunks(chunks: list[Chunk]) -> list[Chunk]:
    """Give surviving chunks contiguous ordinals 0..N-1 in their current order."""
    return [replace(chunk, chunk_index=i) for i, chunk in enumerate(chunks)]


def link_stored_indexes(results: list[ChunkValidationResult]) -> list[ChunkValidationResult]:
    """Attach the renumbered ordinal to each valid result, in candidate order."""
    linked: list[ChunkValidationResult] = []
    stored = 0
    for result in results:
        if result.valid:
            linked.append(replace(result, stored_index=stored))
            stored += 1
        else:
            linked.append(result)
    return linked


class DocumentPipeline:
    """Runs each document through extraction, chunking, validation, embedding and storage.

    Stages run sequentially. Any exception marks the document ``failed`` and
    is reported as an unsuccessful :class:`ProcessingResult`; nothing is
    retried.
    """

    def __init__(
        self,
        store: DocumentStore,
        blob_store: BlobStore,
        embedder: EmbeddingBatcher,
        ocr: OcrProvider | None = None,
        chunking: ChunkingConfig | None = None,
        extraction: ExtractionConfig | None = None,
        storage_batch_size: int = 50,
        document_delay: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.store = store
        self.blob_store = blob_store
        self.embedder = embedder
        self.ocr = ocr
        self.chunking = chunking or ChunkingConfig()
        self.extraction = extraction or ExtractionConfig()
        self.storage_batch_size = storage_batch_size
        self.document_delay = document_delay
        self._sleep = sleep

    def process_document(
        self, document_id: str, on_progress: ProgressCallback | None = None
    ) -> ProcessingResult:
        report = on_progress or _ignore_progress
        logger.info("Processing document %s", document_id)
        report(ProcessingStatus(ProcessingStage.EXTRACTION, 0, "Fetching document metadata..."))

        try:
            document = self.store.get_document(document_id)
            if document is None:
                raise DocumentNotFoundError(document_id)
            if document.status is DocumentStatus.PROCESSING:
                error = f"Document {document_id} is already being processed"
                logger.warning(error)
                report(ProcessingStatus(ProcessingStage.FAILED, 0, error, error=error))
                return ProcessingResult.failure(document_id, error)

            self.store.update_status(document_id, DocumentStatus.PROCESSING)
            return self._run(document, report)
        except Exception as exc:
            logger.exception("Processing failed for document %s", document_id)
            error = str(exc)
            if not isinstance(exc, DocumentNotFoundError):
                self._mark_failed(document_id, error)
            report(ProcessingStatus(ProcessingStage.FAILED, 0, "Processing failed", error=error))
            return ProcessingResult.failure(document_id, error)

    def _mark_failed(self, document_id: str, error: str) -> None:
        try:
            self.store.update_status(document_id, DocumentStatus.FAILED, error_message=error)
        except Exception:
            logger.exception("Could not mark document %s as failed", document_id)

    def _run(self, document: Document, report: ProgressCallback) -> ProcessingResult:
        report(ProcessingStatus(ProcessingStage.EXTRACTION, 10, "Reading document..."))
        data = self.blob_store.download(document.file_path)
        extraction = extract_text(data, document.file_type, ocr=self.ocr, config=self.extraction)
        logger.info(
            "Extracted %d chars from %d pages via %s (confidence %.2f)",
            extraction.char_count,
            extraction.page_count,
            extraction.extraction_method,
            extraction.confidence,
        )
        self.store.record_extraction(document.id, extraction)

        report(
            ProcessingStatus(
                ProcessingStage.CHUNKING,
                30,
                f"Analyzing content structure... ({extraction.page_count} pages)",
            )
        )
        chunks = chunk_text(
            extraction.full_text,
            page_count=extraction.page_count,
            page_mappings=extraction.page_mappings,
            timestamp_mappings=extraction.timestamp_mappings,
            config=self.chunking,
        )

        report(ProcessingStatus(ProcessingStage.VALIDATION, 40, "Validating chunks..."))
        valid, results = validate_chunks(chunks)
        results = link_stored_indexes(results)
        report(
            ProcessingStatus(
                ProcessingStage.VALIDATION,
                45,
                f"Validated {len(chunks)} chunks ({len(valid)} valid, "
                f"{len(chunks) - len(valid)} skipped)",
                validation_results=results,
            )
        )
        if not valid:
            raise CiteRagError(f"No valid chunks produced from {len(chunks)} candidates")
        valid = renumber_chunks(valid)

        report(ProcessingStatus(ProcessingStage.EMBEDDING, 50, f"Embedding {len(valid)} sections..."))
        texts = [add_chunk_context(c, document.title, document.category_name) for c in valid]
        embedded = self.embedder.embed_texts(texts)

        report(ProcessingStatus(ProcessingStage.STORAGE, 80, "Storing chunks..."))
        stored = self.store.insert_chunks(
            document.id, valid, embedded.embeddings, batch_size=self.storage_batch_size
        )
        self.store.update_status(document.id, DocumentStatus.COMPLETED)

        report(
            ProcessingStatus(
                ProcessingStage.COMPLETED,
                100,
                f"Processing complete! {stored} chunks ready for search.",
                validation_results=results,
            )
        )
        logger.info("Document %s completed with %d chunks", document.id, stored)
        return ProcessingResult(
            success=True,
            document_id=document.id,
            chunk_count=stored,
            extraction_method=extraction.extraction_method,
            confidence=extraction.confidence,
            total_tokens=sum(c.token_count for c in valid),
            embedding_tokens=embedded.total_tokens,
            validation_results=results,
        )

    def reprocess_document(
        self, document_id: str, on_progress: ProgressCallback | None = None
    ) -> ProcessingResult:
        """Reset to pending, delete existing chunks, then process from scratch."""
        logger.info("Reprocessing document %s", document_id)
        try:
            document = self.store.get_document(document_id)
            if document is not None and document.status is DocumentStatus.PROCESSING:
                error = f"Document {document_id} is already being processed"
                logger.warning(error)
                return ProcessingResult.failure(document_id, error)
            self.store.update_status(document_id, DocumentStatus.PENDING)
            self.store.delete_chunks(document_id)
        except Exception as exc:
            logger.exception("Could not reset document %s", document_id)
            self._mark_failed(document_id, str(exc))
            return ProcessingResult.failure(document_id, str(exc))
        return self.process_document(document_id, on_progress)

    def process_pending_documents(
        self, on_progress: Callable[[str, ProcessingStatus], None] | None = None
    ) -> list[ProcessingResult]:
        """Process every pending document sequentially, pausing between documents."""
        documents = self.store.list_documents_by_status(DocumentStatus.PENDING)
        logger.info("Found %d pending documents", len(documents))

        results: list[ProcessingResult] = []
        for position, document in enumerate(documents):
            callback = partial(on_progress, document.id) if on_progress else None
            results.append(self.process_document(document.id, callback))
            if position < len(documents) - 1:
                self._sleep(self.document_delay)

        succeeded = sum(1 for r in results if r.success)
        logger.info("Processed %d/%d pending documents successfully", succeeded, len(results))
        return results

    def get_processing_stats(self) -> ProcessingStats:
        counts = self.store.status_counts()
        return ProcessingStats(
            total=sum(counts.values()),
            pending=counts.get(DocumentStatus.PENDING.value, 0),
            processing=counts.get(DocumentStatus.PROCESSING.value, 0),
            completed=counts.get(DocumentStatus.COMPLETED.value, 0),
            failed=counts.get(DocumentStatus.FAILED.value, 0),
        )
