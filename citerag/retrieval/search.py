"""Multi-query semantic retrieval with strict filtering and deduplication."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from typing import Any, Protocol, cast

from supabase import Client

from citerag.errors import StorageError
from citerag.ingestion.embeddings import EmbeddingBatcher
from citerag.ingestion.storage import DocumentStore
from citerag.pipeline_config import RetrievalConfig
from citerag.retrieval.expansion import expand_query
from citerag.retrieval.models import (
    RetrievalFilters,
    RetrievalOutcome,
    RetrievalStatus,
    SearchHit,
)

logger = logging.getLogger(__name__)

MATCH_FUNCTION = "match_document_chunks"


class SimilarityIndex(Protocol):
    def search(
        self,
        query_embedding: list[float],
        threshold: float,
        limit: int,
        document_ids: list[str] | None = None,
    ) -> list[SearchHit]: ...


class SupabaseSimilarityIndex:
    """Cosine similarity search through the ``match_document_chunks`` RPC."""

    def __init__(self, client: Client, function_name: str = MATCH_FUNCTION) -> None:
        self.client = client
        self.function_name = function_name

    def search(
        self,
        query_embedding: list[float],
        threshold: float,
        limit: int,
        document_ids: list[str] | None = None,
    ) -> list[SearchHit]:
        try:
            result = self.client.rpc(
                self.function_name,
                {
                    "query_embedding": query_embedding,
                    "match_threshold": threshold,
                    "match_count": limit,
                    "filter_document_ids": document_ids or None,
                },
            ).execute()
        except Exception as exc:
            raise StorageError(
                f"Similarity search failed: {exc}", provider_name="supabase"
            ) from exc
        # Supabase .data is typed as JSON (broad union); cast to concrete type.
        rows = cast(list[dict[str, Any]], result.data or [])
        return [SearchHit.from_row(row) for row in rows]


def merge_hits(hit_lists: Iterable[list[SearchHit]]) -> list[SearchHit]:
    """Deduplicate by chunk id keeping the best similarity, best first.

    Ties break on chunk id, so the result does not depend on input order.
    """
    best: dict[str, SearchHit] = {}
    for hits in hit_lists:
        for hit in hits:
            current = best.get(hit.chunk_id)
            if current is None or hit.similarity > current.similarity:
                best[hit.chunk_id] = hit
    return sorted(best.values(), key=lambda h: (-h.similarity, h.chunk_id))


class Retriever:
    """Expand a question, search every variant, merge and filter the hits."""

    def __init__(
        self,
        embedder: EmbeddingBatcher,
        index: SimilarityIndex,
        store: DocumentStore,
        config: RetrievalConfig | None = None,
    ) -> None:
        self.embedder = embedder
        self.index = index
        self.store = store
        self.config = config or RetrievalConfig()

    def _allowed_document_ids(self, filters: RetrievalFilters) -> set[str] | None:
        """Resolve filters to a document allow-list; ``None`` means unrestricted."""
        if not filters.is_active:
            return None
        allowed = set(filters.document_ids) if filters.document_ids else None
        if filters.categories:
            in_categories = set(self.store.document_ids_for_categories(filters.categories))
            allowed = in_categories if allowed is None else allowed & in_categories
        return allowed or set()

    def _search_variant(
        self, variant: str, embedding: list[float], document_ids: list[str] | None
    ) -> list[SearchHit]:
        try:
            hits = self.index.search(
                embedding,
                threshold=self.config.match_threshold,
                limit=self.config.match_count,
                document_ids=document_ids,
            )
        except StorageError:
            logger.exception("Search failed for variant %r; skipping", variant)
            return []
        logger.info("Variant %r: %d hits", variant, len(hits))
        return hits

    def _enrich(self, hits: list[SearchHit]) -> list[SearchHit]:
        """Attach parent document title, category and media reference."""
        documents = self.store.get_documents(sorted({h.document_id for h in hits}))
        enriched: list[SearchHit] = []
        for hit in hits:
            doc = documents.get(hit.document_id)
            if doc is None:
                enriched.append(hit)
                continue
            enriched.append(
                replace(
                    hit,
                    document_title=doc.title,
                    category_name=doc.category_name,
                    media_id=doc.media_id,
                    media_url=doc.media_url,
                )
            )
        return enriched

    def retrieve(self, question: str, filters: RetrievalFilters | None = None) -> RetrievalOutcome:
        """Run multi-query retrieval for *question*.

        With filters, hits outside the allow-list are dropped and an empty
        result is reported as ``NO_MATCH_IN_SELECTION``; nothing is
        substituted. Without filters, an empty result falls back to a small
        corpus sample flagged ``low_confidence``.
        """
        filters = filters or RetrievalFilters()
        variants = expand_query(question, self.config.domain_context)
        allowed = self._allowed_document_ids(filters)

        if allowed is not None and not allowed:
            logger.info("Filters resolve to no documents")
            return RetrievalOutcome(
                status=RetrievalStatus.NO_MATCH_IN_SELECTION, variants=variants, filtered=True
            )

        embedded = self.embedder.embed_texts(variants)
        document_ids = sorted(allowed) if allowed is not None else None
        with ThreadPoolExecutor(max_workers=self.config.max_workers) as pool:
            hit_lists = list(
                pool.map(
                    lambda pair: self._search_variant(pair[0], pair[1], document_ids),
                    zip(variants, embedded.embeddings, strict=True),
                )
            )

        hits = merge_hits(hit_lists)
        if allowed is not None:
            hits = [h for h in hits if h.document_id in allowed]
        logger.info("Retrieved %d unique chunks from %d variants", len(hits), len(variants))

        if hits:
            return RetrievalOutcome(
                status=RetrievalStatus.FOUND,
                hits=self._enrich(hits),
                variants=variants,
                filtered=allowed is not None,
                embedding_tokens=embedded.total_tokens,
            )

        if allowed is not None:
            return RetrievalOutcome(
                status=RetrievalStatus.NO_MATCH_IN_SELECTION,
                variants=variants,
                filtered=True,
                embedding_tokens=embedded.total_tokens,
            )

        sample = self.store.sample_chunks(self.config.fallback_sample_size)
        if not sample:
            return RetrievalOutcome(
                status=RetrievalStatus.EMPTY,
                variants=variants,
                embedding_tokens=embedded.total_tokens,
            )
        logger.warning("No matches above threshold; using %d fallback chunks", len(sample))
        return RetrievalOutcome(
            status=RetrievalStatus.FALLBACK,
            hits=self._enrich(sample),
            variants=variants,
            low_confidence=True,
            embedding_tokens=embedded.total_tokens,
        )
