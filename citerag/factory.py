"""Wire concrete providers and stores from settings."""

from __future__ import annotations

from functools import lru_cache

from citerag.config import Settings, get_settings
from citerag.ingestion.embeddings import EmbeddingBatcher, OpenAIEmbeddingProvider
from citerag.ingestion.parsers import TesseractOcrProvider
from citerag.ingestion.pipeline import DocumentPipeline
from citerag.ingestion.storage import SupabaseBlobStore, SupabaseDocumentStore, get_supabase_client
from citerag.pipeline_config import (
    ChunkingConfig,
    CompletionBackend,
    EmbeddingConfig,
    ExtractionConfig,
    RetrievalConfig,
)
from citerag.retrieval.generation import (
    AnswerSynthesizer,
    AnthropicCompletionProvider,
    CompletionProvider,
    OpenAICompatibleCompletionProvider,
)
from citerag.retrieval.qa import QueryService
from citerag.retrieval.search import Retriever, SupabaseSimilarityIndex
from citerag.retrieval.usage import SupabaseUsageLog


def build_embedder(settings: Settings) -> EmbeddingBatcher:
    config = EmbeddingConfig.from_settings(settings)
    provider = OpenAIEmbeddingProvider(
        model=config.model,
        dimensions=config.dimensions,
        api_key=settings.openai_api_key,
    )
    return EmbeddingBatcher(provider, config)


def build_completion_provider(settings: Settings) -> CompletionProvider:
    backend = CompletionBackend(settings.completion_backend)
    if backend is CompletionBackend.ANTHROPIC:
        return AnthropicCompletionProvider(api_key=settings.anthropic_api_key)
    return OpenAICompatibleCompletionProvider(
        api_key=settings.openrouter_api_key,
        base_url=settings.openrouter_base_url,
    )


def build_pipeline(settings: Settings | None = None) -> DocumentPipeline:
    settings = settings or get_settings()
    client = get_supabase_client()
    return DocumentPipeline(
        store=SupabaseDocumentStore(client),
        blob_store=SupabaseBlobStore(client, settings.supabase_bucket),
        embedder=build_embedder(settings),
        ocr=TesseractOcrProvider(language=settings.ocr_language),
        chunking=ChunkingConfig.from_settings(settings),
        extraction=ExtractionConfig.from_settings(settings),
        storage_batch_size=settings.storage_batch_size,
        document_delay=settings.document_delay,
    )


def build_query_service(settings: Settings | None = None) -> QueryService:
    settings = settings or get_settings()
    client = get_supabase_client()
    retriever = Retriever(
        embedder=build_embedder(settings),
        index=SupabaseSimilarityIndex(client),
        store=SupabaseDocumentStore(client),
        config=RetrievalConfig.from_settings(settings),
    )
    synthesizer = AnswerSynthesizer(
        provider=build_completion_provider(settings),
        models=settings.model_priority,
        usage_log=SupabaseUsageLog(client),
        prices=settings.model_prices,
        temperature=settings.completion_temperature,
        max_tokens=settings.completion_max_tokens,
    )
    return QueryService(retriever, synthesizer)


@lru_cache(maxsize=1)
def get_pipeline() -> DocumentPipeline:
    return build_pipeline()


@lru_cache(maxsize=1)
def get_query_service() -> QueryService:
    return build_query_service()
