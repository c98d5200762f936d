"""Batched embedding generation with index translation and vector checks."""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Protocol, cast

from openai import OpenAI, OpenAIError

from citerag.errors import EmbeddingProviderError
from citerag.pipeline_config import EmbeddingConfig

logger = logging.getLogger(__name__)


@dataclass
class EmbeddingItem:
    """One vector, indexed relative to the request that produced it."""

    index: int
    embedding: list[float]


@dataclass
class EmbeddingResponse:
    items: list[EmbeddingItem]
    total_tokens: int
    model: str


@dataclass
class BatchEmbeddingResult:
    embeddings: list[list[float]]
    model: str
    dimensions: int
    total_tokens: int


class EmbeddingProvider(Protocol):
    def embed(self, texts: list[str]) -> EmbeddingResponse: ...


class OpenAIEmbeddingProvider:
    """Embedding provider backed by the OpenAI embeddings API."""

    def __init__(
        self,
        model: str = "text-embedding-3-small",
        dimensions: int = 1536,
        api_key: str | None = None,
        client: OpenAI | None = None,
    ) -> None:
        self.model = model
        self.dimensions = dimensions
        self._api_key = api_key or None
        self._client = client

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            self._client = OpenAI(api_key=self._api_key)  # falls back to OPENAI_API_KEY
        return self._client

    def embed(self, texts: list[str]) -> EmbeddingResponse:
        try:
            response = self.client.embeddings.create(
                input=texts, model=self.model, dimensions=self.dimensions
            )
        except OpenAIError as exc:
            raise EmbeddingProviderError(
                f"Embedding request failed: {exc}", provider_name="openai"
            ) from exc
        return EmbeddingResponse(
            items=[EmbeddingItem(index=item.index, embedding=item.embedding) for item in response.data],
            total_tokens=response.usage.total_tokens if response.usage else 0,
            model=response.model,
        )


def check_embedding(vector: Sequence[float], dimensions: int) -> str | None:
    """Return why *vector* is unusable, or ``None`` if it is fine."""
    if len(vector) != dimensions:
        return f"expected {dimensions} dimensions, got {len(vector)}"
    for value in vector:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return "contains non-numeric values"
        if not math.isfinite(value):
            return "contains NaN or infinite values"
    if all(value == 0 for value in vector):
        return "is all zeros"
    return None


def embedding_cost(total_tokens: int, price_per_million: float = 0.02) -> float:
    """USD cost of *total_tokens* embedding tokens."""
    return total_tokens / 1_000_000 * price_per_million


class EmbeddingBatcher:
    """Embed arbitrarily many texts in provider-sized batches.

    Results are placed by absolute index (batch start + batch-relative index),
    so providers may return items in any order. Any provider failure aborts
    the whole call.
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        config: EmbeddingConfig | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.provider = provider
        self.config = config or EmbeddingConfig()
        self._sleep = sleep

    def validate_embedding(self, vector: Sequence[float], position: int) -> None:
        reason = check_embedding(vector, self.config.dimensions)
        if reason:
            raise EmbeddingProviderError(f"Invalid embedding at index {position}: {reason}")

    def embed_texts(self, texts: Sequence[str]) -> BatchEmbeddingResult:
        """Embed *texts*, returning exactly one vector per input in input order.

        Raises:
            ValueError: If *texts* is empty or contains blank strings.
            EmbeddingProviderError: On provider failure, invalid vectors, or
                missing / duplicated / out-of-range indices.
        """
        if not texts:
            raise ValueError("texts must not be empty")
        if any(not text.strip() for text in texts):
            raise ValueError("texts must not contain blank strings")

        batch_size = self.config.batch_size
        starts = list(range(0, len(texts), batch_size))
        slots: list[list[float] | None] = [None] * len(texts)
        total_tokens = 0
        model = self.config.model

        for number, start in enumerate(starts, start=1):
            batch = list(texts[start : start + batch_size])
            logger.info("Embedding batch %d/%d (%d texts)", number, len(starts), len(batch))
            response = self.provider.embed(batch)

            for item in response.items:
                if not 0 <= item.index < len(batch):
                    raise EmbeddingProviderError(
                        f"Index {item.index} out of range for batch of {len(batch)}"
                    )
                position = start + item.index
                if slots[position] is not None:
                    raise EmbeddingProviderError(f"Duplicate embedding for index {position}")
                self.validate_embedding(item.embedding, position)
                slots[position] = list(item.embedding)

            total_tokens += response.total_tokens
            model = response.model or model
            if number < len(starts):
                self._sleep(self.config.batch_delay)

        missing = [i for i, vector in enumerate(slots) if vector is None]
        if missing:
            raise EmbeddingProviderError(
                f"No embedding returned for {len(missing)} input(s), first at index {missing[0]}"
            )

        logger.info(
            "Embedded %d texts (%d tokens, ~$%.6f)",
            len(texts),
            total_tokens,
            embedding_cost(total_tokens, self.config.price_per_million),
        )
        return BatchEmbeddingResult(
            embeddings=cast(list[list[float]], slots),
            model=model,
            dimensions=self.config.dimensions,
            total_tokens=total_tokens,
        )

    def embed_query(self, text: str) -> tuple[list[float], int]:
        """Embed a single query string; returns the vector and its token usage."""
        result = self.embed_texts([text])
        return result.embeddings[0], result.total_tokens

    def estimate_cost(self, text_count: int, avg_tokens: int = 500) -> tuple[int, float]:
        """Projected ``(tokens, usd)`` for embedding *text_count* texts."""
        tokens = text_count * avg_tokens
        return tokens, embedding_cost(tokens, self.config.price_per_million)
