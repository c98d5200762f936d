"""Tests for settings, immutable pipeline configs and backend wiring."""

from __future__ import annotations

import pytest

from citerag.config import Settings
from citerag.factory import build_completion_provider, build_embedder
from citerag.pipeline_config import (
    ChunkingConfig,
    CompletionBackend,
    EmbeddingConfig,
    ExtractionConfig,
    RetrievalConfig,
)
from citerag.retrieval.generation import (
    AnthropicCompletionProvider,
    OpenAICompatibleCompletionProvider,
)


def _settings(**overrides: object) -> Settings:
    return Settings(_env_file=None, **overrides)  # type: ignore[call-arg]


# ---------------------------------------------------------------------------
# Enum tests
# ---------------------------------------------------------------------------


class TestCompletionBackend:
    def test_values(self) -> None:
        assert CompletionBackend.OPENROUTER.value == "openrouter"
        assert CompletionBackend.ANTHROPIC.value == "anthropic"

    def test_from_string(self) -> None:
        assert CompletionBackend("anthropic") is CompletionBackend.ANTHROPIC

    def test_invalid_raises(self) -> None:
        with pytest.raises(ValueError):
            CompletionBackend("invalid")

    def test_is_str_subclass(self) -> None:
        """Enum values behave as plain strings for JSON serialization."""
        assert isinstance(CompletionBackend.OPENROUTER, str)


# ---------------------------------------------------------------------------
# Config dataclasses
# ---------------------------------------------------------------------------


class TestChunkingConfig:
    def test_defaults(self) -> None:
        cfg = ChunkingConfig()
        assert (cfg.max_tokens, cfg.min_tokens, cfg.overlap_tokens) == (1000, 500, 100)
        assert cfg.overlap_chars == 400

    def test_immutable(self) -> None:
        cfg = ChunkingConfig()
        with pytest.raises(AttributeError):
            cfg.max_tokens = 10  # type: ignore[misc]

    def test_from_settings(self) -> None:
        cfg = ChunkingConfig.from_settings(_settings(chunk_max_tokens=800, chunk_overlap_tokens=50))
        assert cfg.max_tokens == 800
        assert cfg.overlap_chars == 200


class TestOtherConfigs:
    def test_extraction_defaults(self) -> None:
        cfg = ExtractionConfig()
        assert cfg.ocr_density_threshold == 100.0
        assert cfg.max_ocr_pages == 25

    def test_embedding_from_settings(self) -> None:
        cfg = EmbeddingConfig.from_settings(_settings(embedding_batch_size=10))
        assert cfg.batch_size == 10
        assert cfg.dimensions == 1536

    def test_retrieval_from_settings(self) -> None:
        cfg = RetrievalConfig.from_settings(_settings(match_threshold=0.5, retrieval_workers=2))
        assert cfg.match_threshold == 0.5
        assert cfg.max_workers == 2
        assert cfg.match_count == 12
        assert cfg.domain_context == "in legal research and case law"


class TestSettings:
    def test_model_priority_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MODEL_PRIORITY", '["a/model", "b/model:free"]')
        assert _settings().model_priority == ["a/model", "b/model:free"]

    def test_model_prices_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MODEL_PRICES", '{"a/model": [0.5, 1.5]}')
        assert _settings().model_prices == {"a/model": [0.5, 1.5]}


# ---------------------------------------------------------------------------
# Factory wiring
# ---------------------------------------------------------------------------


class TestFactory:
    def test_openrouter_backend(self) -> None:
        provider = build_completion_provider(_settings(openrouter_api_key="k"))
        assert isinstance(provider, OpenAICompatibleCompletionProvider)
        assert provider.base_url == "https://openrouter.ai/api/v1"

    def test_anthropic_backend(self) -> None:
        provider = build_completion_provider(_settings(completion_backend="anthropic"))
        assert isinstance(provider, AnthropicCompletionProvider)

    def test_unknown_backend_rejected(self) -> None:
        with pytest.raises(ValueError):
            build_completion_provider(_settings(completion_backend="nope"))

    def test_embedder_uses_settings(self) -> None:
        embedder = build_embedder(_settings(embedding_dimensions=256))
        assert embedder.config.dimensions == 256
