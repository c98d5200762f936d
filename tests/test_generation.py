"""Tests for answer synthesis, response parsing, citations and cost accounting."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from anthropic.types import TextBlock
from openai import OpenAIError

from citerag.errors import CompletionProviderError
from citerag.retrieval.generation import (
    SECTION_SEPARATOR,
    SUMMARY_PLACEHOLDER,
    AnswerSynthesizer,
    AnthropicCompletionProvider,
    Completion,
    OpenAICompatibleCompletionProvider,
    build_citations,
    build_context,
    build_prompts,
    parse_model_response,
    reading_time,
)
from citerag.retrieval.models import SearchHit, UsageRecord
from citerag.retrieval.usage import estimate_cost, model_price, record_usage_safely

TWO_PART = (
    "**PART 1: BRIEF SUMMARY**\nThe lease was signed by both parties.\n"
    f"{SECTION_SEPARATOR}\n"
    "**PART 2: DETAILED ANSWER**\n## Lease\nBoth parties signed [Source 1]."
)


def _hit(chunk_id: str = "c1", content: str = "The lease was signed.", title: str = "Lease") -> SearchHit:
    return SearchHit(
        chunk_id=chunk_id,
        document_id="doc-1",
        content=content,
        similarity=0.82,
        page_number=4,
        document_title=title,
        category_name="Property",
    )


class ScriptedProvider:
    """Fails for models listed in *failing*, answers for the rest."""

    def __init__(self, failing: set[str], text: str = TWO_PART) -> None:
        self.failing = failing
        self.text = text
        self.models_tried: list[str] = []

    def complete(self, model, messages, temperature=0.7, max_tokens=2000):  # type: ignore[no-untyped-def]
        self.models_tried.append(model)
        if model in self.failing:
            raise CompletionProviderError(f"{model}: 503", provider_name="openrouter")
        return Completion(text=self.text, model=model, prompt_tokens=1000, completion_tokens=500)


class TestParseModelResponse:
    def test_two_part_response(self) -> None:
        summary, answer, times = parse_model_response(TWO_PART)
        assert summary == "The lease was signed by both parties."
        assert answer == "## Lease\nBoth parties signed [Source 1]."
        assert times.summary == "< 1 min read"

    def test_without_separator_uses_first_paragraph(self) -> None:
        summary, answer, _ = parse_model_response("Short first paragraph.\n\nMore detail here.")
        assert summary == "Short first paragraph."
        assert answer == "Short first paragraph.\n\nMore detail here."

    def test_long_first_paragraph_uses_placeholder(self) -> None:
        summary, _, _ = parse_model_response("x" * 600)
        assert summary == SUMMARY_PLACEHOLDER


class TestReadingTime:
    def test_under_a_minute(self) -> None:
        assert reading_time("a few words") == "< 1 min read"

    def test_rounds_up(self) -> None:
        assert reading_time(" ".join(["word"] * 201)) == "2 min read"


class TestPrompts:
    def test_context_lists_numbered_sources(self) -> None:
        context = build_context([_hit("c1"), _hit("c2", title="Deed")])
        assert '[Source 1] From "Lease" (category Property, page 4, relevance 82%)' in context
        assert '[Source 2] From "Deed"' in context

    def test_prompt_carries_question_and_separator(self) -> None:
        system, user = build_prompts("Who signed the lease?", [_hit()])
        assert SECTION_SEPARATOR in system
        assert "AVAILABLE SOURCES (1 passages)" in system
        assert user.startswith("QUESTION: Who signed the lease?")
        assert "SIMPLE EXPLANATION MODE" not in system

    def test_simple_mode_and_low_confidence(self) -> None:
        system, _ = build_prompts("Explain leases simply", [_hit()], low_confidence=True)
        assert "SIMPLE EXPLANATION MODE" in system
        assert "general sample" in system


class TestBuildCitations:
    def test_one_per_hit_in_order(self) -> None:
        citations = build_citations([_hit("c1"), _hit("c2")])
        assert [(c.chunk_id, c.position) for c in citations] == [("c1", 1), ("c2", 2)]
        assert citations[0].page_number == 4
        assert citations[0].category_name == "Property"

    def test_quote_is_bounded(self) -> None:
        citation = build_citations([_hit(content="a" * 300)])[0]
        assert len(citation.quote) == 200
        assert citation.quote.endswith("...")
        assert citation.excerpt == "a" * 300

    def test_short_quote_unchanged(self) -> None:
        assert build_citations([_hit()])[0].quote == "The lease was signed."


class TestAnswerSynthesizer:
    def test_first_model_succeeds(self) -> None:
        provider = ScriptedProvider(failing=set())
        usage_log = MagicMock()
        answer = AnswerSynthesizer(provider, ["m-a", "m-b"], usage_log=usage_log).synthesize(
            "Who signed?", [_hit()], embedding_tokens=20
        )
        assert provider.models_tried == ["m-a"]
        assert answer.model == "m-a"
        assert answer.summary == "The lease was signed by both parties."
        assert len(answer.citations) == 1
        assert answer.total_tokens == 1500

        record = usage_log.record.call_args.args[0]
        assert record.embedding_tokens == 20
        assert record.total_tokens == 1520
        assert record.document_titles == ["Lease"]
        assert record.response_preview == TWO_PART[:500]

    def test_falls_back_in_priority_order(self) -> None:
        provider = ScriptedProvider(failing={"m-a", "m-b"})
        answer = AnswerSynthesizer(provider, ["m-a", "m-b", "m-c"]).synthesize("Q?", [_hit()])
        assert provider.models_tried == ["m-a", "m-b", "m-c"]
        assert answer.model == "m-c"

    def test_all_models_fail(self) -> None:
        provider = ScriptedProvider(failing={"m-a", "m-b"})
        with pytest.raises(CompletionProviderError, match="m-b"):
            AnswerSynthesizer(provider, ["m-a", "m-b"]).synthesize("Q?", [_hit()])

    def test_unexpected_error_also_falls_back(self) -> None:
        provider = MagicMock()
        provider.complete.side_effect = [
            RuntimeError("bad payload"),
            Completion(text=TWO_PART, model="m-b"),
        ]
        answer = AnswerSynthesizer(provider, ["m-a", "m-b"]).synthesize("Q?", [_hit()])
        assert answer.model == "m-b"

    def test_usage_log_failure_does_not_fail_answer(self) -> None:
        usage_log = MagicMock()
        usage_log.record.side_effect = RuntimeError("table missing")
        answer = AnswerSynthesizer(ScriptedProvider(set()), ["m-a"], usage_log=usage_log).synthesize(
            "Q?", [_hit()]
        )
        assert answer.answer

    def test_cost_uses_price_table(self) -> None:
        synthesizer = AnswerSynthesizer(
            ScriptedProvider(set()), ["m-a"], prices={"m-a": [2.0, 4.0]}
        )
        answer = synthesizer.synthesize("Q?", [_hit()])
        assert answer.cost_usd == pytest.approx((1000 * 2.0 + 500 * 4.0) / 1_000_000)

    def test_requires_models(self) -> None:
        with pytest.raises(ValueError):
            AnswerSynthesizer(ScriptedProvider(set()), [])


class TestCostAccounting:
    def test_known_model(self) -> None:
        cost = estimate_cost("x-ai/grok-4-fast", 1000, 500, embedding_tokens=100)
        assert cost == pytest.approx((1000 * 0.20 + 500 * 0.50 + 100 * 0.02) / 1_000_000)

    def test_free_model_pays_only_embeddings(self) -> None:
        cost = estimate_cost("meta-llama/llama-3.3-70b-instruct:free", 1000, 500, embedding_tokens=100)
        assert cost == pytest.approx(100 * 0.02 / 1_000_000)

    def test_unknown_model_uses_fallback_price(self) -> None:
        assert model_price("some/new-model") == (1.0, 1.0)

    def test_override_wins(self) -> None:
        assert model_price("x-ai/grok-4", {"x-ai/grok-4": [1.5, 2.5]}) == (1.5, 2.5)


class TestRecordUsageSafely:
    def _record(self) -> UsageRecord:
        return UsageRecord(
            question="Q?",
            model="m",
            prompt_tokens=1,
            completion_tokens=2,
            embedding_tokens=3,
            cost_usd=0.0,
            document_titles=[],
            response_preview="",
        )

    def test_no_log(self) -> None:
        assert record_usage_safely(None, self._record()) is False

    def test_failure_swallowed(self) -> None:
        log = MagicMock()
        log.record.side_effect = RuntimeError("down")
        assert record_usage_safely(log, self._record()) is False

    def test_success(self) -> None:
        log = MagicMock()
        assert record_usage_safely(log, self._record()) is True
        assert log.record.call_args.args[0].to_row()["total_tokens"] == 6


class TestProviders:
    def test_openai_compatible_provider(self) -> None:
        client = MagicMock()
        client.chat.completions.create.return_value = MagicMock(
            choices=[MagicMock(message=MagicMock(content="Answer text"))],
            usage=MagicMock(prompt_tokens=12, completion_tokens=8),
            model="x-ai/grok-4-fast",
        )
        provider = OpenAICompatibleCompletionProvider(client=client)
        completion = provider.complete("x-ai/grok-4-fast", [{"role": "user", "content": "hi"}])
        assert completion.text == "Answer text"
        assert (completion.prompt_tokens, completion.completion_tokens) == (12, 8)

    def test_openai_compatible_provider_wraps_errors(self) -> None:
        client = MagicMock()
        client.chat.completions.create.side_effect = OpenAIError("rate limit")
        provider = OpenAICompatibleCompletionProvider(client=client)
        with pytest.raises(CompletionProviderError):
            provider.complete("m", [{"role": "user", "content": "hi"}])

    def test_empty_completion_is_an_error(self) -> None:
        client = MagicMock()
        client.chat.completions.create.return_value = MagicMock(choices=[])
        provider = OpenAICompatibleCompletionProvider(client=client)
        with pytest.raises(CompletionProviderError, match="empty"):
            provider.complete("m", [{"role": "user", "content": "hi"}])

    def test_anthropic_provider_splits_system_prompt(self) -> None:
        client = MagicMock()
        client.messages.create.return_value = MagicMock(
            content=[TextBlock(type="text", text="Claude answer")],
            model="claude-3-haiku-20240307",
            usage=MagicMock(input_tokens=30, output_tokens=10),
        )
        provider = AnthropicCompletionProvider(client=client)
        completion = provider.complete(
            "claude-3-haiku-20240307",
            [{"role": "system", "content": "Be brief."}, {"role": "user", "content": "hi"}],
        )
        kwargs = client.messages.create.call_args.kwargs
        assert kwargs["system"] == "Be brief."
        assert kwargs["messages"] == [{"role": "user", "content": "hi"}]
        assert completion.text == "Claude answer"
        assert completion.prompt_tokens == 30

    def test_anthropic_provider_rejects_non_text(self) -> None:
        client = MagicMock()
        client.messages.create.return_value = MagicMock(content=[])
        provider = AnthropicCompletionProvider(client=client)
        with pytest.raises(CompletionProviderError, match="TextBlock"):
            provider.complete("m", [{"role": "user", "content": "hi"}])
