"""Answer synthesis with ordered model fallback and source attribution."""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Protocol

from anthropic import Anthropic, AnthropicError
from anthropic.types import TextBlock
from openai import OpenAI, OpenAIError

from citerag.errors import CompletionProviderError
from citerag.retrieval.expansion import wants_simple_explanation
from citerag.retrieval.models import Answer, Citation, ReadingTime, SearchHit, UsageRecord
from citerag.retrieval.usage import UsageLog, estimate_cost, record_usage_safely

logger = logging.getLogger(__name__)

SECTION_SEPARATOR = "---SECTION_SEPARATOR---"
SUMMARY_PLACEHOLDER = "Please refer to the detailed answer below."
MAX_SUMMARY_CHARS = 500
QUOTE_CHARS = 200
RESPONSE_PREVIEW_CHARS = 500
WORDS_PER_MINUTE = 200

_PART_LABEL_RE = re.compile(r"^\*\*PART [12]:.*?\*\*", re.IGNORECASE)


@dataclass
class Completion:
    text: str
    model: str
    prompt_tokens: int = 0
    completion_tokens: int = 0


class CompletionProvider(Protocol):
    def complete(
        self,
        model: str,
        messages: list[dict[str, str]],
        temperature: float = 0.7,
        max_tokens: int = 2000,
    ) -> Completion: ...


class OpenAICompatibleCompletionProvider:
    """Chat completions through any OpenAI-compatible endpoint (OpenRouter by default)."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str = "https://openrouter.ai/api/v1",
        app_name: str = "citerag",
        client: OpenAI | None = None,
    ) -> None:
        self._api_key = api_key or None
        self.base_url = base_url
        self.app_name = app_name
        self._client = client

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            self._client = OpenAI(
                api_key=self._api_key,
                base_url=self.base_url,
                default_headers={"X-Title": self.app_name},
            )
        return self._client

    def complete(
        self,
        model: str,
        messages: list[dict[str, str]],
        temperature: float = 0.7,
        max_tokens: int = 2000,
    ) -> Completion:
        try:
            response = self.client.chat.completions.create(
                model=model,
                messages=messages,  # type: ignore[arg-type]
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except OpenAIError as exc:
            raise CompletionProviderError(f"{model}: {exc}", provider_name="openrouter") from exc

        if not response.choices or not response.choices[0].message.content:
            raise CompletionProviderError(f"{model}: empty completion", provider_name="openrouter")
        usage = response.usage
        return Completion(
            text=response.choices[0].message.content,
            model=response.model or model,
            prompt_tokens=usage.prompt_tokens if usage else 0,
            completion_tokens=usage.completion_tokens if usage else 0,
        )


class AnthropicCompletionProvider:
    """Chat completions through the Anthropic Messages API."""

    def __init__(self, api_key: str | None = None, client: Anthropic | None = None) -> None:
        self._api_key = api_key or None
        self._client = client

    @property
    def client(self) -> Anthropic:
        if self._client is None:
            self._client = Anthropic(api_key=self._api_key)
        return self._client

    def complete(
        self,
        model: str,
        messages: list[dict[str, str]],
        temperature: float = 0.7,
        max_tokens: int = 2000,
    ) -> Completion:
        system = "\n\n".join(m["content"] for m in messages if m["role"] == "system")
        conversation = [m for m in messages if m["role"] != "system"]
        try:
            response = self.client.messages.create(
                model=model,
                max_tokens=max_tokens,
                temperature=temperature,
                system=system,
                messages=conversation,  # type: ignore[arg-type]
            )
        except AnthropicError as exc:
            raise CompletionProviderError(f"{model}: {exc}", provider_name="anthropic") from exc

        # First block should be TextBlock since only plain text is requested.
        block = response.content[0] if response.content else None
        if not isinstance(block, TextBlock) or not block.text:
            raise CompletionProviderError(
                f"{model}: expected TextBlock, got {type(block).__name__}",
                provider_name="anthropic",
            )
        return Completion(
            text=block.text,
            model=response.model,
            prompt_tokens=response.usage.input_tokens,
            completion_tokens=response.usage.output_tokens,
        )


def build_context(hits: list[SearchHit]) -> str:
    """Format hits as numbered excerpts for the prompt."""
    parts: list[str] = []
    for i, hit in enumerate(hits, start=1):
        details: list[str] = []
        if hit.category_name:
            details.append(f"category {hit.category_name}")
        if hit.page_number:
            details.append(f"page {hit.page_number}")
        if hit.similarity:
            details.append(f"relevance {hit.similarity * 100:.0f}%")
        suffix = f" ({', '.join(details)})" if details else ""
        title = hit.document_title or "Untitled"
        parts.append(f'[Source {i}] From "{title}"{suffix}:\n"{hit.content}"')
    return "\n\n".join(parts)


def build_prompts(
    question: str, hits: list[SearchHit], low_confidence: bool = False
) -> tuple[str, str]:
    """Return ``(system_prompt, user_prompt)`` for *question* over *hits*."""
    simple = wants_simple_explanation(question)
    system_prompt = (
        "OUTPUT FORMAT (CRITICAL):\n"
        "Structure the entire response as TWO PARTS separated by exactly "
        f'"{SECTION_SEPARATOR}".\n\n'
        "PART 1: BRIEF SUMMARY\n"
        "- One plain-text paragraph of 5-6 sentences, no markdown headers.\n\n"
        f"{SECTION_SEPARATOR}\n\n"
        "PART 2: DETAILED ANSWER\n"
        "- The full answer following the structure below.\n\n"
        "You are a research assistant. Build clear, well-structured answers "
        "from the provided sources.\n\n"
        "LANGUAGE:\n"
        "- Always answer in the same language as the question and keep to it throughout.\n\n"
        "FORMATTING:\n"
        "- Start with a bold title that answers the question directly.\n"
        "- Use markdown headers (##, ###), numbered lists and bullet points.\n"
        "- Keep paragraphs short (2-3 sentences).\n\n"
        "CONTENT:\n"
        "- Answer ONLY from the provided sources; never invent information.\n"
        "- Combine multiple sources into one coherent answer.\n"
        "- Cite with [Source N] after key points or quotes.\n"
        "- If the sources do not answer the question, say so."
    )
    if simple:
        system_prompt += (
            "\n\nSIMPLE EXPLANATION MODE:\n"
            "- Use everyday language and explain technical terms when first used.\n"
            "- Structure as: what it is, why it matters, how it applies.\n"
            "- Cover foundational concepts before advanced ones."
        )
    if low_confidence:
        system_prompt += (
            "\n\nNOTE: No passages closely matched the question. The sources below "
            "are a general sample; state clearly if they do not address it."
        )
    system_prompt += f"\n\nAVAILABLE SOURCES ({len(hits)} passages):\n{build_context(hits)}"

    style = "comprehensive yet simple, well-structured" if simple else "thorough and well-organized"
    user_prompt = (
        f"QUESTION: {question}\n\n"
        f"Create a {style} answer using ONLY the sources above. Follow the formatting "
        "requirements exactly and include [Source N] citations after key points."
    )
    return system_prompt, user_prompt


def reading_time(text: str) -> str:
    minutes = len(text.split()) / WORDS_PER_MINUTE
    if minutes < 1:
        return "< 1 min read"
    return f"{math.ceil(minutes)} min read"


def parse_model_response(raw: str) -> tuple[str, str, ReadingTime]:
    """Split a two-part model response into ``(summary, answer, reading_time)``."""
    if SECTION_SEPARATOR in raw:
        head, tail = raw.split(SECTION_SEPARATOR, 1)
        summary = _PART_LABEL_RE.sub("", head.strip()).strip()
        answer = _PART_LABEL_RE.sub("", tail.strip()).strip()
    else:
        answer = raw.strip()
        first_paragraph = answer.split("\n\n", 1)[0].strip()
        summary = first_paragraph if len(first_paragraph) < MAX_SUMMARY_CHARS else SUMMARY_PLACEHOLDER
    return summary, answer, ReadingTime(summary=reading_time(summary), detail=reading_time(answer))


def build_citations(hits: list[SearchHit]) -> list[Citation]:
    """One citation per hit, in ranking order."""
    citations: list[Citation] = []
    for position, hit in enumerate(hits, start=1):
        quote = hit.content
        if len(quote) > QUOTE_CHARS:
            quote = quote[: QUOTE_CHARS - 3].rstrip() + "..."
        citations.append(
            Citation(
                chunk_id=hit.chunk_id,
                document_id=hit.document_id,
                document_title=hit.document_title or "Untitled",
                quote=quote,
                excerpt=hit.content,
                similarity=hit.similarity,
                position=position,
                category_name=hit.category_name,
                page_number=hit.page_number,
                media_id=hit.media_id,
                media_url=hit.media_url,
                start_time=hit.start_time,
                end_time=hit.end_time,
            )
        )
    return citations


class AnswerSynthesizer:
    """Generate an answer by trying each configured model in priority order."""

    def __init__(
        self,
        provider: CompletionProvider,
        models: Sequence[str],
        usage_log: UsageLog | None = None,
        prices: Mapping[str, Sequence[float]] | None = None,
        temperature: float = 0.7,
        max_tokens: int = 2000,
    ) -> None:
        if not models:
            raise ValueError("At least one completion model must be configured")
        self.provider = provider
        self.models = tuple(models)
        self.usage_log = usage_log
        self.prices = prices
        self.temperature = temperature
        self.max_tokens = max_tokens

    def synthesize(
        self,
        question: str,
        hits: list[SearchHit],
        embedding_tokens: int = 0,
        low_confidence: bool = False,
    ) -> Answer:
        """Answer *question* from *hits*.

        Raises:
            CompletionProviderError: When every model fails; carries the last error.
        """
        system_prompt, user_prompt = build_prompts(question, hits, low_confidence)
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]

        last_error: Exception | None = None
        for model in self.models:
            logger.info("Generating answer with %s", model)
            try:
                completion = self.provider.complete(
                    model, messages, temperature=self.temperature, max_tokens=self.max_tokens
                )
            except Exception as exc:
                logger.warning("Model %s failed: %s", model, exc)
                last_error = exc
                continue

            summary, answer_text, times = parse_model_response(completion.text)
            cost = estimate_cost(
                completion.model,
                completion.prompt_tokens,
                completion.completion_tokens,
                embedding_tokens,
                self.prices,
            )
            answer = Answer(
                answer=answer_text,
                summary=summary,
                citations=build_citations(hits),
                reading_time=times,
                model=completion.model,
                prompt_tokens=completion.prompt_tokens,
                completion_tokens=completion.completion_tokens,
                cost_usd=cost,
            )
            record_usage_safely(
                self.usage_log,
                UsageRecord(
                    question=question,
                    model=completion.model,
                    prompt_tokens=completion.prompt_tokens,
                    completion_tokens=completion.completion_tokens,
                    embedding_tokens=embedding_tokens,
                    cost_usd=cost,
                    document_titles=sorted({h.document_title for h in hits if h.document_title}),
                    response_preview=completion.text[:RESPONSE_PREVIEW_CHARS],
                ),
            )
            logger.info("Answer generated by %s (%d tokens)", completion.model, answer.total_tokens)
            return answer

        raise CompletionProviderError(
            f"All {len(self.models)} models failed. Last error: {last_error}"
        ) from last_error
