"""Cost estimation and best-effort usage auditing."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Protocol

from supabase import Client

from citerag.retrieval.models import UsageRecord

logger = logging.getLogger(__name__)

USAGE_TABLE = "ai_usage_log"

# USD per 1M tokens as (input, output)
DEFAULT_PRICES: dict[str, tuple[float, float]] = {
    "x-ai/grok-4.1-fast": (0.20, 0.50),
    "x-ai/grok-4-fast": (0.20, 0.50),
    "x-ai/grok-4": (3.00, 15.00),
    "x-ai/grok-2-1212": (2.00, 10.00),
    "anthropic/claude-3-haiku": (0.25, 1.25),
    "claude-3-haiku-20240307": (0.25, 1.25),
    "claude-sonnet-4-20250514": (3.00, 15.00),
}
FALLBACK_PRICE: tuple[float, float] = (1.00, 1.00)
EMBEDDING_PRICE_PER_MILLION = 0.02


def model_price(
    model: str, prices: Mapping[str, Sequence[float]] | None = None
) -> tuple[float, float]:
    """Look up ``(input, output)`` USD per 1M tokens; ``:free`` models cost nothing."""
    table: Mapping[str, Sequence[float]] = {**DEFAULT_PRICES, **(prices or {})}
    if model in table:
        input_price, output_price = table[model]
        return float(input_price), float(output_price)
    if model.endswith(":free"):
        return 0.0, 0.0
    return FALLBACK_PRICE


def estimate_cost(
    model: str,
    prompt_tokens: int,
    completion_tokens: int,
    embedding_tokens: int = 0,
    prices: Mapping[str, Sequence[float]] | None = None,
) -> float:
    """USD cost of one answer; every token is priced exactly once."""
    input_price, output_price = model_price(model, prices)
    completion_cost = prompt_tokens * input_price + completion_tokens * output_price
    embedding_cost = embedding_tokens * EMBEDDING_PRICE_PER_MILLION
    return (completion_cost + embedding_cost) / 1_000_000


class UsageLog(Protocol):
    def record(self, record: UsageRecord) -> None: ...


class SupabaseUsageLog:
    def __init__(self, client: Client, table: str = USAGE_TABLE) -> None:
        self.client = client
        self.table = table

    def record(self, record: UsageRecord) -> None:
        self.client.table(self.table).insert(record.to_row()).execute()


def record_usage_safely(log: UsageLog | None, record: UsageRecord) -> bool:
    """Write *record* to *log*; failures are logged and never raised."""
    if log is None:
        return False
    try:
        log.record(record)
    except Exception:
        logger.exception("Failed to record AI usage for model %s", record.model)
        return False
    return True
