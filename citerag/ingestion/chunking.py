"""Paragraph-aware chunking with sentence overlap and positional provenance."""

from __future__ import annotations

import logging
import math
import re
from bisect import bisect_right

from citerag.ingestion.models import Chunk, PageMapping, TimestampMapping
from citerag.ingestion.text import estimate_tokens, split_sentences
from citerag.pipeline_config import ChunkingConfig

logger = logging.getLogger(__name__)

_PARAGRAPH_RE = re.compile(r"\n\s*\n")


def split_paragraphs(text: str) -> list[str]:
    """Split on blank lines; paragraphs are trimmed and non-empty."""
    return [p.strip() for p in _PARAGRAPH_RE.split(text) if p.strip()]


def overlap_tail(text: str, max_chars: int) -> str:
    """Return the trailing sentences of *text* that fit within *max_chars*."""
    tail: list[str] = []
    total = 0
    for sentence in reversed(split_sentences(text)):
        sentence = " ".join(sentence.split())
        extra = len(sentence) + (1 if tail else 0)
        if total + extra > max_chars:
            break
        tail.insert(0, sentence)
        total += extra
    return " ".join(tail)


def _seed_buffer(previous: str, paragraph: str, cfg: ChunkingConfig) -> str:
    """Start a new chunk with *paragraph*, prefixed by as much overlap as fits max_tokens."""
    overlap = overlap_tail(previous, cfg.overlap_chars)
    while overlap and estimate_tokens(f"{overlap}\n\n{paragraph}") > cfg.max_tokens:
        overlap = " ".join(split_sentences(overlap)[1:])
    return f"{overlap}\n\n{paragraph}" if overlap else paragraph


def split_large_paragraph(paragraph: str, max_tokens: int) -> list[list[str]]:
    """Split a paragraph into groups of pieces that each fit *max_tokens*.

    Pieces are sentences; a single sentence larger than the bound is broken
    into word windows. Every piece is an exact substring of *paragraph*.
    """
    pieces: list[str] = []
    # words per window so that ceil(words * 1.3) stays within max_tokens
    window = max(1, max_tokens * 10 // 13)
    for sentence in split_sentences(paragraph):
        if estimate_tokens(sentence) <= max_tokens:
            pieces.append(sentence)
            continue
        pieces.extend(_word_windows(sentence, window))

    groups: list[list[str]] = []
    current: list[str] = []
    current_tokens = 0
    for piece in pieces:
        tokens = estimate_tokens(piece)
        if current and current_tokens + tokens > max_tokens:
            groups.append(current)
            current = []
            current_tokens = 0
        current.append(piece)
        current_tokens += tokens
    if current:
        groups.append(current)
    return groups


def _word_windows(sentence: str, window: int) -> list[str]:
    """Exact substrings of *sentence* holding at most *window* words each."""
    words = sentence.split()
    windows: list[str] = []
    offset = 0
    for pos in range(0, len(words), window):
        group = words[pos : pos + window]
        start = sentence.find(group[0], offset)
        end = start
        for word in group:
            end = sentence.find(word, end) + len(word)
        windows.append(sentence[start:end])
        offset = end
    return windows


def resolve_page_number(
    position: int,
    total_chars: int,
    page_count: int | None,
    page_mappings: list[PageMapping] | None = None,
) -> int | None:
    """Page containing *position*: exact page map first, else proportional estimate."""
    if page_mappings:
        starts = [m.start_char for m in page_mappings]
        i = bisect_right(starts, position) - 1
        if i >= 0 and position < page_mappings[i].end_char:
            return page_mappings[i].page_number
    if not page_count or total_chars <= 0:
        return None
    return max(1, min(page_count, math.ceil(position / total_chars * page_count)))


def resolve_time_range(
    start: int,
    end: int,
    timestamp_mappings: list[TimestampMapping] | None,
) -> tuple[int | None, int | None]:
    """Nearest preceding time-codes for *start* and *end*; end falls back to start."""
    if not timestamp_mappings:
        return None, None
    indexes = [m.char_index for m in timestamp_mappings]

    def _at(position: int) -> int | None:
        i = bisect_right(indexes, position) - 1
        return timestamp_mappings[i].seconds if i >= 0 else None

    start_time = _at(start)
    # end is exclusive; a marker sitting exactly at it belongs to the next span
    end_time = _at(max(start, end - 1))
    if end_time is None:
        end_time = start_time
    return start_time, end_time


def chunk_text(
    text: str,
    page_count: int | None = None,
    page_mappings: list[PageMapping] | None = None,
    timestamp_mappings: list[TimestampMapping] | None = None,
    config: ChunkingConfig | None = None,
) -> list[Chunk]:
    """Group paragraphs into bounded chunks.

    Paragraphs accumulate until the next one would push the estimate past
    ``max_tokens``; the emitted chunk's trailing sentences (bounded by
    ``overlap_chars``) then seed the next buffer. Paragraphs that alone exceed
    the bound are split by sentence. The trailing buffer is kept only when it
    reaches ``min_tokens / 2`` or nothing else was emitted.

    Offsets point into *text*: a chunk spans from the start of its first
    source paragraph to the end of its last one (overlap excluded).
    """
    cfg = config or ChunkingConfig()
    chunks: list[Chunk] = []
    total_chars = len(text)

    def emit(content: str, start: int, end: int) -> None:
        start_time, end_time = resolve_time_range(start, end, timestamp_mappings)
        chunks.append(
            Chunk(
                content=content,
                chunk_index=len(chunks),
                token_count=estimate_tokens(content),
                start_char=start,
                end_char=end,
                page_number=resolve_page_number(start, total_chars, page_count, page_mappings),
                start_time=start_time,
                end_time=end_time,
            )
        )

    cursor = 0

    def locate(piece: str) -> tuple[int, int]:
        nonlocal cursor
        index = text.find(piece, cursor)
        if index == -1:
            logger.warning("Chunk text not found at or after offset %d", cursor)
            return cursor, min(total_chars, cursor + len(piece))
        cursor = index + len(piece)
        return index, cursor

    buffer = ""
    buffer_tokens = 0
    buffer_start = buffer_end = 0

    for paragraph in split_paragraphs(text):
        tokens = estimate_tokens(paragraph)

        if tokens > cfg.max_tokens:
            if buffer:
                emit(buffer, buffer_start, buffer_end)
                buffer, buffer_tokens = "", 0
            for group in split_large_paragraph(paragraph, cfg.max_tokens):
                start, end = locate(group[0])
                for piece in group[1:]:
                    _, end = locate(piece)
                emit(" ".join(group), start, end)
            continue

        start, end = locate(paragraph)
        if buffer and buffer_tokens + tokens > cfg.max_tokens:
            emit(buffer, buffer_start, buffer_end)
            buffer = _seed_buffer(buffer, paragraph, cfg)
            buffer_tokens = estimate_tokens(buffer)
            buffer_start, buffer_end = start, end
        elif buffer:
            buffer = f"{buffer}\n\n{paragraph}"
            buffer_tokens += tokens
            buffer_end = end
        else:
            buffer, buffer_tokens = paragraph, tokens
            buffer_start, buffer_end = start, end

    if buffer:
        if buffer_tokens >= cfg.min_tokens / 2 or not chunks:
            emit(buffer, buffer_start, buffer_end)
        else:
            logger.info("Dropped trailing fragment of %d tokens", buffer_tokens)

    logger.info("Chunked %d chars into %d chunks", total_chars, len(chunks))
    return chunks


def add_chunk_context(chunk: Chunk, title: str, category: str | None = None) -> str:
    """Prefix *chunk* with a one-line provenance header for embedding."""
    parts: list[str] = []
    if category:
        parts.append(f"Category: {category}")
    parts.append(f"Document: {title}")
    if chunk.page_number:
        parts.append(f"Page: {chunk.page_number}")
    return f"[{' | '.join(parts)}]\n\n{chunk.content}"
