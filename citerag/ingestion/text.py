"""Text helpers shared by extraction, chunking and validation."""

from __future__ import annotations

import math
import re

# Latin, Devanagari (danda / double danda), CJK, Arabic and Urdu sentence enders.
SENTENCE_TERMINATORS = ".!?।॥。！？؟۔"

_TERMINATOR_CLASS = f"[{re.escape(SENTENCE_TERMINATORS)}]"
_SENTENCE_SPLIT_RE = re.compile(rf"(?<={_TERMINATOR_CLASS})\s+")
_TERMINATOR_RE = re.compile(_TERMINATOR_CLASS)

# UTF-8 text that was decoded as Windows-1252 somewhere upstream.
_MOJIBAKE: list[tuple[str, str]] = [
    ("â€™", "’"),
    ("â€˜", "‘"),
    ("â€œ", "“"),
    ("â€\x9d", "”"),
    ("â€”", "—"),
    ("â€“", "–"),
    ("â€¦", "…"),
]

_YOUTUBE_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"youtu\.be/([a-zA-Z0-9_-]{11})"),
    re.compile(r"youtube\.com/watch\?(?:.*&)?v=([a-zA-Z0-9_-]{11})"),
    re.compile(r"youtube\.com/embed/([a-zA-Z0-9_-]{11})"),
    re.compile(r"youtube\.com/v/([a-zA-Z0-9_-]{11})"),
]


def normalize_text(text: str) -> str:
    """Repair common encoding damage and canonicalize whitespace.

    Newlines are kept (single line breaks and blank-line paragraph breaks),
    runs of three or more newlines collapse to one blank line, and runs of
    spaces collapse to one.
    """
    for broken, fixed in _MOJIBAKE:
        text = text.replace(broken, fixed)
    text = text.replace("\r\n", "\n").replace("\r", "\n").replace("\t", " ")
    text = re.sub(r" +\n", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    text = re.sub(r" {2,}", " ", text)
    return text.strip()


def estimate_tokens(text: str) -> int:
    """Estimate tokens as ceil(word_count * 1.3)."""
    return math.ceil(len(text.split()) * 1.3)


def split_sentences(text: str) -> list[str]:
    """Split text after sentence terminators.

    Each returned sentence is an exact substring of ``text``.
    """
    return [s.strip() for s in _SENTENCE_SPLIT_RE.split(text) if s.strip()]


def has_sentence_terminator(text: str) -> bool:
    return _TERMINATOR_RE.search(text) is not None


def ends_with_terminator(text: str) -> bool:
    stripped = text.rstrip()
    return bool(stripped) and stripped[-1] in SENTENCE_TERMINATORS


def extract_media_id(url: str | None) -> str | None:
    """Return the 11-character YouTube video id from ``url``, if any."""
    if not url:
        return None
    for pattern in _YOUTUBE_PATTERNS:
        match = pattern.search(url)
        if match:
            return match.group(1)
    return None
