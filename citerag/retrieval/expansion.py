"""Rule-based query expansion: rephrase a question into several search variants."""

from __future__ import annotations

import re

# Signals that the asker wants an introductory explanation
_SIMPLE_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"\bsimpl[ey]\b", re.IGNORECASE),
    re.compile(r"\bbasics?\b", re.IGNORECASE),
    re.compile(r"\bbeginners?\b", re.IGNORECASE),
    re.compile(r"\bintroduction\b", re.IGNORECASE),
    re.compile(r"\bexplain\b", re.IGNORECASE),
    re.compile(r"\boverview\b", re.IGNORECASE),
]

# Leading phrasings stripped when extracting the topic
_LEADING_PHRASE_RE = re.compile(
    r"^(?:(?:can|could)\s+you\s+|please\s+)?"
    r"(?:what\s+(?:is|are)|tell\s+me\s+about|give\s+(?:me\s+)?an?\s+overview\s+of)\s+",
    re.IGNORECASE,
)

_FILLER_RE = re.compile(r"\b(?:explain|in|very|simple|simply|words|about|the)\b", re.IGNORECASE)

_REWRITES: list[tuple[re.Pattern[str], tuple[str, ...]]] = [
    (re.compile(r"\bwhat\s+is\b", re.IGNORECASE), ("meaning of", "introduction to")),
    (re.compile(r"\bhow\s+to\b", re.IGNORECASE), ("practice of", "method for")),
    (re.compile(r"\bwhy\b", re.IGNORECASE), ("reason for", "purpose of")),
]


def wants_simple_explanation(question: str) -> bool:
    return any(p.search(question) for p in _SIMPLE_PATTERNS)


def extract_topic(question: str) -> str:
    """Reduce *question* to its subject by dropping question phrasing and filler."""
    topic = question.strip().rstrip("?.!। ")
    topic = _LEADING_PHRASE_RE.sub("", topic)
    if re.search(r"\bexplain\b", topic, re.IGNORECASE):
        topic = _FILLER_RE.sub(" ", topic)
    topic = " ".join(topic.split())
    return topic or question.strip()


def expand_query(question: str, domain_context: str = "") -> list[str]:
    """Return the question plus rephrased variants, deduplicated in order.

    Args:
        question: The user's question.
        domain_context: Optional phrase appended to form one extra variant
            (e.g. ``"in legal research and case law"``).
    """
    question = question.strip()
    variants: list[str] = [question]

    if wants_simple_explanation(question):
        topic = extract_topic(question)
        variants.extend(
            [
                f"introduction to {topic}",
                f"{topic} basics",
                f"what is {topic}",
                f"{topic} for beginners",
                f"{topic} overview",
            ]
        )

    if domain_context:
        variants.append(f"{question} {domain_context}")

    for pattern, replacements in _REWRITES:
        if pattern.search(question):
            variants.extend(pattern.sub(r, question, count=1) for r in replacements)

    seen: set[str] = set()
    unique: list[str] = []
    for variant in variants:
        key = variant.lower()
        if variant and key not in seen:
            seen.add(key)
            unique.append(variant)
    return unique
