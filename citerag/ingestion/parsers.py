"""Text extraction for PDF and plain-text / time-coded transcript documents."""

from __future__ import annotations

import io
import logging
import math
import re
from collections.abc import Callable
from functools import partial
from typing import Protocol

import fitz  # PyMuPDF

from citerag.errors import ExtractionError, UnsupportedFormatError
from citerag.ingestion.models import (
    ExtractionResult,
    PageMapping,
    SourceKind,
    TimestampMapping,
)
from citerag.ingestion.text import ends_with_terminator, normalize_text, split_sentences
from citerag.pipeline_config import ExtractionConfig

logger = logging.getLogger(__name__)

# [MM:SS] or [H:MM:SS] / [HH:MM:SS]
_MARKER_RE = re.compile(r"\[(\d{1,2}):(\d{2})(?::(\d{2}))?\]")

PLAIN_TEXT_CHARS_PER_PAGE = 2000
DENSE_TEXT_CHARS_PER_PAGE = 500


class OcrProvider(Protocol):
    def extract_pages(self, data: bytes, max_pages: int) -> list[str]: ...


class TesseractOcrProvider:
    """Render PDF pages with PyMuPDF and read them back with Tesseract."""

    def __init__(self, zoom: float = 2.0, language: str = "eng") -> None:
        self.zoom = zoom
        self.language = language

    def extract_pages(self, data: bytes, max_pages: int) -> list[str]:
        # Imported lazily: the OCR path is only taken for scanned documents.
        import pytesseract  # type: ignore[import-untyped]
        from PIL import Image

        texts: list[str] = []
        try:
            with fitz.open(stream=data, filetype="pdf") as document:
                for index, page in enumerate(document):
                    if index >= max_pages:
                        break
                    pix = page.get_pixmap(matrix=fitz.Matrix(self.zoom, self.zoom))
                    image = Image.open(io.BytesIO(pix.tobytes("png")))
                    texts.append(pytesseract.image_to_string(image, lang=self.language))
        except (pytesseract.TesseractError, OSError, RuntimeError) as exc:
            raise ExtractionError(f"OCR failed: {exc}", provider_name="tesseract") from exc
        return texts


def _parse_marker(match: re.Match[str]) -> int:
    """Convert a bracketed marker to seconds."""
    first, second, third = match.groups()
    if third is None:
        return int(first) * 60 + int(second)
    return int(first) * 3600 + int(second) * 60 + int(third)


def clean_transcript(
    text: str,
    min_markers: int = 2,
    paragraph_chars: int = 200,
) -> tuple[str, list[TimestampMapping]]:
    """Strip bracketed time markers and re-merge the text into paragraphs.

    Returns the cleaned text and the ``(char_index, seconds)`` pairs, where
    ``char_index`` points into the returned text. Text with fewer than
    ``min_markers`` markers is not a transcript and is returned unchanged.
    """
    markers = list(_MARKER_RE.finditer(text))
    if len(markers) < min_markers:
        return text, []

    segments: list[tuple[int | None, str, str]] = []
    leading = text[: markers[0].start()]
    if leading.strip():
        segments.append((None, "", leading))
    for i, match in enumerate(markers):
        end = markers[i + 1].start() if i + 1 < len(markers) else len(text)
        segments.append((_parse_marker(match), match.group(0), text[match.end() : end]))

    parts: list[str] = []
    mappings: list[TimestampMapping] = []
    pending: list[tuple[int, str]] = []
    length = 0
    paragraph_len = 0
    paragraph_break = False

    for seconds, marker, body in segments:
        if seconds is not None:
            pending.append((seconds, marker))
        for sentence in split_sentences(" ".join(body.split())):
            if parts:
                separator = "\n\n" if paragraph_break else " "
                parts.append(separator)
                length += len(separator)
            # Markers attach to the first sentence that follows them.
            for pending_seconds, pending_marker in pending:
                mappings.append(TimestampMapping(length, pending_seconds, pending_marker))
            pending = []
            parts.append(sentence)
            length += len(sentence)
            paragraph_len += len(sentence) + 1
            paragraph_break = ends_with_terminator(sentence) and paragraph_len > paragraph_chars
            if paragraph_break:
                paragraph_len = 0

    if pending:
        logger.info("Dropped %d trailing markers with no text after them", len(pending))

    logger.info("Cleaned transcript: %d markers, %d chars", len(markers), length)
    return "".join(parts), mappings


def _join_pages(page_texts: list[str]) -> tuple[str, list[PageMapping]]:
    """Normalize each page and join with blank lines, recording page spans."""
    parts: list[str] = []
    mappings: list[PageMapping] = []
    offset = 0
    for number, raw in enumerate(page_texts, start=1):
        page_text = normalize_text(raw)
        if number > 1:
            parts.append("\n\n")
            offset += 2
        mappings.append(PageMapping(number, offset, offset + len(page_text)))
        parts.append(page_text)
        offset += len(page_text)
    return "".join(parts), mappings


def extract_pdf(
    data: bytes,
    ocr: OcrProvider | None = None,
    config: ExtractionConfig | None = None,
) -> ExtractionResult:
    """Extract the text layer of a PDF, escalating to OCR for sparse pages.

    Args:
        data: Raw PDF bytes.
        ocr: Provider used when average characters per page fall below
             ``config.ocr_density_threshold``. Without one, the sparse text
             layer is kept at low confidence.
        config: Extraction thresholds.

    Raises:
        ExtractionError: If the bytes are not a readable PDF or have no pages.
    """
    cfg = config or ExtractionConfig()
    try:
        with fitz.open(stream=data, filetype="pdf") as document:
            page_texts = [page.get_text() for page in document]
    except (RuntimeError, ValueError) as exc:
        raise ExtractionError(f"Failed to read PDF: {exc}", provider_name="pymupdf") from exc

    if not page_texts:
        raise ExtractionError("PDF has no pages", provider_name="pymupdf")

    page_count = len(page_texts)
    full_text, page_mappings = _join_pages(page_texts)
    avg_chars = len(full_text) / page_count
    logger.info("PDF text layer: %d pages, %.0f chars/page", page_count, avg_chars)

    if avg_chars >= cfg.ocr_density_threshold:
        confidence = 0.95 if avg_chars >= DENSE_TEXT_CHARS_PER_PAGE else 0.6
        return ExtractionResult(
            full_text=full_text,
            page_count=page_count,
            extraction_method="text-layer",
            confidence=confidence,
            page_mappings=page_mappings,
        )

    if ocr is None:
        logger.warning("Sparse text layer (%.0f chars/page) and no OCR provider", avg_chars)
        return ExtractionResult(
            full_text=full_text,
            page_count=page_count,
            extraction_method="text-layer",
            confidence=0.3,
            page_mappings=page_mappings,
        )

    logger.info("Escalating to OCR (max %d pages)", cfg.max_ocr_pages)
    ocr_texts = ocr.extract_pages(data, cfg.max_ocr_pages)
    merged = ocr_texts[:page_count] + page_texts[len(ocr_texts) :]
    full_text, page_mappings = _join_pages(merged)
    return ExtractionResult(
        full_text=full_text,
        page_count=page_count,
        extraction_method="ocr",
        confidence=0.9,
        page_mappings=page_mappings,
    )


def extract_plain_text(data: bytes) -> ExtractionResult:
    """Decode a UTF-8 text document, detecting time-coded transcripts.

    Page count is estimated from length; no page map is produced.
    """
    try:
        raw = data.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise ExtractionError(f"Text document is not valid UTF-8: {exc}") from exc

    text, timestamp_mappings = clean_transcript(normalize_text(raw))
    page_count = max(1, math.ceil(len(text) / PLAIN_TEXT_CHARS_PER_PAGE))
    return ExtractionResult(
        full_text=text,
        page_count=page_count,
        extraction_method="plain-text",
        confidence=1.0,
        timestamp_mappings=timestamp_mappings,
    )


def extract_text(
    data: bytes,
    source_kind: str,
    ocr: OcrProvider | None = None,
    config: ExtractionConfig | None = None,
) -> ExtractionResult:
    """Dispatch to the correct extractor based on *source_kind*.

    Args:
        data: Raw document bytes.
        source_kind: ``"pdf"``, or ``"txt"`` / ``"text"`` / ``"md"`` (MIME
                     types ``application/pdf`` and ``text/plain`` also accepted).

    Raises:
        UnsupportedFormatError: If *source_kind* is not recognized.
    """
    pdf = partial(extract_pdf, ocr=ocr, config=config)
    dispatch: dict[str, Callable[[bytes], ExtractionResult]] = {
        SourceKind.PDF.value: pdf,
        "application/pdf": pdf,
        SourceKind.TEXT.value: extract_plain_text,
        "text": extract_plain_text,
        "text/plain": extract_plain_text,
        "md": extract_plain_text,
    }
    extractor = dispatch.get(source_kind.lower().strip())
    if extractor is None:
        msg = f"Unsupported source kind: {source_kind!r}. Use one of {sorted(dispatch)}"
        raise UnsupportedFormatError(msg)
    return extractor(data)
