"""
Text chunking and chunk metadata heuristics.

Splits extracted document text into overlapping, sentence-aware chunks
and derives best-effort page and section metadata for citations.
"""

import re
from typing import Iterator, Optional, Tuple

from library_rag.config.settings import ChunkingConfig
from library_rag.utils.logging import get_logger
from library_rag.utils.exceptions import ValidationError

logger = get_logger(__name__)

SECTION_MAX_LENGTH = 100

SECTION_PATTERNS = [
    re.compile(r"^#+\s+(.+)$", re.MULTILINE),
    re.compile(r"^([A-ZÁÉÍÓÚÑÜ][A-ZÁÉÍÓÚÑÜ \t]+)$", re.MULTILINE),
    re.compile(r"^(?:Capítulo|Chapter)\s+\d+[:\s]+(.+)$", re.MULTILINE | re.IGNORECASE),
]


class TextChunker:
    """Sentence-aware sliding-window chunker."""

    def __init__(
        self,
        chunk_size: Optional[int] = None,
        chunk_overlap: Optional[int] = None,
        min_chunk_length: Optional[int] = None,
        config: Optional[ChunkingConfig] = None
    ):
        """
        Initialize text chunker.

        Args:
            chunk_size: Window size in characters
            chunk_overlap: Characters shared by consecutive windows
            min_chunk_length: Trimmed segments shorter than this are dropped
            config: Chunking configuration providing the defaults

        Raises:
            ValidationError: If the overlap is not smaller than the window
        """
        config = config or ChunkingConfig()
        self.chunk_size = chunk_size if chunk_size is not None else config.chunk_size
        self.chunk_overlap = chunk_overlap if chunk_overlap is not None else config.chunk_overlap
        self.min_chunk_length = (
            min_chunk_length if min_chunk_length is not None else config.min_chunk_length
        )

        if self.chunk_size <= 0:
            raise ValidationError(f"chunk_size must be positive, got {self.chunk_size}")
        if self.chunk_overlap < 0 or self.chunk_overlap >= self.chunk_size:
            raise ValidationError(
                f"chunk_overlap ({self.chunk_overlap}) must be in [0, chunk_size={self.chunk_size})"
            )

    def chunk_spans(self, text: str) -> Iterator[Tuple[str, int, int]]:
        """
        Walk the text and yield ``(chunk_text, start_char, end_char)``.

        A window ends at the last period at or before its raw end, provided
        that period lies past half of the window; otherwise it is cut at the
        raw offset. The next window starts ``chunk_overlap`` characters before
        the previous end.
        """
        text_length = len(text)
        start = 0
        produced = 0

        while start < text_length:
            end = start + self.chunk_size

            if end < text_length:
                sentence_end = text.rfind(".", 0, end + 1)
                if sentence_end > start + self.chunk_size * 0.5:
                    end = sentence_end + 1

            raw = text[start:end]
            chunk = raw.strip()
            if chunk and len(chunk) >= self.min_chunk_length:
                chunk_start = start + (len(raw) - len(raw.lstrip()))
                produced += 1
                yield chunk, chunk_start, chunk_start + len(chunk)

            next_start = end - self.chunk_overlap
            # A sentence cut close to the midpoint combined with a large
            # overlap would otherwise step backwards.
            start = next_start if next_start > start else end

        logger.debug(f"✂️ Chunked {text_length} chars into {produced} chunks "
                     f"(size={self.chunk_size}, overlap={self.chunk_overlap})")

    def chunk(self, text: str) -> Iterator[str]:
        """
        Split text into ordered chunks.

        Args:
            text: Extracted document text

        Returns:
            Generator of trimmed chunk strings (one pass only)
        """
        for chunk_text, _, _ in self.chunk_spans(text):
            yield chunk_text


def estimate_page(chunk_index: int, chunks_per_page: int = 3) -> int:
    """Approximate 1-based page number, assuming a fixed number of chunks per page."""
    return chunk_index // chunks_per_page + 1


def extract_section(text: str) -> Optional[str]:
    """
    Extract a heading-like section title from chunk text.

    Tries markdown headings, ALL-CAPS lines and "Chapter N: title" lines,
    in that order.

    Args:
        text: Chunk text

    Returns:
        Section title (at most 100 characters) or None
    """
    for pattern in SECTION_PATTERNS:
        match = pattern.search(text)
        if match and match.group(1).strip():
            return match.group(1).strip()[:SECTION_MAX_LENGTH]
    return None
