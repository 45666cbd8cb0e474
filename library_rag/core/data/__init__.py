"""
Data processing module initialization.

Exports the text chunker and chunk metadata helpers.
"""

from .processors import (
    TextChunker,
    estimate_page,
    extract_section
)

__all__ = [
    "TextChunker",
    "estimate_page",
    "extract_section"
]
