"""
Second Brain - Fixed-Overlap Chunker
-------------------------------------
Splits extracted document text into overlapping, fixed-size character
windows.  Boundaries are purely positional: no sentence or paragraph
awareness, so the same text always produces the same fragments.

    start = 0
    while True:
        window = text[start : start + chunk_size].strip()
        emit window if non-empty (next index)
        stop if the window reached the end of the text
        start += chunk_size - overlap

The stride is applied whether or not the window was emitted, so a chunk's
index reflects emission order, not its character position.  Citations
address fragments by that index.
"""
from __future__ import annotations

from loguru import logger

from secondbrain.chunking.schemas import TextChunk
from secondbrain.errors import ConfigurationError

# ── Constants ─────────────────────────────────────────────────────────────────

CHUNK_SIZE = 1500         # Characters per window
CHUNK_OVERLAP = 200       # Characters shared by consecutive windows


def chunk_text(
    text: str,
    chunk_size: int = CHUNK_SIZE,
    overlap: int = CHUNK_OVERLAP,
) -> list[TextChunk]:
    """
    Chunk text into overlapping windows.

    Args:
        text:       Full extracted text of one document.
        chunk_size: Window size in characters.
        overlap:    Characters repeated at the start of the next window.

    Returns:
        Ordered list of TextChunk; empty for empty / whitespace-only input.

    Raises:
        ConfigurationError: unless 0 <= overlap < chunk_size (the scan
            position must strictly advance).
    """
    if chunk_size <= 0 or overlap < 0 or overlap >= chunk_size:
        raise ConfigurationError(
            f"Invalid chunking parameters: chunk_size={chunk_size}, overlap={overlap}. "
            "Require 0 <= overlap < chunk_size."
        )

    text = text.strip()
    if not text:
        return []

    stride = chunk_size - overlap
    chunks: list[TextChunk] = []
    start = 0

    while start < len(text):
        end = min(start + chunk_size, len(text))
        window = text[start:end].strip()

        if window:
            chunks.append(TextChunk(index=len(chunks), text=window, size=len(window)))

        if end == len(text):
            break
        start += stride

    logger.debug(
        f"[Chunker] {len(text)} chars | size={chunk_size} overlap={overlap} "
        f"-> {len(chunks)} chunk(s)"
    )
    return chunks


class FixedOverlapChunker:
    """
    Holds the chunking parameters so they are validated once at construction.

    Usage:
        chunker = FixedOverlapChunker(chunk_size=1500, overlap=200)
        chunks = chunker.chunk(text)
    """

    def __init__(self, chunk_size: int = CHUNK_SIZE, overlap: int = CHUNK_OVERLAP) -> None:
        if chunk_size <= 0 or overlap < 0 or overlap >= chunk_size:
            raise ConfigurationError(
                f"Invalid chunking parameters: chunk_size={chunk_size}, overlap={overlap}. "
                "Require 0 <= overlap < chunk_size."
            )
        self.chunk_size = chunk_size
        self.overlap = overlap

    def chunk(self, text: str) -> list[TextChunk]:
        return chunk_text(text, self.chunk_size, self.overlap)
