"""
TextChunk schema - what the chunker emits before anything is persisted.

The ingestion coordinator turns each TextChunk into a stored Fragment once
its embedding is available.
"""
from __future__ import annotations

from pydantic import BaseModel


class TextChunk(BaseModel):
    index: int                           # Zero-based emission order
    text: str                            # Stripped slice of the source text
    size: int                            # Character count, used as a size proxy
