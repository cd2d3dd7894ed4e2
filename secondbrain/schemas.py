"""
Core Pydantic schemas for the Second Brain RAG engine.

All stages share these models so every retrieved fragment and every
persisted answer can be traced back to the document it came from.
"""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# --- Enumerations ------------------------------------------------------------

class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class GenerationState(str, Enum):
    IDLE = "idle"
    PROMPTING = "prompting"
    STREAMING = "streaming"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


# --- Stored records ------------------------------------------------------------

class Document(BaseModel):
    """
    A registered source document.

    Immutable once persisted; only deletion is allowed, which cascades
    to its fragments and embeddings.
    """

    model_config = ConfigDict(frozen=True)

    id: int
    filename: str                        # Display name (sanitised)
    size_bytes: int
    storage_ref: str                     # Where the extractor finds the raw file
    created_at: datetime = Field(default_factory=utcnow)


class Fragment(BaseModel):
    """A contiguous slice of one document's text - the unit of retrieval."""

    model_config = ConfigDict(frozen=True)

    id: int
    document_id: int
    chunk_index: int                     # Emission order within the document
    text: str
    size: int                            # Character count of `text`
    created_at: datetime = Field(default_factory=utcnow)


class Embedding(BaseModel):
    """Dense vector for exactly one fragment."""

    model_config = ConfigDict(frozen=True)

    fragment_id: int
    vector: list[float]
    model: str
    created_at: datetime = Field(default_factory=utcnow)


class Citation(BaseModel):
    """
    Pointer from an answer back to one supporting fragment.

    Two citations are the same evidence when (document_id, chunk_index)
    match; `filename` is carried for display only.
    """

    model_config = ConfigDict(frozen=True)

    document_id: int
    filename: str
    chunk_index: int

    @property
    def key(self) -> tuple[int, int]:
        return (self.document_id, self.chunk_index)


class Message(BaseModel):
    """One turn of a conversation. Assistant messages carry their citations."""

    model_config = ConfigDict(frozen=True)

    id: int
    conversation_id: int
    role: MessageRole
    content: str
    state: Optional[GenerationState] = None
    sources: list[Citation] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)


class Conversation(BaseModel):
    id: int
    title: str
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


# --- Pipeline values -------------------------------------------------------------

class RankedFragment(BaseModel):
    """A retrieval candidate after dense reranking."""

    fragment_id: int
    document_id: int
    chunk_index: int
    filename: str
    text: str
    similarity: float = 0.0

    def citation(self) -> Citation:
        return Citation(
            document_id=self.document_id,
            filename=self.filename,
            chunk_index=self.chunk_index,
        )


class IngestResult(BaseModel):
    document_id: int
    chunks_created: int
    embeddings_created: int
    model: str


class IntegrityReport(BaseModel):
    """Counts used to verify the fragment <-> embedding invariant."""

    documents: int = 0
    ingested_documents: int = 0
    fragments: int = 0
    embeddings: int = 0
    fragments_without_embedding: int = 0
    embeddings_without_fragment: int = 0
    dimensions: list[int] = Field(default_factory=list)
    models: list[str] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return (
            self.fragments == self.embeddings
            and self.fragments_without_embedding == 0
            and self.embeddings_without_fragment == 0
            and len(self.dimensions) <= 1
        )
