"""
RAG Serving Pipeline
---------------------
Composition root for the engine and the single entry point used by the CLI
and the API server:

    question
        |
        v
    HybridRetriever   (BM25 prefilter -> cosine rerank, TOP_K)
        |
        v
    build_context     (greedy prefix within MAX_CONTEXT_CHARS, deduped sources)
        |
        v
    GenerationOrchestrator (streamed answer, cancel / deadline, persisted)
        |
        v
    QueryResult / StreamEvents

Ingestion goes through IngestionCoordinator (chunk -> embed -> persist).
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import AsyncIterator, Optional

from langsmith import traceable
from loguru import logger

from secondbrain.config import RAGConfig
from secondbrain.errors import NoUsableContextError, NotFoundError, ValidationError
from secondbrain.generation.context import AssembledContext, build_context
from secondbrain.generation.orchestrator import GenerationOrchestrator, GenerationRun, StreamEvent
from secondbrain.ingestion.coordinator import IngestionCoordinator
from secondbrain.ingestion.extractor import FileTextExtractor, TextExtractor
from secondbrain.providers.base import EmbeddingClient, LLMClient
from secondbrain.providers.factory import make_embedder, make_generator
from secondbrain.retrieval.retriever import HybridRetriever
from secondbrain.retrieval.sparse_index import SparseIndex
from secondbrain.schemas import (
    Citation,
    Conversation,
    Document,
    GenerationState,
    IngestResult,
    IntegrityReport,
    Message,
    RankedFragment,
)
from secondbrain.storage.base import DocumentStore
from secondbrain.storage.local_store import LocalStore
from secondbrain.utils.helpers import sanitize_filename, truncate_text


# ---------------------------------------------------------------------------
# Result schema
# ---------------------------------------------------------------------------

@dataclass
class QueryResult:
    """
    Full output from a single non-streaming query.

    Timing fields are in milliseconds.
    """

    question: str
    answer: str
    sources: list[Citation]
    k: int
    model: str
    state: GenerationState
    conversation_id: Optional[int] = None
    message_id: Optional[int] = None
    similarities: list[float] = field(default_factory=list)
    retrieval_ms: float = 0.0
    generation_ms: float = 0.0

    @property
    def total_ms(self) -> float:
        return self.retrieval_ms + self.generation_ms

    def to_dict(self) -> dict:
        return {
            "answer": self.answer,
            "sources": [
                {
                    "documentId": s.document_id,
                    "filename": s.filename,
                    "chunkIndex": s.chunk_index,
                }
                for s in self.sources
            ],
            "used": {"k": self.k, "model": self.model},
            "state": self.state.value,
            "conversationId": self.conversation_id,
            "messageId": self.message_id,
            "latency_ms": {
                "retrieval": round(self.retrieval_ms, 1),
                "generation": round(self.generation_ms, 1),
                "total": round(self.total_ms, 1),
            },
        }


@dataclass
class PreparedQuery:
    """Everything decided before generation starts."""

    question: str
    ranked: list[RankedFragment]
    assembled: AssembledContext
    conversation_id: Optional[int]
    retrieval_ms: float


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

class RAGPipeline:
    """
    End-to-end engine.

    Collaborators default to the configured providers and a LocalStore under
    config.data_dir; pass them explicitly to swap implementations (tests do).

    Usage:
        pipeline = RAGPipeline(load_config())
        doc = pipeline.add_document("notes/meeting.txt")
        await pipeline.ingest(doc.id)
        result = await pipeline.query("What did we decide about pricing?")
    """

    def __init__(
        self,
        config: RAGConfig,
        store: Optional[DocumentStore] = None,
        embedder: Optional[EmbeddingClient] = None,
        generator: Optional[LLMClient] = None,
        extractor: Optional[TextExtractor] = None,
    ) -> None:
        self.config = config
        self.store = store if store is not None else LocalStore.load(config.data_dir)
        self.embedder = embedder if embedder is not None else make_embedder(config)
        self.generator = generator if generator is not None else make_generator(config)
        self.extractor = extractor if extractor is not None else FileTextExtractor()

        self.sparse_index = SparseIndex(self.store)
        self.retriever = HybridRetriever(self.store, self.embedder, config, self.sparse_index)
        self.ingestion = IngestionCoordinator(self.store, self.extractor, self.embedder, config)
        self.orchestrator = GenerationOrchestrator(self.generator, self.store, config)

        logger.info(
            f"[RAGPipeline] Ready | provider={config.provider} | "
            f"embed={self.embedder.model} | llm={self.generator.model} | "
            f"fragments={self.store.count_fragments()}"
        )

    # --- Documents ------------------------------------------------------------

    def add_document(self, path: str | Path) -> Document:
        """Register a local file as a document (not yet ingested)."""
        file_path = Path(path)
        if not file_path.is_file():
            raise NotFoundError(f"File not found: {file_path}")
        return self.store.add_document(
            filename=sanitize_filename(file_path.name),
            size_bytes=file_path.stat().st_size,
            storage_ref=str(file_path.resolve()),
        )

    def list_documents(self) -> list[Document]:
        return self.store.list_documents()

    def delete_document(self, document_id: int) -> None:
        if not self.store.delete_document(document_id):
            raise NotFoundError(f"Document {document_id} not found")

    async def ingest(self, document_id: int) -> IngestResult:
        return await self.ingestion.ingest(document_id)

    # --- Conversations -------------------------------------------------------

    def get_conversation(self, conversation_id: int) -> tuple[Conversation, list[Message]]:
        conversation = self.store.get_conversation(conversation_id)
        if conversation is None:
            raise NotFoundError(f"Conversation {conversation_id} not found")
        return conversation, self.store.list_messages(conversation_id)

    def delete_conversation(self, conversation_id: int) -> None:
        if not self.store.delete_conversation(conversation_id):
            raise NotFoundError(f"Conversation {conversation_id} not found")

    def integrity_report(self) -> IntegrityReport:
        return self.store.integrity_report()

    # --- Query ----------------------------------------------------------------

    async def prepare(self, question: str, conversation_id: Optional[int] = None) -> PreparedQuery:
        """
        Validate, retrieve and assemble context.

        Raises:
            ValidationError:      empty question
            NotFoundError:        unknown conversation
            NoContentError:       nothing ingested yet
            NoUsableContextError: budget excluded every fragment
            provider errors from embedding the question
        """
        if not isinstance(question, str) or not question.strip():
            raise ValidationError("Valid question string is required")
        question = question.strip()
        logger.info(f"[RAGPipeline] Query: {truncate_text(question, 100)!r}")
        if conversation_id is not None and self.store.get_conversation(conversation_id) is None:
            raise NotFoundError(f"Conversation {conversation_id} not found")

        t0 = time.perf_counter()
        ranked = await self.retriever.retrieve(question)
        assembled = build_context(ranked, self.config.max_context_chars)
        retrieval_ms = (time.perf_counter() - t0) * 1000

        if assembled.is_empty:
            raise NoUsableContextError(
                "No context could be built from retrieved chunks",
                remediation="Increase MAX_CONTEXT_CHARS or reduce CHUNK_SIZE",
            )
        return PreparedQuery(
            question=question,
            ranked=ranked,
            assembled=assembled,
            conversation_id=conversation_id,
            retrieval_ms=retrieval_ms,
        )

    @traceable(name="rag_query", run_type="chain")
    async def query(
        self,
        question: str,
        conversation_id: Optional[int] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> QueryResult:
        """Run retrieval and generation to completion (or cancellation)."""
        prepared = await self.prepare(question, conversation_id)

        t0 = time.perf_counter()
        run: GenerationRun = await self.orchestrator.generate(
            prepared.question,
            prepared.assembled,
            conversation_id=prepared.conversation_id,
            cancel=cancel,
        )
        generation_ms = (time.perf_counter() - t0) * 1000

        logger.info(
            f"[RAGPipeline] {run.state.value} | retrieve={prepared.retrieval_ms:.0f}ms "
            f"generate={generation_ms:.0f}ms | sources={len(run.sources)}"
        )
        return QueryResult(
            question=prepared.question,
            answer=run.answer,
            sources=run.sources,
            k=len(prepared.ranked),
            model=self.generator.model,
            state=run.state,
            conversation_id=run.conversation_id,
            message_id=run.message_id,
            similarities=[r.similarity for r in prepared.ranked],
            retrieval_ms=prepared.retrieval_ms,
            generation_ms=generation_ms,
        )

    async def open_stream(
        self,
        question: str,
        conversation_id: Optional[int] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[StreamEvent]:
        """
        Retrieve eagerly, then hand back the token stream.

        Errors that happen before generation starts are raised here, so the
        caller can still answer with a proper status code.
        """
        prepared = await self.prepare(question, conversation_id)
        return self.orchestrator.stream(
            prepared.question,
            prepared.assembled,
            conversation_id=prepared.conversation_id,
            cancel=cancel,
        )

    async def aclose(self) -> None:
        await self.embedder.aclose()
        await self.generator.aclose()
