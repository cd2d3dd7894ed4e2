"""
Ingestion Coordinator
----------------------
Runs once per document:

    preconditions  document exists -> not yet ingested -> text non-empty
    extract        TextExtractor
    chunk          chunk_text (fixed size, fixed overlap)
    embed          EmbeddingClient.embed over all fragment texts (batched)
    persist        DocumentStore.commit_ingestion (single atomic step)

Nothing is written until every embedding is in hand, so a provider failure
partway through leaves no fragment without its embedding.  Concurrent
ingests of the same document are serialised so the duplicate guard holds.
"""
from __future__ import annotations

import asyncio
import time
from collections import defaultdict

from langsmith import traceable
from loguru import logger

from secondbrain.chunking.chunker import FixedOverlapChunker
from secondbrain.config import RAGConfig
from secondbrain.errors import ConflictError, NotFoundError, UnprocessableContentError
from secondbrain.ingestion.extractor import TextExtractor
from secondbrain.providers.base import EmbeddingClient
from secondbrain.schemas import IngestResult
from secondbrain.storage.base import DocumentStore


class IngestionCoordinator:
    """Chunk -> embed -> persist, all-or-nothing, once per document."""

    def __init__(
        self,
        store: DocumentStore,
        extractor: TextExtractor,
        embedder: EmbeddingClient,
        config: RAGConfig,
    ) -> None:
        self.store = store
        self.extractor = extractor
        self.embedder = embedder
        self.chunker = FixedOverlapChunker(config.chunk_size, config.chunk_overlap)
        self._locks: defaultdict[int, asyncio.Lock] = defaultdict(asyncio.Lock)

    @traceable(name="ingest", run_type="chain")
    async def ingest(self, document_id: int) -> IngestResult:
        """
        Ingest one document.

        Raises:
            NotFoundError:              document (or its file / the model) missing
            ConflictError:              document already ingested
            UnprocessableContentError:  no extractable text
            DependencyUnavailableError: embedding provider down
        """
        async with self._locks[document_id]:
            return await self._ingest(document_id)

    async def _ingest(self, document_id: int) -> IngestResult:
        document = self.store.get_document(document_id)
        if document is None:
            raise NotFoundError(f"Document {document_id} not found")

        if self.store.is_ingested(document_id):
            raise ConflictError(
                f"Document {document_id} is already ingested "
                f"({self.store.count_fragments(document_id)} chunks)",
                remediation="Delete the document and add it again to re-ingest",
            )

        started = time.perf_counter()
        text = await self.extractor.extract(document)
        if not text.strip():
            raise UnprocessableContentError(
                f"No text could be extracted from {document.filename}",
                remediation="Scanned or image-only files need OCR before ingestion",
            )

        chunks = self.chunker.chunk(text)
        logger.info(f"[Ingest] {document.filename}: {len(text)} chars -> {len(chunks)} chunk(s)")

        vectors = await self.embedder.embed([c.text for c in chunks])
        # commit_ingestion re-validates: the document may be deleted mid-embed
        fragments = self.store.commit_ingestion(document_id, chunks, vectors, self.embedder.model)

        logger.info(
            f"[Ingest] Document {document_id} done | {len(fragments)} fragments | "
            f"model={self.embedder.model} | {time.perf_counter() - started:.2f}s"
        )
        return IngestResult(
            document_id=document_id,
            chunks_created=len(fragments),
            embeddings_created=len(fragments),
            model=self.embedder.model,
        )
