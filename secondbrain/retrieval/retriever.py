"""
Hybrid Retriever
-----------------
Two-stage retrieval for one question:

    Stage 1  SparseIndex (BM25)        -> up to PREFILTER_LIMIT candidate ids
             fallback: MAX_EMBEDDINGS_SEARCH most recent embeddings
    Stage 2  rank_by_cosine            -> TOP_K by similarity to the question

The fallback favours recently ingested content over corpus-wide relevance;
it exists to bound latency and memory when the lexical stage has nothing.

The retriever is stateless per query -- call retrieve() as many times as
you like, concurrently, from the same instance.
"""
from __future__ import annotations

import time

from langsmith import traceable
from loguru import logger

from secondbrain.config import RAGConfig
from secondbrain.errors import NoContentError
from secondbrain.providers.base import EmbeddingClient
from secondbrain.retrieval.similarity import rank_by_cosine
from secondbrain.retrieval.sparse_index import SparseIndex
from secondbrain.schemas import Embedding, RankedFragment
from secondbrain.storage.base import DocumentStore


class HybridRetriever:
    """Sparse prefilter + dense rerank over the fragments in a DocumentStore."""

    def __init__(
        self,
        store: DocumentStore,
        embedder: EmbeddingClient,
        config: RAGConfig,
        sparse_index: SparseIndex | None = None,
    ) -> None:
        self.store = store
        self.embedder = embedder
        self.top_k = config.top_k
        self.prefilter_limit = config.prefilter_limit
        self.max_embeddings_search = config.max_embeddings_search
        self.sparse_index = sparse_index or SparseIndex(store)

    def candidates(self, question: str) -> tuple[list[Embedding], bool]:
        """
        Stage 1: candidate embeddings, lexical first, recency fallback.

        Returns:
            (candidates, used_fallback)
        """
        try:
            ids = self.sparse_index.search(question, self.prefilter_limit)
        except Exception as exc:
            logger.warning(f"[Retriever] Sparse index unavailable, using fallback: {exc}")
            ids = []

        if ids:
            by_id = self.store.get_embeddings(ids)
            found = [by_id[fid] for fid in ids if fid in by_id]
            if found:
                logger.debug(f"[Retriever] Prefilter -> {len(found)} candidates")
                return found, False

        found = self.store.recent_embeddings(self.max_embeddings_search)
        logger.debug(f"[Retriever] Fallback -> {len(found)} most recent embeddings")
        return found, True

    @traceable(name="retrieve", run_type="retriever")
    async def retrieve(self, question: str) -> list[RankedFragment]:
        """
        Return the top-k fragments for a question, most similar first.

        Raises:
            NoContentError: no fragments have been ingested.
            Whatever the embedding client raises for the question.
        """
        if self.store.count_fragments() == 0:
            raise NoContentError(
                "No embedded content yet",
                remediation="Ingest at least one document before asking questions",
            )

        t0 = time.perf_counter()
        query_vec = await self.embedder.embed_query(question)

        candidates, used_fallback = self.candidates(question)
        ranked = rank_by_cosine(
            query_vec,
            [(emb.fragment_id, emb.vector) for emb in candidates],
            self.top_k,
        )

        fragments = {f.id: f for f in self.store.get_fragments([fid for fid, _ in ranked])}
        results: list[RankedFragment] = []
        for fid, score in ranked:
            fragment = fragments.get(fid)
            if fragment is None:
                continue
            document = self.store.get_document(fragment.document_id)
            results.append(
                RankedFragment(
                    fragment_id=fid,
                    document_id=fragment.document_id,
                    chunk_index=fragment.chunk_index,
                    filename=document.filename if document else "",
                    text=fragment.text,
                    similarity=score,
                )
            )

        logger.info(
            f"[Retriever] {len(candidates)} candidates -> {len(results)} results "
            f"| fallback={used_fallback} "
            f"| {(time.perf_counter() - t0) * 1000:.0f}ms"
            + (f" | top score: {results[0].similarity:.4f}" if results else "")
        )
        return results
