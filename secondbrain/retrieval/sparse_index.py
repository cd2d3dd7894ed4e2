"""
Sparse Prefilter Index
-----------------------
BM25 (rank_bm25.BM25Okapi) over fragment text.  Used to cheaply narrow the
candidate set before dense reranking, so query cost depends on
PREFILTER_LIMIT rather than on corpus size.

The index mirrors the store: it remembers the store version it was built
from and rebuilds lazily on the next search after an ingestion or deletion.
"""
from __future__ import annotations

import re
import time

import numpy as np
from loguru import logger
from rank_bm25 import BM25Okapi

from secondbrain.storage.base import DocumentStore


def bm25_tokens(text: str) -> list[str]:
    """Normalise text for BM25: lowercase, strip punctuation, split on whitespace.

    Stripping every non-alphanumeric character first makes "trust's", "trust,"
    and "Trust" all tokenise to "trust" and match each other.
    """
    normalised = re.sub(r"[^a-z0-9\s]", " ", text.lower())
    return [t for t in normalised.split() if len(t) > 1]


class SparseIndex:
    """
    Lexical ranked search returning fragment ids.

    Usage:
        index = SparseIndex(store)
        ids = index.search("quarterly revenue", limit=200)
    """

    def __init__(self, store: DocumentStore) -> None:
        self.store = store
        self.bm25: BM25Okapi | None = None
        self._fragment_ids: list[int] = []
        self._built_version: int = -1

    # --- Build ----------------------------------------------------------------

    def refresh(self) -> None:
        """Rebuild from the store if it changed since the last build."""
        if self._built_version == self.store.version:
            return

        start = time.perf_counter()
        fragments = self.store.all_fragments()
        corpus = [bm25_tokens(f.text) for f in fragments]
        self._fragment_ids = [f.id for f in fragments]
        # BM25Okapi cannot be built over an empty corpus (zero average length)
        self.bm25 = BM25Okapi(corpus) if any(corpus) else None
        self._built_version = self.store.version

        logger.info(
            f"[SparseIndex] Rebuilt over {len(fragments)} fragments "
            f"in {(time.perf_counter() - start) * 1000:.0f}ms"
        )

    @property
    def is_built(self) -> bool:
        return self.bm25 is not None

    # --- Search ---------------------------------------------------------------

    def search(self, query_text: str, limit: int) -> list[int]:
        """
        Return up to `limit` fragment ids with a positive BM25 score,
        best first.  Empty when the index has nothing to offer.
        """
        self.refresh()
        if self.bm25 is None:
            return []

        tokens = bm25_tokens(query_text)
        if not tokens:
            return []

        scores = self.bm25.get_scores(tokens)
        # Stable descending order: equal scores keep corpus order
        order = np.argsort(-scores, kind="stable")[:limit]
        return [self._fragment_ids[i] for i in order if scores[i] > 0]
