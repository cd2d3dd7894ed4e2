"""
Dense rerank
-------------
Cosine similarity over a bounded candidate set.

    cosine(a, b) = dot(a, b) / (|a| * |b|)

Degenerate inputs (length mismatch, empty vectors, zero norm) score 0.0
instead of raising, so one malformed stored vector can never fail a query.
"""
from __future__ import annotations

from typing import Sequence, TypeVar

import numpy as np
from loguru import logger

T = TypeVar("T")


def cosine(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity in [-1, 1]; 0.0 when undefined."""
    if len(a) != len(b):
        logger.warning(f"[Similarity] Vector length mismatch: {len(a)} vs {len(b)}")
        return 0.0
    if len(a) == 0:
        return 0.0

    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    norm_a = float(np.linalg.norm(va))
    norm_b = float(np.linalg.norm(vb))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return float(np.dot(va, vb) / (norm_a * norm_b))


def rank_by_cosine(
    query: Sequence[float],
    candidates: list[tuple[T, Sequence[float]]],
    top_k: int,
) -> list[tuple[T, float]]:
    """
    Score every (item, vector) candidate against the query and keep the best.

    The query norm is computed once; each candidate costs O(d).  Python's
    sort is stable, so equal scores keep the candidates' input order.

    Returns:
        At most top_k (item, similarity) pairs, similarity descending.
    """
    if not candidates or top_k <= 0:
        return []

    q = np.asarray(query, dtype=np.float64)
    q_norm = float(np.linalg.norm(q))

    scored: list[tuple[T, float]] = []
    for item, vector in candidates:
        if len(vector) != len(q) or len(q) == 0 or q_norm == 0.0:
            scored.append((item, 0.0))
            continue
        v = np.asarray(vector, dtype=np.float64)
        v_norm = float(np.linalg.norm(v))
        score = float(np.dot(q, v) / (q_norm * v_norm)) if v_norm > 0.0 else 0.0
        scored.append((item, score))

    scored.sort(key=lambda pair: pair[1], reverse=True)
    return scored[:top_k]
