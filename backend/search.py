"""Similarity search over a VectorStore — PQ-approximate with exact fallback.

Two algorithms:
  - ``search_exact``   — cosine similarity against every stored vector.
  - ``search_with_pq`` — per-query M x K distance table, then each stored
    vector's approximate distance is the sum of M table lookups;
    similarity = 1 / (1 + distance).

``search`` composes them in a fixed order: PQ when the store is READY and
has a codebook, exact otherwise or when the codebook turns out to be
unusable.  A query of the wrong width is the caller's problem and raises
``DimensionMismatchError``.

Both algorithms return ``[]`` for an empty store or ``limit <= 0`` and keep
encounter order for equal scores (stable sort).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from pq import CodebookError
from store import Document, StoreState, VectorStore

logger = logging.getLogger(__name__)

__all__ = [
    "CodebookError",
    "DimensionMismatchError",
    "ScoredDocument",
    "SearchError",
    "SearchResult",
    "search",
    "search_exact",
    "search_with_pq",
]


class SearchError(Exception):
    """Base class for search failures the caller must decide about."""


class DimensionMismatchError(SearchError):
    """Query vector width differs from the store's vector width."""


@dataclass
class ScoredDocument:
    document: Document
    similarity: float


@dataclass
class SearchResult:
    hits: list[ScoredDocument]
    method: str  # "pq" | "exact" | "none"


def _query_vector(query, store: VectorStore) -> np.ndarray:
    q = np.asarray(query, dtype=np.float64).ravel()
    if store.dimension is not None and q.shape[0] != store.dimension:
        raise DimensionMismatchError(
            f"Query width {q.shape[0]} != {store.domain} store width {store.dimension}"
        )
    return q


def _top(store: VectorStore, scores: np.ndarray, limit: int) -> list[ScoredDocument]:
    order = np.argsort(-scores, kind="stable")[:limit]
    return [ScoredDocument(store.documents[i], float(scores[i])) for i in order]


def search_exact(query, store: VectorStore, limit: int) -> list[ScoredDocument]:
    """Top *limit* documents by cosine similarity."""
    if limit <= 0 or not store.vectors or not store.documents:
        return []
    q = _query_vector(query, store)

    n = min(len(store.vectors), len(store.documents))
    mat = store.matrix()[:n]
    dots = mat @ q
    norms = np.linalg.norm(mat, axis=1) * np.linalg.norm(q)
    sims = np.divide(dots, norms, out=np.zeros_like(dots), where=norms > 0)
    return _top(store, sims, limit)


def search_with_pq(query, store: VectorStore, limit: int) -> list[ScoredDocument]:
    """Top *limit* documents by PQ-approximate distance.

    Vectors appended after the codebook was trained have no assignment
    row; they are scored with their exact per-subspace distance sum so
    they stay on the same scale as the table lookups.
    """
    if limit <= 0 or not store.vectors or not store.documents:
        return []
    codebook = store.pq_codebook
    if codebook is None:
        raise CodebookError(f"{store.domain} store has no PQ codebook")
    q = _query_vector(query, store)
    codebook.validate(q.shape[0], len(store.vectors))

    n = min(len(store.vectors), len(store.documents))
    tables = codebook.distance_table(q)
    codes = codebook.assignments[:n]
    assigned = codes.shape[0]

    distances = np.zeros(n, dtype=np.float64)
    for s, table in enumerate(tables):
        distances[:assigned] += table[codes[:, s]]

    if assigned < n:
        tail = store.matrix()[assigned:n]
        for lo, hi in codebook.bounds():
            diff = tail[:, lo:hi] - q[lo:hi]
            distances[assigned:] += np.sqrt(np.sum(diff * diff, axis=1))

    sims = 1.0 / (1.0 + distances)
    return _top(store, sims, limit)


def search(query, store: VectorStore, limit: int) -> SearchResult:
    """PQ search when possible, exact search otherwise."""
    if not store.is_searchable or limit <= 0:
        return SearchResult(hits=[], method="none")

    if store.state is StoreState.READY and store.pq_codebook is not None:
        try:
            return SearchResult(hits=search_with_pq(query, store, limit), method="pq")
        except CodebookError as e:
            logger.warning(f"PQ search unavailable for {store.domain}, using exact search: {e}")

    return SearchResult(hits=search_exact(query, store, limit), method="exact")
