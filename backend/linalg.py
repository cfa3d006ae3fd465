"""Vector math primitives shared by k-means, PQ training and search.

All functions are pure.  Length mismatches raise ``ValueError`` instead
of silently truncating.
"""

from __future__ import annotations

from typing import Sequence

import numpy as np

CONVERGENCE_TOLERANCE = 1e-6


def _as_pair(a, b) -> tuple[np.ndarray, np.ndarray]:
    x = np.asarray(a, dtype=np.float64)
    y = np.asarray(b, dtype=np.float64)
    if x.shape != y.shape:
        raise ValueError(f"Vector length mismatch: {x.shape} vs {y.shape}")
    return x, y


def euclidean_distance(a, b) -> float:
    """sqrt(sum((a_i - b_i)^2))."""
    x, y = _as_pair(a, b)
    return float(np.sqrt(np.sum((x - y) ** 2)))


def cosine_similarity(a, b) -> float:
    """Cosine of the angle between *a* and *b*; 0.0 if either has zero norm."""
    x, y = _as_pair(a, b)
    norm = float(np.linalg.norm(x) * np.linalg.norm(y))
    if norm == 0:
        return 0.0
    return float(np.dot(x, y)) / norm


def centroid(vectors: Sequence) -> np.ndarray:
    """Elementwise mean of a non-empty collection of equal-length vectors."""
    if len(vectors) == 0:
        raise ValueError("centroid() of an empty set is undefined")
    return np.asarray(vectors, dtype=np.float64).mean(axis=0)


def centroids_converged(a, b, tol: float = CONVERGENCE_TOLERANCE) -> bool:
    """True when no coordinate of any centroid moved by more than *tol*."""
    x, y = _as_pair(a, b)
    return bool(np.all(np.abs(x - y) <= tol))


def nearest_centroid(vector, centroids) -> int:
    """Index of the closest centroid.  The first minimum wins ties."""
    v = np.asarray(vector, dtype=np.float64)
    c = np.asarray(centroids, dtype=np.float64)
    if c.ndim != 2 or c.shape[1] != v.shape[0]:
        raise ValueError(f"Centroid shape {c.shape} does not match vector length {v.shape[0]}")
    dists = np.sqrt(np.sum((c - v) ** 2, axis=1))
    return int(np.argmin(dists))


def squared_distances(points: np.ndarray, centroids: np.ndarray) -> np.ndarray:
    """N x K matrix of squared Euclidean distances.

    Uses the ||p||^2 - 2 p.c + ||c||^2 expansion so memory stays at N x K
    rather than N x K x D.  Clipped at zero against rounding.
    """
    p = np.asarray(points, dtype=np.float64)
    c = np.asarray(centroids, dtype=np.float64)
    if p.shape[1] != c.shape[1]:
        raise ValueError(f"Width mismatch: points {p.shape[1]} vs centroids {c.shape[1]}")
    d2 = (
        np.sum(p * p, axis=1)[:, None]
        - 2.0 * (p @ c.T)
        + np.sum(c * c, axis=1)[None, :]
    )
    return np.maximum(d2, 0.0)
