"""Deterministic k-means (Lloyd's algorithm).

Seeding is NOT random: the first ``k`` input vectors become the initial
centroids, so the same input in the same order always yields the same
codebook.  A cluster that receives no vectors keeps its previous centroid.
"""

from __future__ import annotations

import logging

import numpy as np

from linalg import CONVERGENCE_TOLERANCE, centroids_converged, squared_distances

logger = logging.getLogger(__name__)

MAX_ITERATIONS = 100


def assign(vectors, centroids) -> np.ndarray:
    """Label each vector with its nearest centroid (first minimum wins)."""
    return np.argmin(squared_distances(vectors, centroids), axis=1)


def kmeans(
    vectors,
    k: int,
    max_iterations: int = MAX_ITERATIONS,
    tol: float = CONVERGENCE_TOLERANCE,
) -> np.ndarray:
    """Partition *vectors* into at most *k* clusters; return the centroids.

    When ``k`` exceeds the number of vectors, every vector seeds its own
    cluster and the result has ``len(vectors)`` rows.
    """
    data = np.asarray(vectors, dtype=np.float64)
    if data.ndim != 2 or data.shape[0] == 0:
        raise ValueError("kmeans() needs a non-empty 2-D set of vectors")
    if k < 1:
        raise ValueError(f"k must be >= 1, got {k}")

    k = min(k, data.shape[0])
    centroids = data[:k].copy()

    iterations = 0
    while iterations < max_iterations:
        labels = assign(data, centroids)
        previous = centroids

        counts = np.bincount(labels, minlength=k)
        sums = np.zeros_like(previous)
        np.add.at(sums, labels, data)

        centroids = previous.copy()
        filled = counts > 0
        centroids[filled] = sums[filled] / counts[filled, None]

        iterations += 1
        if centroids_converged(centroids, previous, tol):
            break

    logger.debug(f"kmeans: k={k}, n={data.shape[0]}, iterations={iterations}")
    return centroids
