"""Product quantization codebook — training, encoding, validation.

A vector of width D is cut into M contiguous slices.  Each slice position
(subspace) gets its own k-means centroid table; a stored vector is then
represented by M small integers, one centroid index per subspace.

Remainder handling: when D is not divisible by M the LAST subspace
absorbs the leftover dimensions (``subspace_bounds(10, 4)`` gives widths
2, 2, 2, 4).  Nothing is dropped.

The codebook is always trained in one shot over the whole store.  Vectors
appended afterwards simply have no assignment row until the next retrain.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import numpy as np

from kmeans import MAX_ITERATIONS, assign, kmeans

logger = logging.getLogger(__name__)

DEFAULT_SUBSPACES = 8
DEFAULT_CENTROIDS = 256


class CodebookError(ValueError):
    """Codebook is missing, malformed, or does not fit the store."""


def subspace_bounds(dimension: int, num_subspaces: int) -> list[tuple[int, int]]:
    """``[lo, hi)`` column ranges for each subspace."""
    if num_subspaces < 1:
        raise ValueError(f"num_subspaces must be >= 1, got {num_subspaces}")
    if dimension < num_subspaces:
        raise ValueError(
            f"Embedding width {dimension} is smaller than the subspace count {num_subspaces}"
        )
    width = dimension // num_subspaces
    bounds = [(s * width, (s + 1) * width) for s in range(num_subspaces)]
    lo, _ = bounds[-1]
    bounds[-1] = (lo, dimension)
    return bounds


@dataclass
class PQCodebook:
    """Per-subspace centroid tables plus per-vector centroid assignments."""

    centroids: list[np.ndarray]                # M tables, each K_s x width_s
    assignments: np.ndarray = field(            # N x M centroid indices
        default_factory=lambda: np.empty((0, 0), dtype=np.int32)
    )

    @property
    def num_subspaces(self) -> int:
        return len(self.centroids)

    @property
    def dimension(self) -> int:
        return int(sum(c.shape[1] for c in self.centroids))

    def bounds(self) -> list[tuple[int, int]]:
        """Column ranges implied by the centroid table widths."""
        out: list[tuple[int, int]] = []
        lo = 0
        for table in self.centroids:
            out.append((lo, lo + table.shape[1]))
            lo += table.shape[1]
        return out

    # ── Encoding / lookup ─────────────────────────────────────────

    def encode(self, vectors) -> np.ndarray:
        """Nearest-centroid code for every vector, shape N x M."""
        data = np.asarray(vectors, dtype=np.float64)
        if data.ndim != 2 or data.shape[1] != self.dimension:
            raise CodebookError(
                f"Cannot encode vectors of shape {data.shape} with a {self.dimension}-wide codebook"
            )
        codes = np.empty((data.shape[0], self.num_subspaces), dtype=np.int32)
        for s, (lo, hi) in enumerate(self.bounds()):
            codes[:, s] = assign(data[:, lo:hi], self.centroids[s])
        return codes

    def distance_table(self, query) -> list[np.ndarray]:
        """Euclidean distance from each query slice to every centroid of its subspace.

        Computed once per query; approximate distances are then sums of
        M table lookups.
        """
        q = np.asarray(query, dtype=np.float64)
        tables = []
        for s, (lo, hi) in enumerate(self.bounds()):
            diff = self.centroids[s] - q[lo:hi]
            tables.append(np.sqrt(np.sum(diff * diff, axis=1)))
        return tables

    # ── Validation ────────────────────────────────────────────────

    def validate(self, dimension: int, count: int) -> None:
        """Raise CodebookError unless the codebook fits a store of *count* x *dimension*."""
        if not self.centroids:
            raise CodebookError("Codebook has no centroid tables")
        for s, table in enumerate(self.centroids):
            if table.ndim != 2 or table.shape[0] == 0:
                raise CodebookError(f"Subspace {s} centroid table has shape {table.shape}")
        try:
            expected = subspace_bounds(dimension, self.num_subspaces)
        except ValueError as e:
            raise CodebookError(str(e)) from e
        if self.bounds() != expected:
            raise CodebookError(
                f"Centroid widths {[hi - lo for lo, hi in self.bounds()]} do not match "
                f"a {dimension}-wide store"
            )

        a = self.assignments
        if a.ndim != 2 or a.shape[0] == 0 or a.shape[1] != self.num_subspaces:
            raise CodebookError(f"Assignments have shape {a.shape}")
        if a.shape[0] > count:
            raise CodebookError(f"{a.shape[0]} assignment rows for only {count} vectors")
        for s, table in enumerate(self.centroids):
            col = a[:, s]
            if col.min() < 0 or col.max() >= table.shape[0]:
                raise CodebookError(f"Subspace {s} assignment index out of range")

    # ── Serialization ─────────────────────────────────────────────

    def to_dict(self) -> dict:
        return {
            "centroids": [table.tolist() for table in self.centroids],
            "assignments": self.assignments.tolist(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> PQCodebook:
        try:
            centroids = [np.asarray(t, dtype=np.float64) for t in data["centroids"]]
            assignments = np.asarray(data["assignments"], dtype=np.int32)
        except (KeyError, TypeError, ValueError) as e:
            raise CodebookError(f"Unreadable codebook: {e}") from e
        if assignments.ndim == 1 and assignments.size == 0:
            assignments = assignments.reshape(0, len(centroids))
        return cls(centroids=centroids, assignments=assignments)


def train_pq_codebook(
    vectors,
    num_subspaces: int = DEFAULT_SUBSPACES,
    num_centroids: int = DEFAULT_CENTROIDS,
    max_iterations: int = MAX_ITERATIONS,
) -> PQCodebook:
    """Train centroid tables for every subspace and encode all *vectors*."""
    data = np.asarray(vectors, dtype=np.float64)
    if data.ndim != 2 or data.shape[0] == 0:
        raise ValueError("Cannot train a PQ codebook on zero vectors")

    bounds = subspace_bounds(data.shape[1], num_subspaces)
    centroids = [
        kmeans(data[:, lo:hi], num_centroids, max_iterations=max_iterations)
        for lo, hi in bounds
    ]
    codebook = PQCodebook(centroids=centroids)
    codebook.assignments = codebook.encode(data)

    logger.info(
        f"Trained PQ codebook: {data.shape[0]} vectors, dim={data.shape[1]}, "
        f"M={num_subspaces}, K<={num_centroids}"
    )
    return codebook
