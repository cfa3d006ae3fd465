"""In-memory vector store for one domain.

Public API:
    Document     — immutable text + metadata record
    StoreState   — lifecycle tag (UNINITIALIZED → LOADING/BUILDING → READY/DEGRADED)
    VectorStore  — parallel vectors/documents arrays plus optional PQ codebook

Invariant: ``len(vectors) == len(documents)`` and ``vectors[i]`` is the
embedding of ``documents[i]``.  ``append()`` is the only mutation and it
checks both before touching either list.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

import numpy as np

from pq import PQCodebook

FORMAT_VERSION = 1


@dataclass(frozen=True)
class Document:
    """A stored text.  ``metadata`` always carries a ``domain`` tag."""

    text: str
    metadata: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"text": self.text, "metadata": dict(self.metadata)}

    @classmethod
    def from_dict(cls, data: dict) -> Document:
        if not isinstance(data, dict):
            raise ValueError(f"Malformed document record: {data!r:.120}")
        text = data.get("text")
        metadata = data.get("metadata", {})
        if not isinstance(text, str) or not isinstance(metadata, dict):
            raise ValueError(f"Malformed document record: {data!r:.120}")
        return cls(text=text, metadata=metadata)


class StoreState(str, Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    BUILDING = "building"
    READY = "ready"
    DEGRADED = "degraded"


# States whose contents may be queried (BUILDING exposes partial progress).
SEARCHABLE_STATES = frozenset({StoreState.READY, StoreState.DEGRADED, StoreState.BUILDING})


@dataclass
class VectorStore:
    """Vectors + documents for a single domain, tagged with its lifecycle state."""

    domain: str
    state: StoreState = StoreState.UNINITIALIZED
    vectors: list[np.ndarray] = field(default_factory=list)
    documents: list[Document] = field(default_factory=list)
    pq_codebook: Optional[PQCodebook] = None
    content_hash: str = ""

    def __len__(self) -> int:
        return len(self.documents)

    @property
    def dimension(self) -> Optional[int]:
        return int(self.vectors[0].shape[0]) if self.vectors else None

    @property
    def unassigned_count(self) -> int:
        """Vectors appended since the codebook was last trained."""
        if self.pq_codebook is None:
            return len(self.vectors)
        return len(self.vectors) - int(self.pq_codebook.assignments.shape[0])

    @property
    def is_searchable(self) -> bool:
        return self.state in SEARCHABLE_STATES and len(self.vectors) > 0

    # ── Mutation ──────────────────────────────────────────────────

    def append(self, vectors, documents: list[Document]) -> int:
        """Append parallel vectors and documents.  Returns the number added."""
        rows = [np.asarray(v, dtype=np.float32).ravel() for v in vectors]
        if len(rows) != len(documents):
            raise ValueError(f"{len(rows)} vectors for {len(documents)} documents")
        if not rows:
            return 0
        dim = self.dimension or rows[0].shape[0]
        for row in rows:
            if row.shape[0] != dim:
                raise ValueError(f"Vector width {row.shape[0]} != store width {dim}")
        self.vectors.extend(rows)
        self.documents.extend(documents)
        return len(rows)

    def mark_ready(self, codebook: Optional[PQCodebook]) -> None:
        self.pq_codebook = codebook
        self.state = StoreState.READY

    def mark_degraded(self) -> None:
        """Partial store, searchable with exact search only."""
        self.pq_codebook = None
        self.state = StoreState.DEGRADED

    def matrix(self) -> np.ndarray:
        """Stored vectors as an N x D float64 array."""
        if not self.vectors:
            return np.empty((0, 0), dtype=np.float64)
        return np.vstack(self.vectors).astype(np.float64)

    # ── Serialization ─────────────────────────────────────────────

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": FORMAT_VERSION,
            "domain": self.domain,
            "content_hash": self.content_hash,
            "vectors": [v.tolist() for v in self.vectors],
            "documents": [d.to_dict() for d in self.documents],
            "pq_codebook": self.pq_codebook.to_dict() if self.pq_codebook else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> VectorStore:
        """Rebuild a READY store.  Raises ValueError on any shape problem."""
        if not isinstance(data, dict) or data.get("version") != FORMAT_VERSION:
            raise ValueError("Unsupported or missing store format version")

        store = cls(domain=str(data.get("domain", "")), content_hash=str(data.get("content_hash", "")))
        raw_vectors = data.get("vectors")
        raw_docs = data.get("documents")
        if not isinstance(raw_vectors, list) or not isinstance(raw_docs, list):
            raise ValueError("Store record lacks vectors/documents arrays")
        store.append(raw_vectors, [Document.from_dict(d) for d in raw_docs])

        codebook = None
        if data.get("pq_codebook"):
            codebook = PQCodebook.from_dict(data["pq_codebook"])
            codebook.validate(store.dimension or 0, len(store.vectors))
        store.mark_ready(codebook)
        return store
