"""Pytest conftest — backend/ on sys.path plus shared fakes for async tests."""

import dataclasses
import hashlib
import sys
from pathlib import Path

import numpy as np
import pytest

# Add backend/ to sys.path so `import pq`, `from kv import ...` etc. work
_backend_dir = str(Path(__file__).resolve().parent.parent)
if _backend_dir not in sys.path:
    sys.path.insert(0, _backend_dir)

from embedding.base import EmbeddingError, EmbeddingProvider  # noqa: E402
from telemetry import TelemetryStore  # noqa: E402


def text_vector(text: str, dim: int = 16) -> list[float]:
    """Deterministic pseudo-embedding: same text, same vector."""
    digest = hashlib.sha256(text.encode("utf-8")).digest()
    return (np.frombuffer(digest, dtype=np.uint8)[:dim].astype(np.float64) - 127.5).tolist()


class FakeEmbeddings(EmbeddingProvider):
    """Hash-based embeddings.  ``fail_batches`` lists embed_batch call numbers (1-based) that raise."""

    def __init__(self, dim: int = 16, fail_batches=(), fail_queries: bool = False, model: str = "fake-v1"):
        self.dim = dim
        self.fail_batches = set(fail_batches)
        self.fail_queries = fail_queries
        self.model = model
        self.batch_calls = 0
        self.query_calls = 0

    @property
    def name(self) -> str:
        return "fake"

    @property
    def model_id(self) -> str:
        return self.model

    async def embed(self, text):
        self.query_calls += 1
        if self.fail_queries:
            raise EmbeddingError("query embedding offline")
        return text_vector(text, self.dim)

    async def embed_batch(self, texts):
        self.batch_calls += 1
        if self.batch_calls in self.fail_batches:
            raise EmbeddingError(f"batch {self.batch_calls} failed")
        return [text_vector(t, self.dim) for t in texts]


@pytest.fixture
def fake_embeddings():
    return FakeEmbeddings()


@pytest.fixture
def test_settings(tmp_path):
    """Settings with no retry delay, small batches, and a temp data dir."""
    from settings import settings

    return dataclasses.replace(
        settings,
        VECTOR_DOMAINS="nrl,afl",
        DEFAULT_DOMAIN="nrl",
        DATA_DIR=str(tmp_path / "data"),
        MAX_DOCUMENTS_PER_DOMAIN=0,
        EMBED_BATCH_SIZE=2,
        EMBED_MAX_RETRIES=3,
        EMBED_RETRY_DELAY=0.0,
        EMBED_BATCH_PAUSE=0.0,
        PQ_SUBSPACES=4,
        PQ_CENTROIDS=256,
        PQ_MAX_ITERATIONS=100,
        PQ_MIN_TRAINING_VECTORS=1,
        PQ_RETRAIN_THRESHOLD=50,
        SEARCH_LIMIT=5,
        KV_BACKEND="memory",
        CACHE_PREFIX="vector_store_",
        BLOB_CHUNK_SIZE=100 * 1024,
        CACHE_READ_RETRIES=3,
        CACHE_RETRY_DELAY=0.0,
        TELEMETRY_EXPORT_PATH="",
    )


@pytest.fixture(autouse=True)
def _clean_telemetry():
    TelemetryStore.clear()
    yield
    TelemetryStore.clear()
