"""Local sentence-transformers provider — no API key required.

Default model: BAAI/bge-base-en-v1.5 (768-dim).  Swap via EMBEDDING_MODEL.

Asymmetric retrieval:
  - Documents are encoded by embed_batch() with no prefix.
  - Queries are encoded by embed(), which prepends QUERY_INSTRUCTION when
    set (recommended for bge, e5, nomic models).

The model is loaded lazily on first call.  Encoding is blocking, so it
runs in a worker thread.
"""

from __future__ import annotations

import asyncio
import logging

from .base import EmbeddingError, EmbeddingProvider

logger = logging.getLogger(__name__)


class LocalEmbeddingProvider(EmbeddingProvider):
    DEFAULT_MODEL = "BAAI/bge-base-en-v1.5"

    def __init__(self, model: str = "", query_instruction: str = ""):
        self._model_name = model or self.DEFAULT_MODEL
        self._query_instruction = query_instruction
        self._model = None

    @property
    def name(self) -> str:
        return "local"

    @property
    def model_id(self) -> str:
        return f"local:{self._model_name}"

    def _get_model(self):
        if self._model is None:
            from sentence_transformers import SentenceTransformer

            self._model = SentenceTransformer(self._model_name)
            logger.info(
                f"Loaded embedding model {self._model_name} "
                f"(dim={self._model.get_sentence_embedding_dimension()})"
            )
        return self._model

    def _encode(self, texts: list[str]) -> list[list[float]]:
        vectors = self._get_model().encode(texts, convert_to_numpy=True)
        return vectors.astype("float32").tolist()

    async def embed(self, text: str) -> list[float]:
        if self._query_instruction:
            text = self._query_instruction + text
        return (await self._run([text]))[0]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        return await self._run(texts)

    async def _run(self, texts: list[str]) -> list[list[float]]:
        try:
            return await asyncio.to_thread(self._encode, texts)
        except Exception as e:
            raise EmbeddingError(f"Local embedding failed: {e}") from e
