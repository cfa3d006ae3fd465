"""OpenAI embeddings provider.

Also works with any OpenAI-compatible embeddings endpoint: set
EMBEDDING_BASE_URL to the custom endpoint.
"""

from __future__ import annotations

import logging

from .base import EmbeddingError, EmbeddingProvider

logger = logging.getLogger(__name__)


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """OpenAI Embeddings API (async client)."""

    DEFAULT_MODEL = "text-embedding-3-small"

    def __init__(self, api_key: str, model: str = "", base_url: str = "", client=None):
        if client is None:
            from openai import AsyncOpenAI  # type: ignore[import-untyped]

            kwargs: dict = {"api_key": api_key}
            if base_url:
                kwargs["base_url"] = base_url
            client = AsyncOpenAI(**kwargs)
        self._client = client
        self._model = model or self.DEFAULT_MODEL
        logger.info(
            f"OpenAI embedding provider ready (model={self._model}"
            f"{', base_url=' + base_url if base_url else ''})"
        )

    @property
    def name(self) -> str:
        return "openai"

    @property
    def model_id(self) -> str:
        return f"openai:{self._model}"

    async def embed(self, text: str) -> list[float]:
        return (await self.embed_batch([text]))[0]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        try:
            response = await self._client.embeddings.create(model=self._model, input=texts)
        except Exception as e:
            raise EmbeddingError(f"OpenAI embedding request failed: {e}") from e
        # The API may return items out of order; index restores input order.
        items = sorted(response.data, key=lambda d: d.index)
        if len(items) != len(texts):
            raise EmbeddingError(f"Expected {len(texts)} embeddings, got {len(items)}")
        return [list(d.embedding) for d in items]
