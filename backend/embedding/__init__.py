"""Dynamic embedding provider loader.

Reads EMBEDDING_PROVIDER from settings and returns the matching provider.
Provider SDKs are imported lazily; only the selected provider's SDK
needs to be installed.

Usage:
    from embedding import create_embedding_provider
    embeddings = create_embedding_provider(settings)
    vector = await embeddings.embed("who won the 2023 grand final")
"""

from __future__ import annotations

import logging

from .base import EmbeddingError, EmbeddingProvider

logger = logging.getLogger(__name__)

__all__ = ["EmbeddingError", "EmbeddingProvider", "create_embedding_provider"]


def create_embedding_provider(s=None) -> EmbeddingProvider:
    """Instantiate the configured provider."""
    if s is None:
        from settings import settings as s

    name = s.EMBEDDING_PROVIDER.lower()

    if name == "local":
        from .local import LocalEmbeddingProvider

        return LocalEmbeddingProvider(
            model=s.EMBEDDING_MODEL,
            query_instruction=s.QUERY_INSTRUCTION,
        )
    elif name == "openai":
        from .openai import OpenAIEmbeddingProvider

        return OpenAIEmbeddingProvider(
            api_key=s.EMBEDDING_API_KEY,
            model=s.EMBEDDING_MODEL,
            base_url=s.EMBEDDING_BASE_URL,
        )
    else:
        raise ValueError(
            f"Unknown EMBEDDING_PROVIDER: '{name}'.  "
            f"Supported: local, openai"
        )
