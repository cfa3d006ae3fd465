"""Embedding provider base class.

Every provider implements:
  - embed(text)          -> list[float]         (query side)
  - embed_batch(texts)   -> list[list[float]]   (document side, one vector per text)
  - model_id                                    (identity folded into cache keys)

To add a new provider:
  1. Create embedding/your_provider.py
  2. Subclass EmbeddingProvider
  3. Register it in embedding/__init__.py
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class EmbeddingError(Exception):
    """The provider could not produce embeddings (network, quota, model load)."""


class EmbeddingProvider(ABC):
    """Abstract base for embedding providers."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider identifier (e.g. 'local', 'openai')."""
        ...

    @property
    @abstractmethod
    def model_id(self) -> str:
        """Stable model identity.  Changing it invalidates cached stores."""
        ...

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        """Embed a search query."""
        ...

    @abstractmethod
    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed documents, preserving order."""
        ...
