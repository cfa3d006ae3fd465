"""Key-value store base class.

Every backend implements four coroutines:
  - get(key)      -> str | None
  - set(key, value)
  - delete(key)   (missing keys are not an error)
  - scan(prefix)  -> list of keys starting with prefix

Values are opaque strings.  Backends do not chunk; large values are
handled one layer up by ``blob_store.BlobStore``.  I/O errors propagate
to the caller.

To add a new backend:
  1. Create kv/your_backend.py
  2. Subclass KeyValueStore
  3. Register it in kv/__init__.py
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional


class KeyValueStore(ABC):
    """Abstract base for persistent key-value backends."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Backend identifier (e.g. 'memory', 'redis')."""
        ...

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Return the stored value, or None when the key is absent."""
        ...

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """Store *value* under *key*, replacing any previous value."""
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove *key*.  No-op when it does not exist."""
        ...

    @abstractmethod
    async def scan(self, prefix: str = "") -> list[str]:
        """All keys beginning with *prefix*."""
        ...

    async def close(self) -> None:
        """Release connections.  Default: nothing to release."""
        return None
