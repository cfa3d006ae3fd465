"""Persistent cache of built vector stores.

One entry per (domain, content hash), stored as the store's JSON
serialization through ``BlobStore`` so large stores are chunked:

    key = f"{prefix}{domain}_{content_hash}"

A dataset change or an embedding-model change yields a different hash and
therefore a different key, so stale entries are never read back; they
simply age out through ``prune_expired`` or an explicit clear.

Documents added at runtime live in a separate per-domain record,

    key = f"{prefix}{domain}_additions"

which survives dataset changes and is replayed on top of whichever store
is loaded or built.  It carries the embedding model id so vectors from
another model are never mixed in.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Optional

from blob_store import BlobStore
from kv.base import KeyValueStore
from pq import CodebookError
from store import Document, VectorStore

logger = logging.getLogger(__name__)


class StoreCacheError(Exception):
    """Cache entry exists but cannot be turned back into a store."""


ADDITIONS_SUFFIX = "additions"


@dataclass
class Additions:
    """Documents appended after the build, with the vectors they were embedded to."""

    model_id: str
    documents: list[Document] = field(default_factory=list)
    vectors: list[list[float]] = field(default_factory=list)


def cache_key(prefix: str, domain: str, content_hash: str) -> str:
    return f"{prefix}{domain.lower()}_{content_hash}"


class StoreCache:
    def __init__(self, kv: KeyValueStore, prefix: str = "vector_store_", chunk_size: int = 100 * 1024):
        self.kv = kv
        self.prefix = prefix
        self.blobs = BlobStore(kv, chunk_size=chunk_size)

    def key_for(self, domain: str, content_hash: str) -> str:
        return cache_key(self.prefix, domain, content_hash)

    def domain_prefix(self, domain: str) -> str:
        return f"{self.prefix}{domain.lower()}_"

    async def load(self, domain: str, content_hash: str) -> Optional[VectorStore]:
        """Return the cached store, None on a miss.

        Raises StoreCacheError when the entry is present but unusable.
        Backend errors propagate.
        """
        key = self.key_for(domain, content_hash)
        raw = await self.blobs.get_large(key)
        if raw is None:
            return None
        try:
            store = VectorStore.from_dict(json.loads(raw))
        except (ValueError, TypeError, KeyError, CodebookError) as e:
            raise StoreCacheError(f"Corrupt cache entry {key}: {e}") from e
        if store.domain.lower() != domain.lower():
            raise StoreCacheError(f"Cache entry {key} holds domain '{store.domain}'")
        store.content_hash = content_hash
        logger.info(f"Loaded {domain} store from cache ({len(store)} documents)")
        return store

    async def save(self, store: VectorStore) -> str:
        """Persist *store* under its content hash.  Returns the key."""
        key = self.key_for(store.domain, store.content_hash)
        payload = json.dumps(store.to_dict(), separators=(",", ":"))
        chunks = await self.blobs.put_large(key, payload)
        logger.info(
            f"Cached {store.domain} store as {key} "
            f"({len(payload)} chars, {chunks or 'no'} chunks)"
        )
        return key

    async def delete(self, domain: str, content_hash: str) -> None:
        await self.blobs.delete_large(self.key_for(domain, content_hash))

    # ── Runtime additions ─────────────────────────────────────────

    def additions_key(self, domain: str) -> str:
        return f"{self.domain_prefix(domain)}{ADDITIONS_SUFFIX}"

    async def load_additions(self, domain: str) -> Optional[Additions]:
        """Return the domain's appended documents, None when there are none.

        Raises StoreCacheError when the record is unreadable.
        """
        key = self.additions_key(domain)
        raw = await self.blobs.get_large(key)
        if raw is None:
            return None
        try:
            data = json.loads(raw)
            docs = [Document.from_dict(d) for d in data["documents"]]
            vectors = [[float(x) for x in v] for v in data["vectors"]]
            if len(vectors) != len(docs):
                raise ValueError(f"{len(vectors)} vectors for {len(docs)} documents")
            return Additions(model_id=str(data["model_id"]), documents=docs, vectors=vectors)
        except (ValueError, TypeError, KeyError) as e:
            raise StoreCacheError(f"Corrupt additions record {key}: {e}") from e

    async def save_additions(self, domain: str, additions: Additions) -> None:
        payload = json.dumps({
            "model_id": additions.model_id,
            "documents": [d.to_dict() for d in additions.documents],
            "vectors": [[float(x) for x in v] for v in additions.vectors],
        }, separators=(",", ":"))
        await self.blobs.put_large(self.additions_key(domain), payload)

    async def delete_additions(self, domain: str) -> None:
        await self.blobs.delete_large(self.additions_key(domain))

    async def delete_domain(self, domain: str) -> int:
        """Delete every record (direct, chunk, metadata) for *domain*."""
        return await self._delete_prefix(self.domain_prefix(domain))

    async def delete_all(self) -> int:
        return await self._delete_prefix(self.prefix)

    async def _delete_prefix(self, prefix: str) -> int:
        keys = await self.kv.scan(prefix)
        for k in keys:
            await self.kv.delete(k)
        if keys:
            logger.info(f"Deleted {len(keys)} cache records under '{prefix}'")
        return len(keys)

    async def prune_expired(self, max_age_seconds: float) -> int:
        return await self.blobs.prune_expired(self.prefix, max_age_seconds)
