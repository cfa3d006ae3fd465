"""Store manager — owns one VectorStore per domain.

Lifecycle of a domain:

    UNINITIALIZED ──► LOADING ──► READY                 (cache hit)
                  └─► BUILDING ──► READY                (cache miss, all batches embedded)
                               └─► DEGRADED             (retries exhausted, or nothing to index)
    READY / DEGRADED ──► BUILDING                       (reinitialize / repair)

Build pipeline (cache miss):
  1. Documents from the DocumentSource
  2. Embedded EMBED_BATCH_SIZE at a time, each batch retried up to
     EMBED_MAX_RETRIES with a fixed EMBED_RETRY_DELAY
  3. PQ codebook trained in the worker pool
  4. Store serialized into the key-value cache under its content hash

A DEGRADED store keeps whatever batches succeeded, serves exact search,
and is never persisted, so the next initialize tries again.  A rebuild
that raises leaves the previous store in place.

Cache reads that fail at the backend are retried CACHE_READ_RETRIES times;
after that, or on a corrupt entry, the entry is deleted and rebuilt.

Documents from ``add_documents`` are saved in a per-domain additions
record and replayed on top of every load or build of that domain.

Concurrency: every mutation of a domain holds that domain's asyncio.Lock.
Concurrent ``initialize_store`` calls for one domain share one task.
Searches take no lock and read the store object in place.

Usage:
    manager = StoreManager(embeddings, source, kv, settings)
    await manager.initialize_all()
    docs = await manager.search("most tries this season", domain="nrl")
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import worker
from embedding.base import EmbeddingError, EmbeddingProvider
from document_source import DocumentSource
from hashing import content_hash
from kv.base import KeyValueStore
from pq import PQCodebook, train_pq_codebook
from search import DimensionMismatchError, ScoredDocument, search
from store import Document, StoreState, VectorStore
from store_cache import Additions, StoreCache, StoreCacheError
from telemetry import SearchTelemetry, TelemetryStore

logger = logging.getLogger(__name__)


def _norm(domain: str) -> str:
    return domain.strip().lower()


class StoreManager:
    def __init__(
        self,
        embeddings: EmbeddingProvider,
        source: DocumentSource,
        kv: KeyValueStore,
        s=None,
    ):
        if s is None:
            from settings import settings as s
        self.settings = s
        self.embeddings = embeddings
        self.source = source
        self.kv = kv
        self.cache = StoreCache(kv, prefix=s.CACHE_PREFIX, chunk_size=s.BLOB_CHUNK_SIZE)
        self._stores: dict[str, VectorStore] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._inflight: dict[str, asyncio.Future] = {}

    def _lock(self, domain: str) -> asyncio.Lock:
        if domain not in self._locks:
            self._locks[domain] = asyncio.Lock()
        return self._locks[domain]

    def known_domains(self) -> list[str]:
        """Configured domains followed by any other loaded ones."""
        domains = list(self.settings.domains)
        domains += [d for d in self._stores if d not in domains]
        return domains

    async def compute_content_hash(self, domain: str) -> str:
        texts = await self.source.dataset_texts(domain)
        return content_hash(texts, salt=self.embeddings.model_id)

    # ── Initialization ────────────────────────────────────────────

    async def initialize_store(self, domain: str, force: bool = False) -> VectorStore:
        """Load *domain* from cache or build it.  ``force`` skips the cache."""
        d = _norm(domain)
        task = self._inflight.get(d)
        if task is not None and not force:
            return await task
        if task is not None:
            await asyncio.wait({task})

        task = asyncio.ensure_future(self._initialize(d, force))
        self._inflight[d] = task
        try:
            return await task
        finally:
            if self._inflight.get(d) is task:
                del self._inflight[d]

    async def _initialize(self, domain: str, force: bool) -> VectorStore:
        async with self._lock(domain):
            digest = await self.compute_content_hash(domain)
            current = self._stores.get(domain)

            if not force:
                if (current is not None and current.state is StoreState.READY
                        and current.content_hash == digest):
                    return current
                if current is None:
                    self._stores[domain] = VectorStore(domain=domain, state=StoreState.LOADING)
                cached = await self._load_cached(domain, digest)
                if cached is not None:
                    self._stores[domain] = cached
                    await self._replay_additions(cached)
                    return cached

            try:
                store = await self._build(domain, digest)
            except Exception as e:
                if current is None:
                    self._stores.pop(domain, None)
                    raise
                logger.error(f"{domain}: rebuild failed, still serving the previous {current.state.value} store: {e}")
                self._stores[domain] = current
                return current
            await self._replay_additions(store)
            return store

    async def _load_cached(self, domain: str, digest: str) -> Optional[VectorStore]:
        """Cached store for *domain*, or None after discarding an unusable entry.

        Backend errors are retried CACHE_READ_RETRIES times with a fixed
        CACHE_RETRY_DELAY.  A corrupt entry is not retried.
        """
        attempts = max(1, self.settings.CACHE_READ_RETRIES)
        for attempt in range(1, attempts + 1):
            try:
                return await self.cache.load(domain, digest)
            except StoreCacheError as e:
                logger.warning(f"{e}; deleting and rebuilding")
                break
            except Exception as e:
                logger.warning(f"Cache read for {domain}: attempt {attempt}/{attempts} failed: {e}")
                if attempt < attempts:
                    await asyncio.sleep(self.settings.CACHE_RETRY_DELAY)
                else:
                    logger.error(f"Cache read for {domain} failed {attempts} times, discarding entry")
        try:
            await self.cache.delete(domain, digest)
        except Exception as del_err:
            logger.error(f"Could not delete cache entry for {domain}: {del_err}")
        return None

    async def _build(self, domain: str, digest: str) -> VectorStore:
        store = VectorStore(domain=domain, state=StoreState.BUILDING, content_hash=digest)
        self._stores[domain] = store

        docs = await self.source.list_documents(domain)
        if not docs:
            logger.warning(f"{domain}: no documents to index, store is empty")
            store.mark_degraded()
            return store

        logger.info(f"{domain}: building store from {len(docs)} documents")
        if not await self._embed_into(store, docs):
            store.mark_degraded()
            logger.error(
                f"{domain}: build stopped after {len(store)}/{len(docs)} documents, "
                f"serving a degraded store (not cached)"
            )
            return store

        store.mark_ready(await self._train(store))
        await self._persist(store)
        logger.info(f"{domain}: store ready ({len(store)} documents, dim={store.dimension})")
        return store

    async def initialize_all(self) -> dict[str, StoreState]:
        """Initialize every configured domain.  One failure does not stop the rest."""
        states: dict[str, StoreState] = {}
        for domain in self.settings.domains:
            try:
                states[domain] = (await self.initialize_store(domain)).state
            except Exception as e:
                logger.error(f"Failed to initialize {domain} store: {e}")
                states[domain] = StoreState.UNINITIALIZED
        return states

    async def reinitialize(self) -> dict[str, StoreState]:
        """Rebuild every configured and loaded domain, bypassing the cache."""
        states: dict[str, StoreState] = {}
        for domain in self.known_domains():
            try:
                states[domain] = (await self.initialize_store(domain, force=True)).state
            except Exception as e:
                logger.error(f"Failed to reinitialize {domain} store: {e}")
                states[domain] = StoreState.UNINITIALIZED
        return states

    # ── Embedding / training ──────────────────────────────────────

    async def _embed_with_retry(self, texts: list[str], label: str) -> Optional[list[list[float]]]:
        """Embed one batch.  Returns None once every attempt has failed."""
        attempts = max(1, self.settings.EMBED_MAX_RETRIES)
        for attempt in range(1, attempts + 1):
            try:
                vectors = await self.embeddings.embed_batch(texts)
                if len(vectors) != len(texts):
                    raise EmbeddingError(f"got {len(vectors)} vectors for {len(texts)} texts")
                return vectors
            except EmbeddingError as e:
                logger.warning(f"{label}: attempt {attempt}/{attempts} failed: {e}")
                if attempt < attempts:
                    await asyncio.sleep(self.settings.EMBED_RETRY_DELAY)
        logger.error(f"{label}: giving up after {attempts} attempts")
        return None

    async def _embed_into(self, store: VectorStore, docs: list[Document]) -> bool:
        """Embed *docs* batch by batch into *store*.  False if a batch failed."""
        size = max(1, self.settings.EMBED_BATCH_SIZE)
        total = (len(docs) + size - 1) // size
        for n, start in enumerate(range(0, len(docs), size), 1):
            batch = docs[start:start + size]
            vectors = await self._embed_with_retry(
                [doc.text for doc in batch], f"{store.domain} batch {n}/{total}"
            )
            if vectors is None:
                return False
            store.append(vectors, batch)
            if self.settings.EMBED_BATCH_PAUSE > 0 and n < total:
                await asyncio.sleep(self.settings.EMBED_BATCH_PAUSE)
        return True

    async def _embed_all(self, texts: list[str], label: str) -> Optional[list[list[float]]]:
        """Embed *texts* batch by batch.  None if any batch failed."""
        size = max(1, self.settings.EMBED_BATCH_SIZE)
        out: list[list[float]] = []
        for start in range(0, len(texts), size):
            vectors = await self._embed_with_retry(texts[start:start + size], label)
            if vectors is None:
                return None
            out.extend(vectors)
        return out

    async def _train(self, store: VectorStore) -> Optional[PQCodebook]:
        s = self.settings
        dim = store.dimension or 0
        if len(store.vectors) < max(1, s.PQ_MIN_TRAINING_VECTORS) or dim < s.PQ_SUBSPACES:
            logger.info(
                f"{store.domain}: skipping PQ training ({len(store.vectors)} vectors, dim={dim}), "
                f"exact search only"
            )
            return None
        return await worker.run(
            train_pq_codebook, store.matrix(), s.PQ_SUBSPACES, s.PQ_CENTROIDS, s.PQ_MAX_ITERATIONS
        )

    async def _persist(self, store: VectorStore) -> None:
        try:
            await self.cache.save(store)
        except Exception as e:
            logger.error(f"Could not cache {store.domain} store, keeping it in memory only: {e}")

    # ── Search ────────────────────────────────────────────────────

    async def search(self, query: str, domain: Optional[str] = None, limit: Optional[int] = None) -> list[Document]:
        """Ranked documents for *query*.  Never raises; failures yield ``[]``."""
        return [hit.document for hit in await self.search_with_scores(query, domain, limit)]

    async def search_with_scores(
        self, query: str, domain: Optional[str] = None, limit: Optional[int] = None
    ) -> list[ScoredDocument]:
        if limit is None:
            limit = self.settings.SEARCH_LIMIT
        t = SearchTelemetry(domain=_norm(domain) if domain else "", limit=limit, query_chars=len(query or ""))
        try:
            return await self._search(query, domain, limit, t)
        except Exception as e:
            logger.error(f"Search failed unexpectedly: {e}")
            t.record_error("internal")
            return []
        finally:
            t.finalize()
            TelemetryStore.append(t)

    async def _search(self, query: str, domain: Optional[str], limit: int, t: SearchTelemetry) -> list[ScoredDocument]:
        if not query or not query.strip():
            t.record_error("empty_query")
            return []
        if limit <= 0:
            return []

        if domain:
            store = self._stores.get(_norm(domain))
            targets = [store] if store is not None and store.is_searchable else []
        else:
            targets = [st for st in self._stores.values() if st.is_searchable]
        if not targets:
            logger.warning(f"No searchable store for domain={domain or '*'}")
            t.record_error("no_store")
            return []

        t.mark("embed_start")
        try:
            qvec = await self.embeddings.embed(query)
        except EmbeddingError as e:
            logger.error(f"Query embedding failed: {e}")
            t.record_error("embedding")
            return []
        t.mark("embed_end")

        t.mark("search_start")
        hits: list[ScoredDocument] = []
        for store in targets:
            try:
                result = search(qvec, store, limit)
            except DimensionMismatchError as e:
                logger.warning(f"Skipping {store.domain}: {e}")
                t.record_error("dimension")
                t.record_method(store.domain, "none")
                continue
            t.record_method(store.domain, result.method)
            hits.extend(result.hits)
        # PQ and cosine similarities are merged as-is across stores.
        hits.sort(key=lambda h: h.similarity, reverse=True)
        hits = hits[:limit]
        t.mark("search_end")

        t.record_results([h.similarity for h in hits])
        return hits

    # ── Mutation ──────────────────────────────────────────────────

    async def add_documents(
        self, texts: list[str], metadata: Optional[dict] = None, domain: Optional[str] = None
    ) -> int:
        """Embed and append *texts* to *domain*.  Returns the number appended.

        Appended documents are saved in the domain's additions record and
        replayed whenever the store is loaded or rebuilt.  Once
        PQ_RETRAIN_THRESHOLD appended vectors lack a codebook assignment
        the codebook is retrained in full.
        """
        d = _norm(domain or self.settings.DEFAULT_DOMAIN)
        texts = [t for t in texts if t and t.strip()]
        if not texts:
            return 0

        existing = self._stores.get(d)
        if existing is None or existing.state is StoreState.UNINITIALIZED:
            await self.initialize_store(d)

        docs = [Document(text=t, metadata={**(metadata or {}), "domain": d}) for t in texts]
        size = max(1, self.settings.EMBED_BATCH_SIZE)
        added_docs: list[Document] = []
        added_vectors: list[list[float]] = []
        async with self._lock(d):
            store = self._stores[d]
            for start in range(0, len(docs), size):
                batch = docs[start:start + size]
                vectors = await self._embed_with_retry([doc.text for doc in batch], f"{d} add")
                if vectors is None:
                    break
                store.append(vectors, batch)
                added_docs.extend(batch)
                added_vectors.extend(vectors)
            if added_docs:
                await self._persist_additions(d, added_docs, added_vectors)
                if store.state is StoreState.READY:
                    await self._maybe_retrain(store)

        logger.info(f"{d}: added {len(added_docs)}/{len(docs)} documents (total {len(store)})")
        return len(added_docs)

    async def _persist_additions(self, domain: str, docs: list[Document], vectors: list[list[float]]) -> None:
        model_id = self.embeddings.model_id
        try:
            try:
                additions = await self.cache.load_additions(domain)
            except StoreCacheError as e:
                logger.warning(f"{e}; starting a new additions record")
                additions = None
            if additions is None or additions.model_id != model_id:
                additions = Additions(model_id=model_id)
            additions.documents.extend(docs)
            additions.vectors.extend(vectors)
            await self.cache.save_additions(domain, additions)
        except Exception as e:
            logger.error(f"Could not save added documents for {domain}, keeping them in memory only: {e}")

    async def _replay_additions(self, store: VectorStore) -> None:
        """Append the domain's saved additions to a freshly loaded or built store."""
        domain = store.domain
        try:
            additions = await self.cache.load_additions(domain)
        except StoreCacheError as e:
            logger.warning(f"{e}; dropping it")
            try:
                await self.cache.delete_additions(domain)
            except Exception as del_err:
                logger.error(f"Could not delete additions record for {domain}: {del_err}")
            return
        except Exception as e:
            logger.error(f"Could not read added documents for {domain}: {e}")
            return
        if additions is None or not additions.documents:
            return

        vectors = additions.vectors
        if additions.model_id != self.embeddings.model_id:
            logger.info(
                f"{domain}: re-embedding {len(additions.documents)} added documents "
                f"({additions.model_id} -> {self.embeddings.model_id})"
            )
            vectors = await self._embed_all([doc.text for doc in additions.documents], f"{domain} replay")
            if vectors is None:
                return
            additions = Additions(self.embeddings.model_id, additions.documents, vectors)
            try:
                await self.cache.save_additions(domain, additions)
            except Exception as e:
                logger.error(f"Could not save re-embedded additions for {domain}: {e}")

        try:
            store.append(vectors, additions.documents)
        except ValueError as e:
            logger.error(f"{domain}: cannot replay added documents: {e}")
            return
        logger.info(f"{domain}: replayed {len(additions.documents)} added documents")
        if store.state is StoreState.READY:
            await self._maybe_retrain(store)

    async def _maybe_retrain(self, store: VectorStore) -> None:
        threshold = self.settings.PQ_RETRAIN_THRESHOLD
        if threshold <= 0 or store.unassigned_count < threshold:
            return
        logger.info(f"{store.domain}: {store.unassigned_count} unassigned vectors, retraining PQ")
        store.mark_ready(await self._train(store))

    async def clear(self, domain: Optional[str] = None) -> int:
        """Drop in-memory stores and persisted entries.  Returns records deleted."""
        if domain:
            d = _norm(domain)
            async with self._lock(d):
                self._stores.pop(d, None)
                removed = await self.cache.delete_domain(d)
        else:
            self._stores.clear()
            removed = await self.cache.delete_all()
        await self.cache.prune_expired(self.settings.CACHE_MAX_AGE_SECONDS)
        logger.info(f"Cleared {domain or 'all'} store(s), {removed} cache records removed")
        return removed

    async def repair_store(self, domain: str) -> bool:
        """Delete every persisted record for *domain* and rebuild it.

        Returns False when nothing was persisted or the rebuild failed.
        """
        d = _norm(domain)
        try:
            removed = await self.cache.delete_domain(d)
            if not removed:
                logger.info(f"{d}: no cached store to repair")
                return False
            self._stores.pop(d, None)
            store = await self.initialize_store(d, force=True)
            logger.info(f"{d}: repaired, store is {store.state.value}")
            return True
        except Exception as e:
            logger.error(f"Failed to repair {d} store: {e}")
            return False

    # ── Introspection ─────────────────────────────────────────────

    def get_store(self, domain: str) -> Optional[VectorStore]:
        return self._stores.get(_norm(domain))

    def stats(self) -> dict[str, dict]:
        out: dict[str, dict] = {}
        for domain in self.known_domains():
            store = self._stores.get(domain)
            if store is None:
                out[domain] = {"state": StoreState.UNINITIALIZED.value, "documents": 0}
                continue
            out[domain] = {
                "state": store.state.value,
                "documents": len(store),
                "dimension": store.dimension,
                "pq_codebook": store.pq_codebook is not None,
                "unassigned": store.unassigned_count,
                "content_hash": store.content_hash,
            }
        return out

    async def close(self) -> None:
        await self.kv.close()


def create_store_manager(s=None) -> StoreManager:
    """Wire a manager from settings: configured embeddings, JSON datasets, KV backend."""
    if s is None:
        from settings import settings as s
    from document_source import JsonDatasetSource
    from embedding import create_embedding_provider
    from kv import create_kv_store

    worker.configure(s.WORKER_THREADS)
    TelemetryStore.configure(s.TELEMETRY_MAX_RECORDS)
    return StoreManager(
        embeddings=create_embedding_provider(s),
        source=JsonDatasetSource(s.DATA_DIR, max_documents=s.MAX_DOCUMENTS_PER_DOMAIN),
        kv=create_kv_store(s),
        s=s,
    )
