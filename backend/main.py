"""FastAPI application — HTTP surface over the per-domain vector stores.

Architecture layers:
  1. Settings        (settings.py)        — centralized configuration
  2. Math            (linalg.py, kmeans.py, pq.py) — distances, clustering, quantization
  3. Data model      (store.py)           — Document, StoreState, VectorStore
  4. Search          (search.py)          — PQ search with exact fallback
  5. Persistence     (kv/, blob_store.py, store_cache.py) — chunked store cache
  6. Embeddings      (embedding/)         — pluggable providers
  7. Orchestration   (store_manager.py)   — build, load, search, mutate
  8. HTTP            (this file)

Startup builds or loads every configured domain (INIT_ON_STARTUP).  Every
route delegates to the StoreManager created in the lifespan.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

import worker
from settings import settings
from store_manager import StoreManager, create_store_manager
from telemetry import TelemetryStore

logging.basicConfig(level=logging.DEBUG if settings.DEBUG_MODE else logging.INFO)
logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
#  Application lifespan
# ---------------------------------------------------------------------------
_manager: StoreManager | None = None


def get_manager() -> StoreManager:
    if _manager is None:
        raise HTTPException(503, "Vector stores not initialized")
    return _manager


@asynccontextmanager
async def lifespan(app: FastAPI):  # noqa: D401
    """Run startup logic; yield to serve requests; clean up on shutdown."""
    global _manager
    _manager = create_store_manager(settings)
    if settings.INIT_ON_STARTUP:
        states = await _manager.initialize_all()
        logger.info("Stores: " + ", ".join(f"{d}={st.value}" for d, st in states.items()))
    else:
        logger.info("INIT_ON_STARTUP disabled, stores build on first use")

    yield  # ← application runs here

    await _manager.close()
    _manager = None
    if settings.TELEMETRY_EXPORT_PATH:
        try:
            TelemetryStore.export_jsonl(settings.TELEMETRY_EXPORT_PATH)
        except OSError as e:
            logger.error(f"Telemetry export to {settings.TELEMETRY_EXPORT_PATH} failed: {e}")
    worker.shutdown(wait=True)


# ---------------------------------------------------------------------------
#  App
# ---------------------------------------------------------------------------
app = FastAPI(title="PQ Vector Store", version="1.0.0", lifespan=lifespan)
_raw_origins = [o.strip() for o in settings.ALLOWED_ORIGINS.split(",") if o.strip()]
_allowed_origins = _raw_origins if _raw_origins else ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------------------------------------------------------------------
#  Request / response models
# ---------------------------------------------------------------------------

class SearchRequest(BaseModel):
    query: str
    domain: Optional[str] = None
    limit: int = settings.SEARCH_LIMIT


class AddDocumentsRequest(BaseModel):
    texts: List[str]
    metadata: Optional[dict] = None
    domain: Optional[str] = None


# ═══════════════════════════════════════════════════════════════════════════
#  SEARCH
# ═══════════════════════════════════════════════════════════════════════════

@app.post("/search")
async def search_documents(req: SearchRequest):
    """Ranked documents for a query.  An unavailable store yields no results, not an error."""
    hits = await get_manager().search_with_scores(req.query, domain=req.domain, limit=req.limit)
    results = [
        {
            "text": h.document.text,
            "metadata": h.document.metadata,
            "similarity": round(h.similarity, 6),
        }
        for h in hits
    ]
    return {"query": req.query, "domain": req.domain, "results": results, "count": len(results)}


# ═══════════════════════════════════════════════════════════════════════════
#  MUTATION
# ═══════════════════════════════════════════════════════════════════════════

@app.post("/documents")
async def add_documents(req: AddDocumentsRequest):
    domain = (req.domain or settings.DEFAULT_DOMAIN).lower()
    try:
        added = await get_manager().add_documents(req.texts, metadata=req.metadata, domain=domain)
    except ValueError as e:
        raise HTTPException(400, str(e))
    return {"domain": domain, "added": added}


@app.post("/reinitialize")
async def reinitialize():
    states = await get_manager().reinitialize()
    return {"stores": {d: st.value for d, st in states.items()}}


@app.delete("/cache")
async def clear_cache(domain: Optional[str] = None):
    removed = await get_manager().clear(domain)
    return {"domain": domain, "deleted": removed}


@app.post("/stores/{domain}/repair")
async def repair_store(domain: str):
    repaired = await get_manager().repair_store(domain)
    return {"domain": domain.lower(), "repaired": repaired}


# ═══════════════════════════════════════════════════════════════════════════
#  INTROSPECTION
# ═══════════════════════════════════════════════════════════════════════════

@app.get("/stores")
async def list_stores():
    return {"stores": get_manager().stats()}


@app.get("/stores/{domain}")
async def get_store(domain: str):
    stats = get_manager().stats()
    entry = stats.get(domain.lower())
    if entry is None:
        raise HTTPException(404, f"Unknown domain: {domain}")
    return {"domain": domain.lower(), **entry}


@app.get("/telemetry")
async def telemetry(n: int = 20):
    return {"summary": TelemetryStore.summary(), "recent": TelemetryStore.recent(n)}


# ═══════════════════════════════════════════════════════════════════════════
#  HEALTH CHECK
# ═══════════════════════════════════════════════════════════════════════════

@app.get("/health")
async def health_check():
    """Returns store states plus backend and provider info."""
    manager = get_manager()
    return {
        "status": "ok",
        "kv_backend": manager.kv.name,
        "embedding_provider": manager.embeddings.name,
        "embedding_model": manager.embeddings.model_id,
        "stores": {d: info["state"] for d, info in manager.stats().items()},
        "version": app.version,
    }
