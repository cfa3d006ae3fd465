"""Centralized configuration — every tunable in one place.

Environment variables override defaults. Import anywhere:

    from settings import settings

All values are frozen at startup. To change, update .env and restart.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root (one level above backend/)
_project_root = Path(__file__).resolve().parent.parent
load_dotenv(_project_root / ".env")


# ── Helpers ───────────────────────────────────────────────────────────────

def _env(key: str, default: str = "") -> str:
    return os.getenv(key, default)


def _env_int(key: str, default: int = 0) -> int:
    return int(os.getenv(key, str(default)))


def _env_float(key: str, default: float = 0.0) -> float:
    return float(os.getenv(key, str(default)))


def _env_bool(key: str, default: bool = False) -> bool:
    return os.getenv(key, str(default)).lower() in ("true", "1", "yes")


# ── Settings ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Settings:
    """Application settings.  Immutable after creation."""

    # ── Domains & datasets ────────────────────────────────────────
    # Comma-separated domain names.  Each domain reads DATA_DIR/<domain>/*.json
    VECTOR_DOMAINS: str = _env("VECTOR_DOMAINS", "nrl,afl")
    DEFAULT_DOMAIN: str = _env("DEFAULT_DOMAIN", "nrl")
    DATA_DIR: str = _env("DATA_DIR", str(_project_root / "data"))
    # 0 = index every record.  Lower it on memory-constrained hosts.
    MAX_DOCUMENTS_PER_DOMAIN: int = _env_int("MAX_DOCUMENTS_PER_DOMAIN", 0)

    # ── Embeddings ────────────────────────────────────────────────
    # Supported: local (sentence-transformers), openai
    EMBEDDING_PROVIDER: str = _env("EMBEDDING_PROVIDER", "local")
    # Empty EMBEDDING_MODEL → each provider picks its own default.
    EMBEDDING_MODEL: str = _env("EMBEDDING_MODEL")
    EMBEDDING_API_KEY: str = _env("EMBEDDING_API_KEY", _env("OPENAI_API_KEY"))
    EMBEDDING_BASE_URL: str = _env("EMBEDDING_BASE_URL")
    # Optional query prefix for asymmetric retrieval models (bge, e5, nomic).
    QUERY_INSTRUCTION: str = _env("QUERY_INSTRUCTION", "")

    # ── Ingestion (backpressure) ──────────────────────────────────
    EMBED_BATCH_SIZE: int = _env_int("EMBED_BATCH_SIZE", 10)
    EMBED_MAX_RETRIES: int = _env_int("EMBED_MAX_RETRIES", 3)
    EMBED_RETRY_DELAY: float = _env_float("EMBED_RETRY_DELAY", 1.0)
    # Pause between batches, in seconds.  Gives slow hosts room to breathe.
    EMBED_BATCH_PAUSE: float = _env_float("EMBED_BATCH_PAUSE", 0.0)

    # ── Product quantization ──────────────────────────────────────
    PQ_SUBSPACES: int = _env_int("PQ_SUBSPACES", 8)
    PQ_CENTROIDS: int = _env_int("PQ_CENTROIDS", 256)
    PQ_MAX_ITERATIONS: int = _env_int("PQ_MAX_ITERATIONS", 100)
    PQ_MIN_TRAINING_VECTORS: int = _env_int("PQ_MIN_TRAINING_VECTORS", 1)
    # Retrain the whole codebook once this many appended vectors are
    # unassigned.  0 disables automatic retraining.
    PQ_RETRAIN_THRESHOLD: int = _env_int("PQ_RETRAIN_THRESHOLD", 50)

    # ── Retrieval ─────────────────────────────────────────────────
    SEARCH_LIMIT: int = _env_int("SEARCH_LIMIT", 5)

    # ── Persistent key-value store ────────────────────────────────
    # Supported: memory, redis, postgres
    KV_BACKEND: str = _env("KV_BACKEND", "memory")
    REDIS_URL: str = _env("REDIS_URL", "redis://localhost:6379/0")
    DATABASE_URL: str = _env("DATABASE_URL")
    POSTGRES_HOST: str = _env("POSTGRES_HOST", "localhost")
    POSTGRES_PORT: int = _env_int("POSTGRES_PORT", 55432)
    POSTGRES_DB: str = _env("POSTGRES_DB", "vectorstore")
    POSTGRES_USER: str = _env("POSTGRES_USER", "root")
    POSTGRES_PASSWORD: str = _env("POSTGRES_PASSWORD", "password")
    DB_POOL_MIN: int = _env_int("DB_POOL_MIN", 1)
    DB_POOL_MAX: int = _env_int("DB_POOL_MAX", 10)

    # ── Store cache ───────────────────────────────────────────────
    CACHE_PREFIX: str = _env("CACHE_PREFIX", "vector_store_")
    # Values larger than this (characters) are split into chunk records.
    BLOB_CHUNK_SIZE: int = _env_int("BLOB_CHUNK_SIZE", 100 * 1024)
    # Chunked entries older than this are pruned by clear().  Default: 7 days.
    CACHE_MAX_AGE_SECONDS: int = _env_int("CACHE_MAX_AGE_SECONDS", 7 * 24 * 60 * 60)
    # Backend errors while reading a cached store are retried this many times
    # (fixed delay) before the entry is discarded and the store rebuilt.
    CACHE_READ_RETRIES: int = _env_int("CACHE_READ_RETRIES", 3)
    CACHE_RETRY_DELAY: float = _env_float("CACHE_RETRY_DELAY", 0.5)

    # ── Runtime ───────────────────────────────────────────────────
    WORKER_THREADS: int = _env_int("WORKER_THREADS", 4)
    INIT_ON_STARTUP: bool = _env_bool("INIT_ON_STARTUP", True)
    TELEMETRY_MAX_RECORDS: int = _env_int("TELEMETRY_MAX_RECORDS", 1000)
    # Server shutdown writes buffered search telemetry here (JSONL).  Empty = off.
    TELEMETRY_EXPORT_PATH: str = _env("TELEMETRY_EXPORT_PATH")

    # ── Server ────────────────────────────────────────────────────
    # Comma-separated origins allowed by CORS middleware.
    ALLOWED_ORIGINS: str = _env("ALLOWED_ORIGINS", "*")
    HOST: str = _env("HOST", "0.0.0.0")
    PORT: int = _env_int("PORT", 8000)
    DEBUG_MODE: bool = _env_bool("DEBUG_MODE", False)

    @property
    def domains(self) -> list[str]:
        """Configured domains, lower-cased, in declaration order."""
        return [d.strip().lower() for d in self.VECTOR_DOMAINS.split(",") if d.strip()]


settings = Settings()
