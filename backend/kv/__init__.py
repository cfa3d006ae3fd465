"""Key-value backend loader.

Reads KV_BACKEND from settings and returns the matching store.  Client
libraries are imported lazily; only the selected backend's driver needs
to be installed.

Usage:
    from kv import create_kv_store
    kv = create_kv_store(settings)
"""

from __future__ import annotations

import logging

from .base import KeyValueStore
from .memory import MemoryKVStore

logger = logging.getLogger(__name__)

__all__ = ["KeyValueStore", "MemoryKVStore", "create_kv_store"]


def create_kv_store(s=None) -> KeyValueStore:
    """Instantiate the configured backend."""
    if s is None:
        from settings import settings as s

    name = s.KV_BACKEND.lower()

    if name == "memory":
        logger.info("Key-value store: in-memory (non-persistent)")
        return MemoryKVStore()
    elif name == "redis":
        from .redis import RedisKVStore

        logger.info("Key-value store: redis")
        return RedisKVStore(url=s.REDIS_URL)
    elif name == "postgres":
        from .postgres import PostgresKVStore, db_config_from_settings

        logger.info("Key-value store: postgres")
        return PostgresKVStore(
            db_config=db_config_from_settings(s),
            pool_min=s.DB_POOL_MIN,
            pool_max=s.DB_POOL_MAX,
        )
    else:
        raise ValueError(
            f"Unknown KV_BACKEND: '{name}'.  "
            f"Supported: memory, redis, postgres"
        )
