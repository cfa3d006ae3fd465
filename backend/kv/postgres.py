"""PostgreSQL key-value backend.

One table, created on first use:

    kv_store (key TEXT PRIMARY KEY, value TEXT, updated_at TIMESTAMP)

Connection pooling via psycopg2 ThreadedConnectionPool.  psycopg2 is
blocking, so every statement runs in a worker thread (asyncio.to_thread).
At most ``pool_max`` statements are in flight at once; the pool raises
rather than blocks when exhausted.
DATABASE_URL takes priority over individual POSTGRES_* settings.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional
from urllib.parse import urlparse

from .base import KeyValueStore

logger = logging.getLogger(__name__)


def db_config_from_settings(s) -> dict:
    """Connection kwargs.  DATABASE_URL wins, else the POSTGRES_* fields."""
    if s.DATABASE_URL:
        p = urlparse(s.DATABASE_URL)
        return {
            "host": p.hostname or "localhost",
            "port": p.port or 5432,
            "database": (p.path or "/vectorstore").lstrip("/"),
            "user": p.username or "root",
            "password": p.password or "password",
        }
    return {
        "host": s.POSTGRES_HOST,
        "port": s.POSTGRES_PORT,
        "database": s.POSTGRES_DB,
        "user": s.POSTGRES_USER,
        "password": s.POSTGRES_PASSWORD,
    }


def _like_escape(prefix: str) -> str:
    return prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class PostgresKVStore(KeyValueStore):
    """Values stored as TEXT rows, upserted on write."""

    def __init__(self, db_config: dict, pool_min: int = 1, pool_max: int = 10):
        self._db_config = db_config
        self._pool_min = pool_min
        self._pool_max = max(1, pool_max)
        self._pool = None
        self._schema_ready = False
        self._slots: Optional[asyncio.Semaphore] = None

    @property
    def name(self) -> str:
        return "postgres"

    # ── Pool ──────────────────────────────────────────────────────

    def _get_pool(self):
        if self._pool is None or self._pool.closed:
            from psycopg2 import pool  # type: ignore[import-untyped]

            self._pool = pool.ThreadedConnectionPool(
                minconn=self._pool_min,
                maxconn=self._pool_max,
                **self._db_config,
            )
        return self._pool

    def get_connection(self):
        """Get a pooled connection.  Caller must call put_connection() when done."""
        return self._get_pool().getconn()

    def put_connection(self, conn) -> None:
        """Return a connection to the pool, rolling back any dirty transaction first."""
        if conn is None:
            return
        if conn.status != 1:  # 1 = STATUS_READY (idle, no open transaction)
            conn.rollback()
        self._get_pool().putconn(conn)

    def _run(self, sql: str, params: tuple = (), fetch: str = ""):
        """Execute one statement on a pooled connection and commit."""
        conn = None
        try:
            conn = self.get_connection()
            cur = conn.cursor()
            if not self._schema_ready:
                cur.execute("""
                    CREATE TABLE IF NOT EXISTS kv_store (
                        key         TEXT PRIMARY KEY,
                        value       TEXT NOT NULL,
                        updated_at  TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                    );
                """)
                self._schema_ready = True
            cur.execute(sql, params)
            if fetch == "one":
                result = cur.fetchone()
            elif fetch == "all":
                result = cur.fetchall()
            else:
                result = None
            conn.commit()
            cur.close()
            return result
        finally:
            if conn is not None:
                self.put_connection(conn)

    async def _execute(self, sql: str, params: tuple = (), fetch: str = ""):
        """Run ``_run`` in a thread, never holding more than ``pool_max`` connections."""
        if self._slots is None:
            self._slots = asyncio.Semaphore(self._pool_max)
        async with self._slots:
            return await asyncio.to_thread(self._run, sql, params, fetch)

    # ── KeyValueStore ─────────────────────────────────────────────

    async def get(self, key: str) -> Optional[str]:
        row = await self._execute("SELECT value FROM kv_store WHERE key = %s;", (key,), "one")
        return row[0] if row else None

    async def set(self, key: str, value: str) -> None:
        await self._execute(
            """
            INSERT INTO kv_store (key, value, updated_at)
            VALUES (%s, %s, CURRENT_TIMESTAMP)
            ON CONFLICT (key) DO UPDATE
                SET value = EXCLUDED.value, updated_at = CURRENT_TIMESTAMP;
            """,
            (key, value),
        )

    async def delete(self, key: str) -> None:
        await self._execute("DELETE FROM kv_store WHERE key = %s;", (key,))

    async def scan(self, prefix: str = "") -> list[str]:
        rows = await self._execute(
            "SELECT key FROM kv_store WHERE key LIKE %s ESCAPE '\\' ORDER BY key;",
            (_like_escape(prefix) + "%",),
            "all",
        )
        return [r[0] for r in rows or []]

    async def close(self) -> None:
        if self._pool is not None and not self._pool.closed:
            self._pool.closeall()
        self._pool = None
        self._slots = None
