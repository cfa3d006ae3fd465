"""Large-value storage on top of any KeyValueStore.

Values shorter than ``chunk_size`` are stored directly under their key.
Longer values are split into sequential chunk records plus one metadata
record:

    <key>_chunk_0 … <key>_chunk_{n-1}     string slices, in order
    <key>_metadata                         {"chunks": n, "total_size": …, "timestamp": …}

Reads degrade gracefully: a missing chunk becomes an empty placeholder
(order is kept) and the value is still returned while at most 25% of
chunks are missing.  Beyond that the entry is declared unrecoverable and
deleted.  Whether a partially recovered payload still parses is the
caller's concern.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Optional

from kv.base import KeyValueStore

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 100 * 1024
MAX_MISSING_FRACTION = 0.25


def chunk_key(key: str, index: int) -> str:
    return f"{key}_chunk_{index}"


def metadata_key(key: str) -> str:
    return f"{key}_metadata"


def split_chunks(value: str, size: int) -> list[str]:
    return [value[i : i + size] for i in range(0, len(value), size)]


class BlobStore:
    """``put_large`` / ``get_large`` / ``delete_large`` over a key-value backend."""

    def __init__(self, kv: KeyValueStore, chunk_size: int = DEFAULT_CHUNK_SIZE):
        if chunk_size < 1:
            raise ValueError(f"chunk_size must be >= 1, got {chunk_size}")
        self.kv = kv
        self.chunk_size = chunk_size

    async def put_large(self, key: str, value: str) -> int:
        """Store *value*; returns the number of chunk records written (0 = direct)."""
        # Drop any previous direct or chunked version first so reads never
        # mix generations.
        await self.delete_large(key)

        if len(value) < self.chunk_size:
            await self.kv.set(key, value)
            return 0

        chunks = split_chunks(value, self.chunk_size)
        await asyncio.gather(*(
            self.kv.set(chunk_key(key, i), chunk) for i, chunk in enumerate(chunks)
        ))
        # Metadata last: an interrupted write never looks complete.
        await self.kv.set(metadata_key(key), json.dumps({
            "chunks": len(chunks),
            "total_size": len(value),
            "timestamp": time.time(),
        }))
        return len(chunks)

    async def get_large(self, key: str) -> Optional[str]:
        """Return the stored value, a best-effort recovery, or None."""
        value = await self.kv.get(key)
        if value is not None:
            return value

        raw_meta = await self.kv.get(metadata_key(key))
        if raw_meta is None:
            return None
        try:
            count = int(json.loads(raw_meta)["chunks"])
        except (ValueError, KeyError, TypeError) as e:
            logger.error(f"Unreadable chunk metadata for {key}: {e}")
            await self.delete_large(key)
            return None
        if count <= 0:
            await self.delete_large(key)
            return None

        results = await asyncio.gather(
            *(self.kv.get(chunk_key(key, i)) for i in range(count)),
            return_exceptions=True,
        )
        parts: list[str] = []
        missing = 0
        for i, chunk in enumerate(results):
            if isinstance(chunk, BaseException):
                logger.warning(f"Error reading chunk {i} for {key}: {chunk}")
                chunk = None
            if chunk is None:
                missing += 1
                parts.append("")
            else:
                parts.append(chunk)

        if missing / count > MAX_MISSING_FRACTION:
            logger.error(f"Too many missing chunks ({missing}/{count}) for {key}, removing entry")
            await self.delete_large(key)
            return None
        if missing:
            logger.warning(f"Recovered {key} with {missing}/{count} missing chunks")
        return "".join(parts)

    async def delete_large(self, key: str) -> None:
        """Remove the direct value, every chunk record, and the metadata."""
        await self.kv.delete(key)
        for k in await self.kv.scan(f"{key}_chunk_"):
            await self.kv.delete(k)
        await self.kv.delete(metadata_key(key))

    async def prune_expired(self, prefix: str, max_age_seconds: float) -> int:
        """Delete chunked entries under *prefix* older than *max_age_seconds*."""
        now = time.time()
        removed = 0
        for meta_k in await self.kv.scan(prefix):
            if not meta_k.endswith("_metadata"):
                continue
            base = meta_k[: -len("_metadata")]
            raw = await self.kv.get(meta_k)
            try:
                timestamp = float(json.loads(raw)["timestamp"]) if raw else 0.0
            except (ValueError, KeyError, TypeError):
                timestamp = 0.0
            if now - timestamp > max_age_seconds:
                await self.delete_large(base)
                removed += 1
        if removed:
            logger.info(f"Pruned {removed} expired cache entr{'y' if removed == 1 else 'ies'} under '{prefix}'")
        return removed
