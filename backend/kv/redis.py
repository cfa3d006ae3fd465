"""Redis key-value backend (redis.asyncio).

Enable: set KV_BACKEND=redis and REDIS_URL in .env.
The connection is opened lazily on first use and verified with PING.
"""

from __future__ import annotations

import logging
import re
from typing import Optional

from .base import KeyValueStore

logger = logging.getLogger(__name__)

_GLOB_SPECIAL = re.compile(r"([*?\[\]\\])")


def _glob_escape(prefix: str) -> str:
    return _GLOB_SPECIAL.sub(r"\\\1", prefix)


class RedisKVStore(KeyValueStore):
    """Keys and values stored as plain Redis strings."""

    def __init__(self, url: str, client=None):
        self._url = url
        self._redis = client

    @property
    def name(self) -> str:
        return "redis"

    async def _client(self):
        if self._redis is None:
            import redis.asyncio as redis_asyncio  # type: ignore[import-untyped]

            self._redis = redis_asyncio.from_url(self._url, decode_responses=True)
            await self._redis.ping()
            logger.info("Redis key-value store connected")
        return self._redis

    async def get(self, key: str) -> Optional[str]:
        client = await self._client()
        return await client.get(key)

    async def set(self, key: str, value: str) -> None:
        client = await self._client()
        await client.set(key, value)

    async def delete(self, key: str) -> None:
        client = await self._client()
        await client.delete(key)

    async def scan(self, prefix: str = "") -> list[str]:
        client = await self._client()
        keys = [k async for k in client.scan_iter(match=f"{_glob_escape(prefix)}*")]
        return sorted(keys)

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
