"""In-process key-value store — non-persistent, used for tests and local runs."""

from __future__ import annotations

from typing import Optional

from .base import KeyValueStore


class MemoryKVStore(KeyValueStore):
    """Dict-backed store.  Contents vanish with the process."""

    def __init__(self):
        self._data: dict[str, str] = {}

    @property
    def name(self) -> str:
        return "memory"

    async def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def scan(self, prefix: str = "") -> list[str]:
        return sorted(k for k in self._data if k.startswith(prefix))

    def __len__(self) -> int:
        return len(self._data)
