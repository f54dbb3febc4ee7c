"""State store held in process memory."""

import asyncio
import copy
from typing import Any, Optional

from .base import StateStore


class InMemoryStateStore(StateStore):
    """Dictionary-backed store for development and tests.

    Values are deep-copied on the way in and out so callers never share
    mutable state with the store.
    """

    def __init__(self) -> None:
        self._data: dict[str, dict[str, dict[str, Any]]] = {}
        self._ids: dict[str, int] = {}
        self._lock = asyncio.Lock()

    async def put(self, collection: str, key: str, value: dict[str, Any]) -> None:
        self._data.setdefault(collection, {})[key] = copy.deepcopy(value)

    async def get(self, collection: str, key: str) -> Optional[dict[str, Any]]:
        value = self._data.get(collection, {}).get(key)
        return copy.deepcopy(value) if value is not None else None

    async def scan(self, collection: str, prefix: str = "") -> list[dict[str, Any]]:
        return [
            copy.deepcopy(value)
            for key, value in sorted(self._data.get(collection, {}).items())
            if key.startswith(prefix)
        ]

    async def keys(self, collection: str, prefix: str = "") -> list[str]:
        return sorted(key for key in self._data.get(collection, {}) if key.startswith(prefix))

    async def remove(self, collection: str, key: str) -> bool:
        return self._data.get(collection, {}).pop(key, None) is not None

    async def drop(self, entries: list[tuple[str, str]]) -> None:
        async with self._lock:
            for collection, key in entries:
                self._data.get(collection, {}).pop(key, None)

    async def next_id(self, collection: str) -> int:
        async with self._lock:
            self._ids[collection] = self._ids.get(collection, 0) + 1
            return self._ids[collection]
