"""Redis-backed state store.

Each collection is one Redis hash (``{prefix}:{collection}``) mapping record
keys to JSON documents. Multi-record removals run in a MULTI/EXEC pipeline.
"""

import json
import re
from typing import Any, Optional

import redis.asyncio as redis
import structlog

from connector_sync.core.errors import RedisError

from .base import StateStore

logger = structlog.get_logger(__name__)

_GLOB_SPECIAL = re.compile(r"([*?\[\]\\])")


def _escape_glob(value: str) -> str:
    return _GLOB_SPECIAL.sub(r"\\\1", value)


def _decode(value: Any) -> str:
    return value.decode("utf-8") if isinstance(value, bytes) else value


class RedisStateStore(StateStore):
    """State store on top of redis.asyncio."""

    def __init__(self, url: str, prefix: str = "connector-sync") -> None:
        """
        Initialize the store.

        Args:
            url: Redis connection URL (e.g., redis://localhost:6379)
            prefix: Namespace for every key written by the store
        """
        self.url = url
        self._prefix = prefix
        self._client: Optional[redis.Redis] = None

    async def connect(self) -> None:
        """Establish connection to Redis."""
        if self._client is None:
            self._client = redis.from_url(
                self.url,
                encoding="utf-8",
                decode_responses=False,
            )
            logger.info("redis_connected", url=self.url)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None
            logger.info("redis_disconnected")

    @property
    def client(self) -> redis.Redis:
        """Get the Redis client, raising error if not connected."""
        if self._client is None:
            raise RedisError("connection", "Redis client not connected")
        return self._client

    def _hash(self, collection: str) -> str:
        return f"{self._prefix}:{collection}"

    async def put(self, collection: str, key: str, value: dict[str, Any]) -> None:
        try:
            await self.client.hset(self._hash(collection), key, json.dumps(value))
        except redis.RedisError as e:
            raise RedisError("put", str(e)) from e

    async def get(self, collection: str, key: str) -> Optional[dict[str, Any]]:
        try:
            raw = await self.client.hget(self._hash(collection), key)
        except redis.RedisError as e:
            raise RedisError("get", str(e)) from e
        return json.loads(_decode(raw)) if raw is not None else None

    async def scan(self, collection: str, prefix: str = "") -> list[dict[str, Any]]:
        items: list[tuple[str, dict[str, Any]]] = []
        try:
            async for key, raw in self.client.hscan_iter(
                self._hash(collection), match=f"{_escape_glob(prefix)}*"
            ):
                items.append((_decode(key), json.loads(_decode(raw))))
        except redis.RedisError as e:
            raise RedisError("scan", str(e)) from e
        return [value for _, value in sorted(items, key=lambda item: item[0])]

    async def keys(self, collection: str, prefix: str = "") -> list[str]:
        found: list[str] = []
        try:
            async for key, _ in self.client.hscan_iter(
                self._hash(collection), match=f"{_escape_glob(prefix)}*"
            ):
                found.append(_decode(key))
        except redis.RedisError as e:
            raise RedisError("keys", str(e)) from e
        return sorted(found)

    async def remove(self, collection: str, key: str) -> bool:
        try:
            removed = await self.client.hdel(self._hash(collection), key)
        except redis.RedisError as e:
            raise RedisError("remove", str(e)) from e
        return bool(removed)

    async def drop(self, entries: list[tuple[str, str]]) -> None:
        if not entries:
            return
        try:
            async with self.client.pipeline(transaction=True) as pipe:
                for collection, key in entries:
                    pipe.hdel(self._hash(collection), key)
                await pipe.execute()
        except redis.RedisError as e:
            raise RedisError("drop", str(e)) from e
        logger.debug("redis_entries_dropped", count=len(entries))

    async def next_id(self, collection: str) -> int:
        try:
            return int(await self.client.incr(f"{self._prefix}:ids:{collection}"))
        except redis.RedisError as e:
            raise RedisError("next_id", str(e)) from e
