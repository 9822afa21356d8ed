"""Redis implementation of the log store."""

from __future__ import annotations

import json
from typing import Any, Optional

import redis.asyncio as redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from ..errors import StoreUnavailableError
from .base import Document, LogStore, WriteResult


class RedisLogStore(LogStore):
    """Redis-based store using ``SET NX`` for conditional writes."""

    def __init__(self, url: str, namespace: str = "waypoint") -> None:
        self.url = url
        self.namespace = namespace
        self._redis: Optional[Any] = None

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    async def connect(self) -> None:
        """Connect to Redis."""
        if self._redis is not None:
            return
        client = redis.Redis.from_url(self.url, decode_responses=True)
        try:
            await client.ping()
        except (RedisConnectionError, RedisTimeoutError, OSError) as exc:
            await client.aclose()
            raise StoreUnavailableError(f"Cannot connect to Redis: {exc}") from exc
        self._redis = client

    async def close(self) -> None:
        """Disconnect from Redis."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    def _require_client(self) -> Any:
        if self._redis is None:
            raise StoreUnavailableError("Redis store is not connected")
        return self._redis

    async def conditional_write(self, key: str, value: Document) -> WriteResult:
        client = self._require_client()
        try:
            written = await client.set(self._key(key), json.dumps(value), nx=True)
        except (RedisConnectionError, RedisTimeoutError) as exc:
            raise StoreUnavailableError(str(exc)) from exc
        if written:
            return WriteResult(written=True)
        return WriteResult(written=False, existing=await self.read(key))

    async def read(self, key: str) -> Optional[Document]:
        client = self._require_client()
        try:
            raw = await client.get(self._key(key))
        except (RedisConnectionError, RedisTimeoutError) as exc:
            raise StoreUnavailableError(str(exc)) from exc
        return json.loads(raw) if raw is not None else None

    async def list_by_prefix(self, prefix: str) -> list[tuple[str, Document]]:
        client = self._require_client()
        full_prefix = self._key(prefix)
        try:
            keys = sorted(
                [k async for k in client.scan_iter(match=f"{_escape_glob(full_prefix)}*")]
            )
            values = await client.mget(keys) if keys else []
        except (RedisConnectionError, RedisTimeoutError) as exc:
            raise StoreUnavailableError(str(exc)) from exc
        strip = len(self.namespace) + 1
        return [
            (key[strip:], json.loads(raw))
            for key, raw in zip(keys, values)
            if raw is not None
        ]


def _escape_glob(value: str) -> str:
    for char in "\\*?[]":
        value = value.replace(char, f"\\{char}")
    return value
