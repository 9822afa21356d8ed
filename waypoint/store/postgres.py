"""PostgreSQL implementation of the log store."""

from __future__ import annotations

import json
from typing import Optional

import asyncpg

from ..errors import StoreUnavailableError
from .base import Document, LogStore, WriteResult


class PostgresLogStore(LogStore):
    """Persist records using PostgreSQL through an asyncpg pool."""

    def __init__(self, dsn: str, min_size: int = 1, max_size: int = 10):
        self._dsn = dsn
        self._min_size = min_size
        self._max_size = max_size
        self._pool: asyncpg.Pool | None = None

    async def connect(self) -> None:
        if self._pool is not None:
            return
        try:
            self._pool = await asyncpg.create_pool(
                self._dsn, min_size=self._min_size, max_size=self._max_size
            )
        except (OSError, asyncpg.PostgresError) as exc:
            raise StoreUnavailableError(f"Cannot connect to PostgreSQL: {exc}") from exc
        async with self._pool.acquire() as conn:
            await self._ensure_schema(conn)

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS waypoint_log (
                key TEXT PRIMARY KEY,
                value JSONB NOT NULL,
                written_at TIMESTAMPTZ NOT NULL DEFAULT now()
            )
            """
        )

    async def close(self) -> None:
        if self._pool is not None:
            pool, self._pool = self._pool, None
            await pool.close()

    def _require_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise StoreUnavailableError("PostgreSQL store is not connected")
        return self._pool

    # ------------------------------------------------------------------
    async def conditional_write(self, key: str, value: Document) -> WriteResult:
        pool = self._require_pool()
        try:
            async with pool.acquire() as conn:
                row = await conn.fetchrow(
                    """
                    INSERT INTO waypoint_log (key, value) VALUES ($1, $2::jsonb)
                    ON CONFLICT (key) DO NOTHING
                    RETURNING key
                    """,
                    key,
                    json.dumps(value),
                )
                if row is not None:
                    return WriteResult(written=True)
                existing = await conn.fetchval(
                    "SELECT value FROM waypoint_log WHERE key = $1", key
                )
        except (OSError, asyncpg.exceptions.ConnectionDoesNotExistError) as exc:
            raise StoreUnavailableError(str(exc)) from exc
        return WriteResult(written=False, existing=json.loads(existing))

    async def read(self, key: str) -> Optional[Document]:
        pool = self._require_pool()
        try:
            async with pool.acquire() as conn:
                value = await conn.fetchval(
                    "SELECT value FROM waypoint_log WHERE key = $1", key
                )
        except (OSError, asyncpg.exceptions.ConnectionDoesNotExistError) as exc:
            raise StoreUnavailableError(str(exc)) from exc
        return json.loads(value) if value is not None else None

    async def list_by_prefix(self, prefix: str) -> list[tuple[str, Document]]:
        pool = self._require_pool()
        try:
            async with pool.acquire() as conn:
                rows = await conn.fetch(
                    "SELECT key, value FROM waypoint_log WHERE starts_with(key, $1) ORDER BY key",
                    prefix,
                )
        except (OSError, asyncpg.exceptions.ConnectionDoesNotExistError) as exc:
            raise StoreUnavailableError(str(exc)) from exc
        return [(r["key"], json.loads(r["value"])) for r in rows]
