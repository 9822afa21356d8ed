"""SQLite implementation of the log store."""

from __future__ import annotations

import asyncio
import json
import sqlite3
from pathlib import Path
from typing import Any, Callable, Optional, TypeVar

from ..errors import StoreUnavailableError
from .base import Document, LogStore, WriteResult

T = TypeVar("T")


class SQLiteLogStore(LogStore):
    """Persist records in a single SQLite table."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn: sqlite3.Connection | None = None

    # ------------------------------------------------------------------
    # Connection and schema management
    async def connect(self) -> None:
        if self._conn is not None:
            return
        try:
            self._conn = await asyncio.to_thread(self._open)
        except sqlite3.Error as exc:
            raise StoreUnavailableError(
                f"Cannot open SQLite store at {self.db_path}: {exc}"
            ) from exc

    def _open(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS log_records (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            )
            """
        )
        conn.commit()
        return conn

    async def close(self) -> None:
        if self._conn is not None:
            conn, self._conn = self._conn, None
            await asyncio.to_thread(conn.close)

    # ------------------------------------------------------------------
    # Helper methods
    def _require_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StoreUnavailableError("SQLite store is not connected")
        return self._conn

    def _insert(self, key: str, value: str) -> int:
        conn = self._require_conn()
        cur = conn.cursor()
        cur.execute(
            "INSERT OR IGNORE INTO log_records (key, value) VALUES (?, ?)",
            (key, value),
        )
        conn.commit()
        return cur.rowcount

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        cur = self._require_conn().cursor()
        cur.execute(query, params)
        return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        cur = self._require_conn().cursor()
        cur.execute(query, params)
        return cur.fetchall()

    async def _run(self, fn: Callable[..., T], *args: Any) -> T:
        try:
            return await asyncio.to_thread(fn, *args)
        except sqlite3.Error as exc:
            # e.g. "database is locked" while another process holds the file
            raise StoreUnavailableError(f"SQLite store error: {exc}") from exc

    # ------------------------------------------------------------------
    # Store API
    async def conditional_write(self, key: str, value: Document) -> WriteResult:
        inserted = await self._run(self._insert, key, json.dumps(value))
        if inserted:
            return WriteResult(written=True)
        return WriteResult(written=False, existing=await self.read(key))

    async def read(self, key: str) -> Optional[Document]:
        row = await self._run(
            self._fetchone, "SELECT value FROM log_records WHERE key = ?", key
        )
        return json.loads(row["value"]) if row else None

    async def list_by_prefix(self, prefix: str) -> list[tuple[str, Document]]:
        rows = await self._run(
            self._fetchall,
            "SELECT key, value FROM log_records WHERE substr(key, 1, ?) = ? ORDER BY key",
            len(prefix),
            prefix,
        )
        return [(r["key"], json.loads(r["value"])) for r in rows]
