"""Durable log store backends and factory."""

from __future__ import annotations

from ..errors import ConfigurationError
from .base import Document, LogStore, WriteResult
from .inmemory import InMemoryLogStore
from .sqlite import SQLiteLogStore


def get_store(url: str) -> LogStore:
    """Factory function to obtain a log store for ``url``.

    ``memory://`` gives an in-process store, ``sqlite:///path`` a SQLite file,
    ``postgresql://`` an asyncpg pool and ``redis://`` a Redis client.
    """

    if url.startswith("memory://"):
        return InMemoryLogStore()
    if url.startswith("sqlite://"):
        path = url.replace("sqlite://", "", 1)
        return SQLiteLogStore(path or ":memory:")
    if url.startswith("postgres://") or url.startswith("postgresql://"):
        from .postgres import PostgresLogStore

        return PostgresLogStore(url)
    if url.startswith("redis://") or url.startswith("rediss://"):
        from .redis import RedisLogStore

        return RedisLogStore(url)
    raise ConfigurationError(f"Unsupported store backend: {url}")


__all__ = [
    "Document",
    "LogStore",
    "WriteResult",
    "InMemoryLogStore",
    "SQLiteLogStore",
    "get_store",
]
