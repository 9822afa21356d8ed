"""In-memory log store for testing."""

from __future__ import annotations

import copy
from typing import Dict, Optional

from .base import Document, LogStore, WriteResult


class InMemoryLogStore(LogStore):
    """Keep records in a local dict.

    Useful for tests or single-process experiments. Data is not persisted
    across process restarts, but two runtimes sharing one instance behave
    like two processes sharing a database.
    """

    def __init__(self) -> None:
        self._records: Dict[str, Document] = {}

    async def conditional_write(self, key: str, value: Document) -> WriteResult:
        # check-and-set without an await in between is atomic on the event loop
        existing = self._records.get(key)
        if existing is not None:
            return WriteResult(written=False, existing=copy.deepcopy(existing))
        self._records[key] = copy.deepcopy(value)
        return WriteResult(written=True)

    async def read(self, key: str) -> Optional[Document]:
        value = self._records.get(key)
        return copy.deepcopy(value) if value is not None else None

    async def list_by_prefix(self, prefix: str) -> list[tuple[str, Document]]:
        return [
            (key, copy.deepcopy(value))
            for key, value in sorted(self._records.items())
            if key.startswith(prefix)
        ]
