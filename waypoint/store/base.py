"""Base interface for durable log stores."""

from __future__ import annotations

import abc
from dataclasses import dataclass
from typing import Any, Optional

Document = dict[str, Any]


@dataclass(frozen=True)
class WriteResult:
    """Outcome of a conditional write.

    ``existing`` holds the stored document when the key was already present.
    """

    written: bool
    existing: Optional[Document] = None


class LogStore(metaclass=abc.ABCMeta):
    """Append-only keyed storage with atomic write-if-absent."""

    async def connect(self) -> None:
        """Open connections to the backend (no-op by default)."""
        pass

    async def close(self) -> None:
        """Release backend connections (no-op by default)."""
        pass

    @abc.abstractmethod
    async def conditional_write(self, key: str, value: Document) -> WriteResult:
        """Store ``value`` under ``key`` only if the key is absent."""
        raise NotImplementedError

    @abc.abstractmethod
    async def read(self, key: str) -> Optional[Document]:
        """Return the document stored under ``key`` or ``None``."""
        raise NotImplementedError

    @abc.abstractmethod
    async def list_by_prefix(self, prefix: str) -> list[tuple[str, Document]]:
        """Return ``(key, document)`` pairs whose key starts with ``prefix``.

        Pairs are ordered by key.
        """
        raise NotImplementedError
