"""
Remote document store boundary.

Everything above this module talks to a ``DocumentStore``: filtered, ordered
live queries, live point reads, and single-document writes. Snapshots are
pushed to callbacks; the store never guarantees that a write is visible in
the caller's frame, only that it reaches every matching listener afterwards.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

ASCENDING = "asc"
DESCENDING = "desc"


class _ServerTimestamp:
    """Sentinel replaced by the store with its own clock at write time."""

    _instance: Optional["_ServerTimestamp"] = None

    def __new__(cls) -> "_ServerTimestamp":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()


@dataclass(frozen=True)
class Query:
    """
    A live-query definition: one equality filter and one sort field.

    ``where`` is ``(field, value)``; ``order_by`` is a field name.
    """

    collection: str
    where: Optional[Tuple[str, Any]] = None
    order_by: Optional[str] = None
    direction: str = ASCENDING

    def __post_init__(self) -> None:
        if self.direction not in (ASCENDING, DESCENDING):
            raise ValueError(f"direction must be '{ASCENDING}' or '{DESCENDING}', got '{self.direction}'")

    def matches(self, data: Dict[str, Any]) -> bool:
        if self.where is None:
            return True
        field_name, value = self.where
        return data.get(field_name) == value

    def describe(self) -> str:
        parts = [self.collection]
        if self.where:
            parts.append(f"{self.where[0]}=={self.where[1]!r}")
        if self.order_by:
            parts.append(f"order_by {self.order_by} {self.direction}")
        return " ".join(parts)


@dataclass(frozen=True)
class DocumentSnapshot:
    """A document as read from the store. ``data`` is None when it does not exist."""

    id: str
    data: Optional[Dict[str, Any]]

    @property
    def exists(self) -> bool:
        return self.data is not None


SnapshotCallback = Callable[[List[DocumentSnapshot]], None]
DocumentCallback = Callable[[DocumentSnapshot], None]
ErrorCallback = Callable[[Exception], None]
Unsubscribe = Callable[[], None]


class DocumentStore(ABC):
    """Remote store client interface."""

    @abstractmethod
    def listen(
        self,
        query: Query,
        on_snapshot: SnapshotCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Unsubscribe:
        """Open a live query. The full ordered result set is pushed on every change."""

    @abstractmethod
    def listen_document(
        self,
        collection: str,
        doc_id: str,
        on_snapshot: DocumentCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Unsubscribe:
        """Open a live point read."""

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> DocumentSnapshot:
        ...

    @abstractmethod
    async def fetch(self, query: Query) -> List[DocumentSnapshot]:
        """One-shot query."""

    @abstractmethod
    async def add(self, collection: str, data: Dict[str, Any]) -> str:
        """Create a document with a generated id and return the id."""

    @abstractmethod
    async def update(self, collection: str, doc_id: str, patch: Dict[str, Any]) -> None:
        """Apply a partial field patch. Raises NotFoundError if missing."""

    @abstractmethod
    async def delete(self, collection: str, doc_id: str) -> bool:
        """Delete by id. Returns False if the document did not exist."""
