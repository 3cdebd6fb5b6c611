"""
SqlDocumentStore — DocumentStore on top of SQLAlchemy.

Documents live as JSON in ``store_documents``. Live queries are held in
process: after every committed write the affected listeners' result sets are
recomputed and delivered with ``loop.call_soon`` on the loop that opened the
listener, so delivery order per listener follows write order and a write is
never observed synchronously by its caller.

With a ChangeFeed, every write is also announced to the other store
instances on the database, and their announcements refresh this store's
listeners the same way.

Filtering and ordering are evaluated here, standing in for the remote query
engine. Documents missing the sort field are excluded from ordered queries.
"""

from __future__ import annotations

import asyncio
import copy
import itertools
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from projectsync.db.models import StoredDocument
from projectsync.db.session import session_scope
from projectsync.engine.errors import NotFoundError, TransportError
from projectsync.store.base import (
    DESCENDING,
    SERVER_TIMESTAMP,
    DocumentCallback,
    DocumentSnapshot,
    DocumentStore,
    ErrorCallback,
    Query,
    SnapshotCallback,
    Unsubscribe,
)
from projectsync.store.changes import Change, ChangeFeed

logger = logging.getLogger("projectsync.store.sql")


@dataclass
class _Listener:
    listener_id: int
    loop: asyncio.AbstractEventLoop
    on_error: Optional[ErrorCallback]
    query: Optional[Query] = None
    on_snapshot: Optional[SnapshotCallback] = None
    doc_collection: Optional[str] = None
    doc_id: Optional[str] = None
    on_document: Optional[DocumentCallback] = None
    active: bool = True

    def watches(self, collection: str, doc_id: str) -> bool:
        if self.query is not None:
            return self.query.collection == collection
        return self.doc_collection == collection and self.doc_id == doc_id


class SqlDocumentStore(DocumentStore):
    """
    Usage:
        factory = init_db("sqlite:///:memory:")
        store = SqlDocumentStore(factory)
        unsubscribe = store.listen(Query("tasks", ("projectId", "P1"), "createdAt"), print)
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        clock: Optional[Callable[[], datetime]] = None,
        id_factory: Optional[Callable[[], str]] = None,
        change_feed: Optional[ChangeFeed] = None,
    ):
        self._factory = session_factory
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._id_factory = id_factory or (lambda: uuid.uuid4().hex[:20])
        self._listeners: Dict[int, _Listener] = {}
        self._ids = itertools.count(1)
        self.origin = uuid.uuid4().hex
        self._feed = change_feed
        self._feed_unsubscribe = change_feed.subscribe(self._on_change) if change_feed else None

    def close(self) -> None:
        """Stop receiving changes from other stores and drop every listener."""
        if self._feed_unsubscribe is not None:
            self._feed_unsubscribe()
            self._feed_unsubscribe = None
        for listener in self._listeners.values():
            listener.active = False
        self._listeners.clear()

    # -------------------------------------------------------------------
    # Live queries
    # -------------------------------------------------------------------

    def listen(
        self,
        query: Query,
        on_snapshot: SnapshotCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Unsubscribe:
        listener = _Listener(
            listener_id=next(self._ids),
            loop=asyncio.get_running_loop(),
            on_error=on_error,
            query=query,
            on_snapshot=on_snapshot,
        )
        return self._register(listener)

    def listen_document(
        self,
        collection: str,
        doc_id: str,
        on_snapshot: DocumentCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Unsubscribe:
        listener = _Listener(
            listener_id=next(self._ids),
            loop=asyncio.get_running_loop(),
            on_error=on_error,
            doc_collection=collection,
            doc_id=doc_id,
            on_document=on_snapshot,
        )
        return self._register(listener)

    def _register(self, listener: _Listener) -> Unsubscribe:
        self._listeners[listener.listener_id] = listener
        logger.debug(f"Listener {listener.listener_id} opened")
        self._push(listener)

        def unsubscribe() -> None:
            listener.active = False
            if self._listeners.pop(listener.listener_id, None) is not None:
                logger.debug(f"Listener {listener.listener_id} closed")

        return unsubscribe

    @property
    def active_listener_count(self) -> int:
        return len(self._listeners)

    def _push(self, listener: _Listener) -> None:
        """Compute the listener's current view now and deliver it on its loop."""
        try:
            if listener.query is not None:
                payload: Any = self._run_query(listener.query)
            else:
                payload = self._read(listener.doc_collection, listener.doc_id)
        except SQLAlchemyError as e:
            err = TransportError(f"Live query failed: {e}", backend="store")
            listener.loop.call_soon(self._deliver_error, listener, err)
            return
        except Exception as e:
            # A bad document must not fail the write that triggered the push
            logger.error(f"Listener {listener.listener_id} could not be refreshed: {e}")
            listener.loop.call_soon(self._deliver_error, listener, e)
            return
        listener.loop.call_soon(self._deliver, listener, payload)

    @staticmethod
    def _deliver(listener: _Listener, payload: Any) -> None:
        if not listener.active:
            return
        if listener.query is not None:
            listener.on_snapshot(payload)
        else:
            listener.on_document(payload)

    @staticmethod
    def _deliver_error(listener: _Listener, error: Exception) -> None:
        if listener.active and listener.on_error is not None:
            listener.on_error(error)

    def _notify(self, collection: str, doc_id: str) -> None:
        for listener in list(self._listeners.values()):
            if listener.active and listener.watches(collection, doc_id):
                self._push(listener)

    def _announce(self, collection: str, doc_id: str) -> None:
        self._notify(collection, doc_id)
        if self._feed is not None:
            self._feed.publish(Change(self.origin, collection, doc_id))

    def _on_change(self, change: Change) -> None:
        """Refresh listeners for a write made by another store (any thread)."""
        if change.origin == self.origin:
            return
        for listener in list(self._listeners.values()):
            if listener.active and listener.watches(change.collection, change.doc_id):
                try:
                    listener.loop.call_soon_threadsafe(self._push, listener)
                except RuntimeError:
                    logger.debug(f"Listener {listener.listener_id} loop closed; change dropped")

    # -------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------

    def _run_query(self, query: Query) -> List[DocumentSnapshot]:
        with session_scope(self._factory) as session:
            rows = session.execute(
                select(StoredDocument)
                .where(StoredDocument.collection == query.collection)
                .order_by(StoredDocument.seq)
            ).scalars().all()
            matched = [
                (row.seq, row.doc_id, copy.deepcopy(row.data))
                for row in rows
                if query.matches(row.data)
            ]

        if query.order_by:
            field_name = query.order_by
            matched = [m for m in matched if m[2].get(field_name) is not None]
            matched.sort(
                key=lambda m: (m[2][field_name], m[0]),
                reverse=query.direction == DESCENDING,
            )
        return [DocumentSnapshot(id=doc_id, data=data) for _, doc_id, data in matched]

    def _read(self, collection: str, doc_id: str) -> DocumentSnapshot:
        with session_scope(self._factory) as session:
            row = session.execute(
                select(StoredDocument).where(
                    StoredDocument.collection == collection,
                    StoredDocument.doc_id == doc_id,
                )
            ).scalar_one_or_none()
            data = copy.deepcopy(row.data) if row is not None else None
        return DocumentSnapshot(id=doc_id, data=data)

    async def get(self, collection: str, doc_id: str) -> DocumentSnapshot:
        try:
            return self._read(collection, doc_id)
        except SQLAlchemyError as e:
            raise TransportError(
                f"Read failed: {e}", backend="store", collection=collection, record_id=doc_id,
            ) from e

    async def fetch(self, query: Query) -> List[DocumentSnapshot]:
        try:
            return self._run_query(query)
        except SQLAlchemyError as e:
            raise TransportError(f"Query failed: {e}", backend="store", collection=query.collection) from e

    # -------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------

    def _resolve(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Replace SERVER_TIMESTAMP sentinels with the store clock."""
        now = self._clock().isoformat()
        return {k: (now if v is SERVER_TIMESTAMP else v) for k, v in data.items()}

    async def add(self, collection: str, data: Dict[str, Any]) -> str:
        doc_id = self._id_factory()
        try:
            with session_scope(self._factory) as session:
                session.add(StoredDocument(collection=collection, doc_id=doc_id, data=self._resolve(data)))
        except SQLAlchemyError as e:
            raise TransportError(
                f"Create failed: {e}", backend="store", collection=collection, operation="create",
            ) from e
        logger.debug(f"Added {collection}/{doc_id}")
        self._announce(collection, doc_id)
        return doc_id

    async def update(self, collection: str, doc_id: str, patch: Dict[str, Any]) -> None:
        try:
            with session_scope(self._factory) as session:
                row = session.execute(
                    select(StoredDocument).where(
                        StoredDocument.collection == collection,
                        StoredDocument.doc_id == doc_id,
                    )
                ).scalar_one_or_none()
                if row is None:
                    raise NotFoundError(
                        f"{collection}/{doc_id} does not exist",
                        collection=collection, record_id=doc_id, operation="update",
                    )
                merged = dict(row.data)
                merged.update(self._resolve(patch))
                # Reassign so SQLAlchemy sees the JSON column as dirty
                row.data = merged
        except SQLAlchemyError as e:
            raise TransportError(
                f"Update failed: {e}", backend="store",
                collection=collection, record_id=doc_id, operation="update",
            ) from e
        logger.debug(f"Updated {collection}/{doc_id}: {sorted(patch)}")
        self._announce(collection, doc_id)

    async def delete(self, collection: str, doc_id: str) -> bool:
        try:
            with session_scope(self._factory) as session:
                row = session.execute(
                    select(StoredDocument).where(
                        StoredDocument.collection == collection,
                        StoredDocument.doc_id == doc_id,
                    )
                ).scalar_one_or_none()
                if row is None:
                    return False
                session.delete(row)
        except SQLAlchemyError as e:
            raise TransportError(
                f"Delete failed: {e}", backend="store",
                collection=collection, record_id=doc_id, operation="delete",
            ) from e
        logger.debug(f"Deleted {collection}/{doc_id}")
        self._announce(collection, doc_id)
        return True
