"""
ProjectSync Entity Subscription Manager — live queries mapped to typed view state.

Responsibilities:
1. Open exactly one live store query per subscription (collection, filter, order)
2. Re-map every pushed result set into typed records and replace the Data state
   wholesale (no diffing, no client-side re-sort)
3. Skip and log records that fail to map instead of failing the whole list
4. Tear the query down on close(); late snapshots for a closed query are dropped
5. ListBinding: at most one active subscription per logical list, re-scoped
   when its scope identifier (project id, signed-in user) changes

State machine per subscription:
    Loading ──snapshot──▶ Data(records) ──snapshot──▶ Data(records) ...
            ──error─────▶ Error(message)

Point reads (subscribe_document) publish Loading, Data(record), NotFound or Error.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Set, Tuple, Union

from pydantic import ValidationError as PydanticValidationError

from projectsync.engine.logging import log, log_subscription_event
from projectsync.identity.session import AuthSession
from projectsync.records import CollectionSpec, Record, get_collection
from projectsync.store.base import DocumentSnapshot, DocumentStore, Query

logger = logging.getLogger("projectsync.sync.subscriptions")


# ---------------------------------------------------------------------------
# States
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Loading:
    pass


@dataclass(frozen=True)
class Error:
    message: str
    error: Optional[BaseException] = field(default=None, compare=False)


@dataclass(frozen=True)
class Data:
    records: Any = ()


@dataclass(frozen=True)
class NotFound:
    message: str


LOADING = Loading()

SubscriptionState = Union[Loading, Error, Data, NotFound]
StateCallback = Callable[[SubscriptionState], None]


class StatePublisher:
    """Holds the current state and pushes every replacement to its observers."""

    def __init__(self, initial: SubscriptionState = LOADING):
        self._state: SubscriptionState = initial
        self._observers: List[StateCallback] = []
        self.emissions = 0

    @property
    def state(self) -> SubscriptionState:
        return self._state

    @property
    def records(self) -> List[Any]:
        """Current records, empty unless the state is Data."""
        if isinstance(self._state, Data):
            records = self._state.records
            return list(records) if isinstance(records, (list, tuple)) else [records]
        return []

    def subscribe_state(self, callback: StateCallback, emit_current: bool = True) -> Callable[[], None]:
        """
        Observe state changes. The current state is delivered immediately
        unless emit_current is False. Returns a function that stops observing.
        """
        self._observers.append(callback)
        if emit_current:
            callback(self._state)

        def remove() -> None:
            if callback in self._observers:
                self._observers.remove(callback)

        return remove

    add_listener = subscribe_state

    def _publish(self, state: SubscriptionState) -> None:
        self._state = state
        self.emissions += 1
        for callback in list(self._observers):
            try:
                callback(state)
            except Exception as e:
                # Observer failures are logged, never propagated
                logger.error(f"State observer failed: {e}", exc_info=True)

    async def wait_for(
        self,
        predicate: Callable[[SubscriptionState], bool],
        timeout: Optional[float] = None,
    ) -> SubscriptionState:
        """Wait until the state satisfies ``predicate`` and return it."""
        if predicate(self._state):
            return self._state
        future: asyncio.Future = asyncio.get_running_loop().create_future()

        def check(state: SubscriptionState) -> None:
            if not future.done() and predicate(state):
                future.set_result(state)

        remove = self.subscribe_state(check, emit_current=False)
        try:
            return await asyncio.wait_for(future, timeout)
        finally:
            remove()

    async def wait_for_data(self, timeout: Optional[float] = None) -> List[Any]:
        await self.wait_for(lambda s: isinstance(s, Data), timeout)
        return self.records


# ---------------------------------------------------------------------------
# Subscriptions
# ---------------------------------------------------------------------------

class Subscription(StatePublisher):
    """One live query and the typed records it currently yields."""

    def __init__(
        self,
        store: DocumentStore,
        spec: CollectionSpec,
        query: Query,
        on_close: Optional[Callable[["Subscription"], None]] = None,
    ):
        super().__init__(LOADING)
        self.spec = spec
        self.query = query
        self._store = store
        self._on_close = on_close
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def open(self) -> "Subscription":
        if self._unsubscribe is not None or self._closed:
            return self
        self._unsubscribe = self._store.listen(self.query, self._on_snapshot, self._on_error)
        logger.debug(f"Subscribed: {self.query.describe()}")
        log(log_subscription_event("subscription_opened", self.query.describe()))
        return self

    def close(self) -> None:
        """Tear down the live query. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._observers.clear()
        if self._on_close is not None:
            self._on_close(self)
        logger.debug(f"Unsubscribed: {self.query.describe()}")
        log(log_subscription_event("subscription_closed", self.query.describe()))

    def _on_snapshot(self, snapshots: List[DocumentSnapshot]) -> None:
        if self._closed:
            return
        records: List[Record] = []
        skipped = 0
        for snapshot in snapshots:
            try:
                records.append(self.spec.record_type.from_snapshot(snapshot))
            except PydanticValidationError as e:
                skipped += 1
                logger.warning(
                    f"Skipping unmappable {self.spec.name}/{snapshot.id}: "
                    f"{e.error_count()} field error(s)"
                )
        if skipped:
            log(log_subscription_event(
                "records_skipped", self.query.describe(),
                record_count=len(records), skipped=skipped,
            ))
        self._publish(Data(tuple(records)))

    def _on_error(self, error: BaseException) -> None:
        if self._closed:
            return
        logger.error(f"Live query failed ({self.query.describe()}): {error}")
        log(log_subscription_event("subscription_failed", self.query.describe(), error=str(error)))
        self._publish(Error(self.spec.load_error_message, error))

    def __repr__(self) -> str:
        return f"<Subscription({self.query.describe()}, state={type(self._state).__name__})>"


class DocumentSubscription(StatePublisher):
    """Live point read of one record."""

    def __init__(
        self,
        store: DocumentStore,
        spec: CollectionSpec,
        doc_id: str,
        on_close: Optional[Callable[["DocumentSubscription"], None]] = None,
    ):
        super().__init__(LOADING)
        self.spec = spec
        self.doc_id = doc_id
        self._store = store
        self._on_close = on_close
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._closed = False

    @property
    def record(self) -> Optional[Record]:
        return self._state.records if isinstance(self._state, Data) else None

    def open(self) -> "DocumentSubscription":
        if self._unsubscribe is None and not self._closed:
            self._unsubscribe = self._store.listen_document(
                self.spec.name, self.doc_id, self._on_snapshot, self._on_error,
            )
        return self

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._observers.clear()
        if self._on_close is not None:
            self._on_close(self)

    def _on_snapshot(self, snapshot: DocumentSnapshot) -> None:
        if self._closed:
            return
        if not snapshot.exists:
            self._publish(NotFound(self.spec.not_found_message))
            return
        try:
            record = self.spec.record_type.from_snapshot(snapshot)
        except PydanticValidationError as e:
            logger.error(f"Unmappable {self.spec.name}/{self.doc_id}: {e}")
            self._publish(Error(self.spec.detail_error_message, e))
            return
        self._publish(Data(record))

    def _on_error(self, error: BaseException) -> None:
        if self._closed:
            return
        logger.error(f"Point read failed ({self.spec.name}/{self.doc_id}): {error}")
        self._publish(Error(self.spec.detail_error_message, error))


class SubscriptionManager:
    """
    Opens subscriptions against a DocumentStore and tracks the live ones.

    Usage:
        manager = SubscriptionManager(store)
        tasks = manager.subscribe("tasks", where=("projectId", "P1"), order_by=("createdAt", "asc"))
        tasks.subscribe_state(render)
        ...
        tasks.close()
    """

    def __init__(self, store: DocumentStore):
        self._store = store
        self._active: Set[Union[Subscription, DocumentSubscription]] = set()

    @property
    def store(self) -> DocumentStore:
        return self._store

    @property
    def active_count(self) -> int:
        return len(self._active)

    def build_query(
        self,
        collection: str,
        where: Optional[Tuple[str, Any]] = None,
        order_by: Optional[Tuple[str, str]] = None,
    ) -> Query:
        """Query for ``collection``; order_by falls back to the collection default."""
        spec = get_collection(collection)
        order = order_by or spec.default_order
        if order is None:
            return Query(collection, where=where)
        return Query(collection, where=where, order_by=order[0], direction=order[1])

    def subscribe(
        self,
        collection: str,
        where: Optional[Tuple[str, Any]] = None,
        order_by: Optional[Tuple[str, str]] = None,
    ) -> Subscription:
        """Open a live list subscription. Must be called with a running event loop."""
        spec = get_collection(collection)
        query = self.build_query(collection, where, order_by)
        subscription = Subscription(self._store, spec, query, on_close=self._active.discard)
        self._active.add(subscription)
        return subscription.open()

    def subscribe_document(self, collection: str, doc_id: str) -> DocumentSubscription:
        spec = get_collection(collection)
        subscription = DocumentSubscription(self._store, spec, doc_id, on_close=self._active.discard)
        self._active.add(subscription)
        return subscription.open()

    def close_all(self) -> None:
        for subscription in list(self._active):
            subscription.close()


# ---------------------------------------------------------------------------
# Logical lists
# ---------------------------------------------------------------------------

_UNSCOPED = object()


class ListBinding(StatePublisher):
    """
    A logical list (e.g. "tasks of the current project") with at most one
    active subscription. Observers of the binding keep receiving states
    across re-scopes.

    Usage:
        projects = ListBinding(manager, "projects").bind_session(auth_session)
        tasks = ListBinding(manager, "tasks")
        tasks.rescope("P1")
    """

    def __init__(
        self,
        manager: SubscriptionManager,
        collection: str,
        scope_field: Optional[str] = None,
        order_by: Optional[Tuple[str, str]] = None,
    ):
        super().__init__(LOADING)
        self.spec = get_collection(collection)
        self._manager = manager
        self._scope_field = scope_field or self.spec.scope_field
        self._order_by = order_by
        self._scope: Any = _UNSCOPED
        self._subscription: Optional[Subscription] = None
        self._stop_forwarding: Optional[Callable[[], None]] = None
        self._stop_session: Optional[Callable[[], None]] = None

    @property
    def scope(self) -> Any:
        return None if self._scope is _UNSCOPED else self._scope

    @property
    def subscription(self) -> Optional[Subscription]:
        return self._subscription

    def rescope(self, value: Any) -> None:
        """
        Point the list at a new scope value.

        The old subscription is closed before the replacement opens. A None
        scope publishes Data([]) without issuing a query.
        """
        if value == self._scope and (value is None or self._subscription is not None):
            return
        self._teardown()
        self._scope = value
        if value is None:
            self._publish(Data(()))
            return

        self._publish(LOADING)
        self._subscription = self._manager.subscribe(
            self.spec.name,
            where=(self._scope_field, value),
            order_by=self._order_by,
        )
        self._stop_forwarding = self._subscription.subscribe_state(self._forward, emit_current=False)

    def bind_session(self, auth_session: AuthSession) -> "ListBinding":
        """Scope the list by the signed-in user and follow every session change."""
        if self._stop_session is not None:
            self._stop_session()

        def on_session(session: AuthSession) -> None:
            if not session.loading:
                self.rescope(session.uid)

        self._stop_session = auth_session.add_listener(on_session)
        on_session(auth_session)
        return self

    def close(self) -> None:
        if self._stop_session is not None:
            self._stop_session()
            self._stop_session = None
        self._teardown()
        self._scope = _UNSCOPED

    def _forward(self, state: SubscriptionState) -> None:
        self._publish(state)

    def _teardown(self) -> None:
        if self._stop_forwarding is not None:
            self._stop_forwarding()
            self._stop_forwarding = None
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None
