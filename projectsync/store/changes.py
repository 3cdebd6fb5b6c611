"""
ProjectSync Change Feed — tells every store instance about every write.

A SqlDocumentStore refreshes its own live queries after its own writes. Other
processes on the same database (the Celery provisioning worker, a second web
process) write through their own store instances, so each store also
publishes a Change after every committed write and refreshes its listeners
when a Change from another store arrives.

- LocalChangeFeed: stores sharing one process
- RedisChangeFeed: stores in different processes, over Redis pub/sub
  (``{prefix}changes``)

A feed that cannot reach Redis degrades to local-only live queries; writes
never fail because of the feed.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, List, Optional

from projectsync.engine.cache import RedisCache

logger = logging.getLogger("projectsync.store.changes")

CHANGES_CHANNEL = "changes"


@dataclass(frozen=True)
class Change:
    """One committed write. ``origin`` identifies the store that made it."""

    origin: str
    collection: str
    doc_id: str

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, raw: str) -> "Change":
        data = json.loads(raw)
        return cls(origin=data["origin"], collection=data["collection"], doc_id=data["doc_id"])


ChangeCallback = Callable[[Change], None]


class ChangeFeed(ABC):
    def __init__(self):
        self._callbacks: List[ChangeCallback] = []

    @abstractmethod
    def publish(self, change: Change) -> None:
        """Announce a committed write. Must not raise."""

    def subscribe(self, callback: ChangeCallback) -> Callable[[], None]:
        """Call ``callback`` for every published change (possibly from another thread)."""
        self._callbacks.append(callback)

        def remove() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return remove

    def close(self) -> None:
        self._callbacks.clear()

    def _dispatch(self, change: Change) -> None:
        for callback in list(self._callbacks):
            try:
                callback(change)
            except Exception as e:
                logger.error(f"Change callback failed for {change.collection}/{change.doc_id}: {e}")


class LocalChangeFeed(ChangeFeed):
    """Synchronous fan-out between stores in this process."""

    def publish(self, change: Change) -> None:
        self._dispatch(change)


class RedisChangeFeed(ChangeFeed):
    """
    Changes over Redis pub/sub. Messages are received on redis-py's worker
    thread; subscribers hand them to their own event loops.

    Usage:
        cache = RedisCache(redis_url="redis://localhost:6379/0")
        if cache.connect():
            feed = RedisChangeFeed(cache)
    """

    def __init__(self, cache: RedisCache, channel: str = CHANGES_CHANNEL, poll_interval: float = 0.05):
        super().__init__()
        self.cache = cache
        self.channel = cache.key(channel)
        self._name = channel
        self._poll_interval = poll_interval
        self._pubsub: Any = None
        self._thread: Any = None

    def publish(self, change: Change) -> None:
        if not self.cache.publish(self._name, change.to_json()):
            logger.warning(f"Change to {change.collection}/{change.doc_id} not broadcast; Redis unavailable")

    def subscribe(self, callback: ChangeCallback) -> Callable[[], None]:
        remove = super().subscribe(callback)
        if self._thread is None:
            self._listen()
        return remove

    def _listen(self) -> None:
        if self.cache.client is None:
            logger.warning("Redis not connected; live queries see this process's writes only")
            return
        self._pubsub = self.cache.client.pubsub(ignore_subscribe_messages=True)
        self._pubsub.subscribe(**{self.channel: self._on_message})
        self._thread = self._pubsub.run_in_thread(sleep_time=self._poll_interval, daemon=True)
        logger.info(f"Listening for store changes on {self.channel}")

    def _on_message(self, message: Dict[str, Any]) -> None:
        try:
            change = Change.from_json(message["data"])
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Ignoring malformed change message on {self.channel}: {e}")
            return
        self._dispatch(change)

    def close(self) -> None:
        super().close()
        if self._thread is not None:
            self._thread.stop()
            self._thread = None
        if self._pubsub is not None:
            self._pubsub.close()
            self._pubsub = None


def create_change_feed(redis_url: Optional[str] = None, db: int = 0) -> Optional[ChangeFeed]:
    """Redis feed when ``redis_url`` answers, else None (local-only live queries)."""
    if not redis_url:
        return None
    cache = RedisCache(redis_url=redis_url, db=db)
    if cache.connect():
        return RedisChangeFeed(cache)
    logger.warning("No change feed; writes from other processes will not reach live queries")
    return None
