"""
ProjectSync Session Token Cache — where issued session tokens live.

A restarted client presents its token to restore the session
(AuthSession INITIALIZING -> READY). Tokens are kept in Redis when it
answers and in process memory otherwise.

Redis data is ephemeral: losing it only means users sign in again.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Optional, Tuple, TypeVar

logger = logging.getLogger("projectsync.engine.cache")

T = TypeVar("T")


class CircuitBreaker:
    """
    Opens after ``threshold`` failures within ``window`` seconds and stays
    open for ``window`` seconds before letting a call through again.
    """

    def __init__(self, threshold: int = 5, window: float = 30.0):
        self.threshold = threshold
        self.window = window
        self.failures = 0
        self._first_failure = 0.0
        self._opened_at: Optional[float] = None

    @property
    def is_open(self) -> bool:
        return self._opened_at is not None

    def allow(self) -> bool:
        if self._opened_at is None:
            return True
        if time.monotonic() - self._opened_at > self.window:
            self.reset()
            return True
        return False

    def failure(self) -> None:
        now = time.monotonic()
        if self.failures == 0 or now - self._first_failure > self.window:
            self.failures = 0
            self._first_failure = now
        self.failures += 1
        if self.failures >= self.threshold and self._opened_at is None:
            self._opened_at = now
            logger.error(f"Redis circuit breaker OPEN after {self.failures} failures")

    def reset(self) -> None:
        self.failures = 0
        self._opened_at = None


class RedisCache:
    """
    Prefixed string keys in one Redis DB.

    Reads degrade to None and writes to False while Redis is unreachable or
    the breaker is open; nothing here raises into the caller.
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        prefix: str = "projectsync:",
        default_ttl: int = 3600,
        db: int = 4,
    ):
        self.redis_url = redis_url
        self.prefix = prefix
        self.default_ttl = default_ttl
        self.db = db
        self.client: Any = None
        self.breaker = CircuitBreaker()

    def connect(self) -> bool:
        import redis

        client = redis.Redis.from_url(
            self.redis_url, db=self.db, decode_responses=True,
            socket_timeout=5, socket_connect_timeout=5,
        )
        try:
            client.ping()
        except redis.RedisError as e:
            logger.warning(f"Redis unreachable at {self.redis_url} (db {self.db}): {e}")
            self.client = None
            return False
        self.client = client
        self.breaker.reset()
        logger.info(f"Redis connected: db {self.db}, prefix {self.prefix!r}")
        return True

    @property
    def is_available(self) -> bool:
        return self.client is not None

    @property
    def is_circuit_open(self) -> bool:
        return self.breaker.is_open

    def key(self, name: str) -> str:
        return f"{self.prefix}{name}"

    def _call(self, op: str, fn: Callable[[Any], T], fallback: T) -> T:
        if self.client is None or not self.breaker.allow():
            return fallback
        try:
            return fn(self.client)
        except Exception as e:
            self.breaker.failure()
            logger.debug(f"Redis {op} failed: {e}")
            return fallback

    def get(self, name: str) -> Optional[str]:
        return self._call("GET", lambda c: c.get(self.key(name)), None)

    def set(self, name: str, value: str, ttl: Optional[int] = None) -> bool:
        def write(client: Any) -> bool:
            client.set(self.key(name), value, ex=ttl or self.default_ttl)
            return True

        return self._call("SET", write, False)

    def delete(self, name: str) -> bool:
        def remove(client: Any) -> bool:
            client.delete(self.key(name))
            return True

        return self._call("DEL", remove, False)

    def publish(self, channel: str, message: str) -> bool:
        def send(client: Any) -> bool:
            client.publish(self.key(channel), message)
            return True

        return self._call("PUBLISH", send, False)


class SessionTokenStore:
    """token -> user id, expiring after ``ttl`` seconds. Lives in this process only."""

    def __init__(self, ttl: int = 3600):
        self.ttl = ttl
        self._entries: Dict[str, Tuple[str, float]] = {}

    def put(self, token: str, user_id: str) -> None:
        self._entries[token] = (user_id, time.time() + self.ttl)

    def resolve(self, token: str) -> Optional[str]:
        user_id, expires_at = self._entries.get(token, (None, 0.0))
        if user_id is not None and time.time() > expires_at:
            self.revoke(token)
            return None
        return user_id

    def revoke(self, token: str) -> None:
        self._entries.pop(token, None)


class RedisSessionTokenStore(SessionTokenStore):
    """Tokens under ``{prefix}session:{token}`` so they survive restarts."""

    def __init__(self, cache: RedisCache, ttl: int = 3600):
        super().__init__(ttl=ttl)
        self.cache = cache

    def put(self, token: str, user_id: str) -> None:
        if not self.cache.set(f"session:{token}", user_id, ttl=self.ttl):
            logger.warning("Session token not persisted; Redis unavailable")

    def resolve(self, token: str) -> Optional[str]:
        return self.cache.get(f"session:{token}")

    def revoke(self, token: str) -> None:
        self.cache.delete(f"session:{token}")


def create_session_token_store(
    redis_url: Optional[str] = None,
    db: int = 4,
    ttl: int = 3600,
) -> SessionTokenStore:
    """Redis-backed store when ``redis_url`` answers, else the in-process one."""
    if not redis_url:
        return SessionTokenStore(ttl=ttl)
    cache = RedisCache(redis_url=redis_url, default_ttl=ttl, db=db)
    if cache.connect():
        return RedisSessionTokenStore(cache, ttl=ttl)
    logger.warning("Falling back to in-process session tokens")
    return SessionTokenStore(ttl=ttl)
