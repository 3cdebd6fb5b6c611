"""Unit tests for projectsync.engine.cache — circuit breaker, RedisCache, session token stores."""

from unittest.mock import MagicMock, patch

import redis

from projectsync.engine.cache import (
    CircuitBreaker,
    RedisCache,
    RedisSessionTokenStore,
    SessionTokenStore,
    create_session_token_store,
)


def _connected(client, **kwargs):
    cache = RedisCache(**kwargs)
    cache.client = client
    return cache


class TestCircuitBreaker:
    def test_opens_at_threshold(self):
        breaker = CircuitBreaker(threshold=3, window=30)
        for _ in range(2):
            breaker.failure()
        assert breaker.allow() is True
        breaker.failure()
        assert breaker.is_open
        assert breaker.allow() is False

    def test_half_opens_after_window(self):
        breaker = CircuitBreaker(threshold=1, window=30)
        breaker.failure()
        assert breaker.is_open
        breaker._opened_at -= 31
        assert breaker.allow() is True
        assert breaker.is_open is False
        assert breaker.failures == 0


class TestRedisCache:
    def test_unconnected_degrades(self):
        cache = RedisCache(redis_url="redis://localhost:6379/0", db=0)
        assert cache.is_available is False
        assert cache.is_circuit_open is False
        assert cache.get("any_key") is None
        assert cache.set("key", "value") is False
        assert cache.delete("key") is False

    def test_prefixed_keys(self, mock_redis):
        cache = _connected(mock_redis, prefix="test:", default_ttl=60, db=2)
        mock_redis.get.return_value = "value"

        assert cache.key("hello") == "test:hello"
        assert cache.get("key") == "value"
        mock_redis.get.assert_called_once_with("test:key")

        assert cache.set("key", "val") is True
        mock_redis.set.assert_called_once_with("test:key", "val", ex=60)
        assert cache.delete("key") is True

    def test_publish(self, mock_redis):
        cache = _connected(mock_redis, prefix="test:")
        assert cache.publish("changes", "{}") is True
        mock_redis.publish.assert_called_once_with("test:changes", "{}")
        assert RedisCache().publish("changes", "{}") is False

    def test_failures_open_the_circuit(self):
        client = MagicMock()
        client.get.side_effect = redis.ConnectionError("connection lost")
        cache = _connected(client)

        assert cache.get("key") is None
        assert cache.breaker.failures == 1
        for _ in range(4):
            cache.get("key")
        assert cache.is_circuit_open is True

        client.get.reset_mock()
        assert cache.get("key") is None
        client.get.assert_not_called()

    def test_connect_unreachable(self):
        client = MagicMock()
        client.ping.side_effect = redis.ConnectionError("refused")
        with patch("redis.Redis.from_url", return_value=client):
            cache = RedisCache()
            assert cache.connect() is False
        assert cache.is_available is False

    def test_connect(self, mock_redis):
        with patch("redis.Redis.from_url", return_value=mock_redis) as from_url:
            cache = RedisCache(redis_url="redis://cache:6379/0", db=4)
            assert cache.connect() is True
        assert cache.is_available
        assert from_url.call_args.kwargs["db"] == 4


class TestSessionTokenStore:
    def test_put_resolve_revoke(self):
        tokens = SessionTokenStore(ttl=60)
        tokens.put("tok", "U1")
        assert tokens.resolve("tok") == "U1"
        tokens.revoke("tok")
        assert tokens.resolve("tok") is None

    def test_expired_token(self):
        tokens = SessionTokenStore(ttl=-1)
        tokens.put("tok", "U1")
        assert tokens.resolve("tok") is None

    def test_unknown_token(self):
        assert SessionTokenStore().resolve("nope") is None

    def test_redis_backed(self, mock_redis):
        tokens = RedisSessionTokenStore(_connected(mock_redis, prefix="projectsync:"), ttl=120)

        tokens.put("tok", "U1")
        mock_redis.set.assert_called_once_with("projectsync:session:tok", "U1", ex=120)

        mock_redis.get.return_value = "U1"
        assert tokens.resolve("tok") == "U1"

        tokens.revoke("tok")
        mock_redis.delete.assert_called_once_with("projectsync:session:tok")


class TestCreateSessionTokenStore:
    def test_without_url(self):
        assert type(create_session_token_store()) is SessionTokenStore

    def test_redis_unreachable_falls_back(self):
        with patch.object(RedisCache, "connect", return_value=False):
            store = create_session_token_store("redis://localhost:6379/0")
        assert type(store) is SessionTokenStore

    def test_redis_reachable(self):
        with patch.object(RedisCache, "connect", return_value=True):
            store = create_session_token_store("redis://localhost:6379/0", ttl=90)
        assert isinstance(store, RedisSessionTokenStore)
        assert store.ttl == 90
