"""Tests for the Redis product locks."""

from unittest.mock import MagicMock, call

import pytest
import redis

from stock_ledger.core.errors import Unavailable
from stock_ledger.locks import ProductLocks, acquire_lock, create_product_locks, release_lock


@pytest.fixture
def redis_client() -> MagicMock:
    store = {}
    redis_client = MagicMock(spec=redis.Redis)

    def _set(key, value, nx=False, ex=None):
        if nx and key in store:
            return None
        store[key] = value.encode()
        return True

    redis_client.set.side_effect = _set
    redis_client.get.side_effect = store.get
    redis_client.delete.side_effect = lambda key: store.pop(key, None)
    redis_client.store = store
    return redis_client


class TestAcquireRelease:
    def test_acquire_sets_key_with_ttl(self, redis_client) -> None:
        acquired, lock_id, lock_key = acquire_lock(redis_client, "stock:1", lock_ttl=5)

        assert acquired is True
        assert lock_key == "lock:stock:1"
        redis_client.set.assert_called_once_with("lock:stock:1", lock_id, nx=True, ex=5)

    def test_second_acquire_fails(self, redis_client) -> None:
        acquire_lock(redis_client, "stock:1")
        acquired, _, _ = acquire_lock(redis_client, "stock:1")
        assert acquired is False

    def test_release_only_by_owner(self, redis_client) -> None:
        _, lock_id, lock_key = acquire_lock(redis_client, "stock:1")

        assert release_lock(redis_client, lock_key, "someone-else") is False
        assert lock_key in redis_client.store
        assert release_lock(redis_client, lock_key, lock_id) is True
        assert lock_key not in redis_client.store


class TestProductLocks:
    def test_locks_in_ascending_order_and_releases(self, redis_client) -> None:
        locks = ProductLocks(redis_client, lock_ttl=10)

        with locks.hold([7, 3, 7, 5]):
            assert sorted(redis_client.store) == ["lock:stock:3", "lock:stock:5", "lock:stock:7"]

        keys = [c.args[0] for c in redis_client.set.call_args_list]
        assert keys == ["lock:stock:3", "lock:stock:5", "lock:stock:7"]
        assert redis_client.store == {}

    def test_busy_product_raises_and_releases_held_locks(self, redis_client) -> None:
        acquire_lock(redis_client, "stock:5")
        locks = ProductLocks(redis_client)

        with pytest.raises(Unavailable) as exc_info:
            with locks.hold([3, 5]):
                pytest.fail("body must not run while a lock is busy")

        assert exc_info.value.details == {"product_id": 5}
        assert "lock:stock:3" not in redis_client.store
        assert "lock:stock:5" in redis_client.store

    def test_released_after_error_in_body(self, redis_client) -> None:
        locks = ProductLocks(redis_client)

        with pytest.raises(RuntimeError):
            with locks.hold([1]):
                raise RuntimeError("boom")

        assert redis_client.store == {}

    def test_redis_outage_is_unavailable(self) -> None:
        redis_client = MagicMock(spec=redis.Redis)
        redis_client.set.side_effect = redis.ConnectionError("refused")

        with pytest.raises(Unavailable):
            with ProductLocks(redis_client).hold([1]):
                pass

    def test_release_failure_is_not_raised(self, redis_client) -> None:
        redis_client.delete.side_effect = redis.ConnectionError("gone")
        with ProductLocks(redis_client).hold([1]):
            pass
        assert redis_client.delete.call_args == call("lock:stock:1")


class TestCreateProductLocks:
    def test_disabled_without_url(self) -> None:
        assert create_product_locks(None) is None

    def test_from_url(self) -> None:
        locks = create_product_locks("redis://localhost:6379/0")
        assert isinstance(locks, ProductLocks)
