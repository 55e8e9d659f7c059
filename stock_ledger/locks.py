import contextlib
import logging
import secrets
from typing import Iterable, List, Optional, Tuple

import redis

from .core.config import settings
from .core.errors import Unavailable

logger = logging.getLogger(__name__)


def acquire_lock(client: redis.Redis, resource_key: str, lock_ttl: int = 30) -> Tuple[bool, str, str]:
    """
    Acquire a distributed lock using Redis

    Args:
        client: Redis connection holding the locks
        resource_key: The resource to lock
        lock_ttl: Time-to-live for the lock in seconds

    Returns:
        Tuple of (acquired, lock_id, lock_key)
    """
    lock_key = f"lock:{resource_key}"
    lock_id = secrets.token_hex(8)

    acquired = client.set(lock_key, lock_id, nx=True, ex=lock_ttl)

    return bool(acquired), lock_id, lock_key


def release_lock(client: redis.Redis, lock_key: str, lock_id: str) -> bool:
    """
    Release a distributed lock using Redis

    Args:
        client: Redis connection holding the locks
        lock_key: The lock key to release
        lock_id: The lock ID to verify ownership

    Returns:
        True if lock was released, False otherwise
    """
    # Only release if we own the lock
    current_id = client.get(lock_key)
    if isinstance(current_id, bytes):
        current_id = current_id.decode()
    if current_id and current_id == lock_id:
        client.delete(lock_key)
        return True
    return False


class ProductLocks:
    """Per-product stock locks shared by every process writing to the ledger.

    Locks are always taken in ascending product id order so two operations
    touching overlapping products cannot deadlock each other.
    """

    def __init__(self, client: redis.Redis, lock_ttl: int = 30):
        self.client = client
        self.lock_ttl = lock_ttl

    @contextlib.contextmanager
    def hold(self, product_ids: Iterable[int]):
        held: List[Tuple[str, str]] = []
        try:
            for product_id in sorted(set(product_ids)):
                try:
                    acquired, lock_id, lock_key = acquire_lock(
                        self.client, f"stock:{product_id}", self.lock_ttl
                    )
                except redis.RedisError as e:
                    raise Unavailable(f"Lock store unavailable: {e}", product_id=product_id) from e
                if not acquired:
                    raise Unavailable(
                        "Another stock operation is in progress for this product. Please try again.",
                        product_id=product_id,
                    )
                held.append((lock_key, lock_id))
            yield
        finally:
            for lock_key, lock_id in reversed(held):
                try:
                    release_lock(self.client, lock_key, lock_id)
                except redis.RedisError:
                    # The TTL frees the key eventually
                    logger.warning("Could not release %s, leaving it to expire", lock_key)


def create_product_locks(redis_url: Optional[str] = None) -> Optional[ProductLocks]:
    """Build the lock manager from settings, None when no Redis is configured."""
    url = redis_url or settings.REDIS_URL
    if not url:
        return None
    return ProductLocks(redis.Redis.from_url(url), lock_ttl=settings.LOCK_TTL_SECONDS)


product_locks = create_product_locks()


def get_product_locks() -> Optional[ProductLocks]:
    return product_locks
