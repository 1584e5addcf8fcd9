# backend/n8n_backup/services/locks.py
"""
Named locks serializing capture, restore, rotate and delete per workload.

The locks live in Redis, the broker the dramatiq workers already use, so a
scheduled capture in a worker and a restore in the API process contend for
the same lock. Each lock carries a TTL so a crashed holder cannot wedge the
workload forever.
"""
import logging
from contextlib import contextmanager
from typing import Iterator, Optional

import redis
from redis.exceptions import LockError, RedisError

from n8n_backup.config import get_settings
from n8n_backup.exceptions import OperationInProgressError, RuntimeUnavailable

logger = logging.getLogger(__name__)

SELF_UPDATE_LOCK = "self-update"
LOCK_PREFIX = "n8n-backup:lock:"


@contextmanager
def workload_lock(name: str) -> Iterator[None]:
    """
    Hold the lock for ``name`` for the duration of the block.

    Does not wait: if any process holds it, raises OperationInProgressError.
    """
    lock = get_redis().lock(
        f"{LOCK_PREFIX}{name}",
        timeout=get_settings().lock_ttl_seconds,
    )
    try:
        acquired = lock.acquire(blocking=False)
    except RedisError as e:
        logger.error(f"Lock store unreachable for {name}: {e}")
        raise RuntimeUnavailable(f"Cannot reach lock store: {e}") from e
    if not acquired:
        logger.warning(f"Rejected concurrent operation on {name}")
        raise OperationInProgressError(f"Another operation is already running for {name}")
    try:
        yield
    finally:
        try:
            lock.release()
        except LockError as e:
            logger.warning(f"Lock for {name} expired before release: {e}")
        except RedisError as e:
            logger.error(f"Failed to release lock for {name}: {e}")


# Singleton client
_redis: Optional[redis.Redis] = None


def get_redis() -> redis.Redis:
    """Get the Redis client used for workload locks."""
    global _redis
    if _redis is None:
        _redis = redis.Redis.from_url(get_settings().redis_url)
    return _redis
