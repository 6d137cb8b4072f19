"""
Per-account batch locks

Only one batch may run for an account at a time. ``AccountLockRegistry``
serializes callers inside one process; ``RedisAccountLock`` does the same
across Celery workers with a ``SET NX`` key that expires on its own if a
worker dies mid-batch.
"""

import logging
import threading
import uuid
from contextlib import contextmanager
from typing import Dict, Iterator, Optional

import redis

from config import settings
from lib.exceptions import ConflictError

logger = logging.getLogger(__name__)


class AccountLockRegistry:
    """In-process, non-blocking per-account locks"""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def _lock_for(self, account_id: str) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(account_id, threading.Lock())

    def is_locked(self, account_id: str) -> bool:
        return self._lock_for(account_id).locked()

    @contextmanager
    def hold(self, account_id: str, operation: str = "batch") -> Iterator[None]:
        """
        Hold the account lock for the duration of the block

        Raises:
            ConflictError: Another batch for the account is already running
        """
        lock = self._lock_for(account_id)
        if not lock.acquire(blocking=False):
            raise ConflictError(
                f"A batch is already running for account {account_id}",
                {"account_id": account_id, "operation": operation},
            )
        try:
            yield
        finally:
            lock.release()


class RedisAccountLock:
    """Cross-process per-account locks backed by redis"""

    KEY_PREFIX = "crew_network:lock:"

    # Deletes only while the token still matches
    RELEASE_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    end
    return 0
    """

    def __init__(self, client: Optional[redis.Redis] = None, ttl_seconds: Optional[int] = None):
        self.client = client or redis.Redis.from_url(settings.REDIS_URL)
        self.ttl_seconds = ttl_seconds or settings.ACCOUNT_LOCK_TTL_SECONDS

    def _key(self, account_id: str) -> str:
        return f"{self.KEY_PREFIX}{account_id}"

    def is_locked(self, account_id: str) -> bool:
        return bool(self.client.exists(self._key(account_id)))

    @contextmanager
    def hold(self, account_id: str, operation: str = "batch") -> Iterator[None]:
        """
        Hold the account lock for the duration of the block

        Raises:
            ConflictError: Another worker holds the lock for this account
        """
        key = self._key(account_id)
        token = uuid.uuid4().hex
        if not self.client.set(key, token, nx=True, ex=self.ttl_seconds):
            raise ConflictError(
                f"A batch is already running for account {account_id}",
                {"account_id": account_id, "operation": operation},
            )
        try:
            yield
        finally:
            try:
                self.client.eval(self.RELEASE_SCRIPT, 1, key, token)
            except redis.RedisError as e:
                logger.error(f"Failed to release lock {key}, it will expire in {self.ttl_seconds}s: {e}")
