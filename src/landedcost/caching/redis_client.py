"""Redis layer for import leases and FX rate caching.

Provides the distributed primitives that let several Celery workers and
CLI invocations share one rate store safely.

Cache Keys:
- lease:{job_key} → Import lease token (TTL: IMPORT_LOCK_TTL_SECONDS)
- fx:{base}:{quote}:{as_of} → Resolved FX rate as a decimal string (TTL: 1h)
"""

from __future__ import annotations

import os
import uuid
from decimal import Decimal
from typing import Optional

import redis
from redis.lock import Lock


class RedisClient:
    """Redis client for import leases and FX rate caching."""

    def __init__(self, url: Optional[str] = None):
        self.url = url or os.getenv("REDIS_URL", "redis://localhost:6379/0")
        self._client = redis.from_url(
            self.url,
            decode_responses=True,  # Auto-decode strings
            socket_keepalive=True,
            socket_connect_timeout=5,
            socket_timeout=5,
            retry_on_timeout=True,
        )

    # -------------------------------------------------------------------------
    # Import leases
    # -------------------------------------------------------------------------

    def try_lock(self, lock_name: str, timeout: int) -> Optional[str]:
        """Acquire ``lock_name`` without waiting.

        Args:
            lock_name: Unique lease identifier
            timeout: Lease expiration in seconds (auto-release)

        Returns:
            The lease token if acquired, None if another holder has it
        """
        token = uuid.uuid4().hex
        lock = Lock(
            self._client,
            f"lease:{lock_name}",
            timeout=timeout,
            blocking=False,
            thread_local=False,
        )
        if lock.acquire(token=token):
            return token
        return None

    def release_lock(self, lock_name: str, token: str) -> bool:
        """Release a lease previously returned by :meth:`try_lock`.

        Returns:
            False if the lease had already expired or changed hands
        """
        lock = Lock(self._client, f"lease:{lock_name}", thread_local=False)
        lock.local.token = token
        try:
            lock.release()
        except redis.exceptions.LockError:
            # Lease already expired/released
            return False
        return True

    # -------------------------------------------------------------------------
    # FX rate cache
    # -------------------------------------------------------------------------

    def get_fx_rate(self, base: str, quote: str, as_of: str) -> Optional[Decimal]:
        """Retrieve a cached FX rate.

        Args:
            base: ISO-4217 base currency
            quote: ISO-4217 quote currency
            as_of: Requested date (ISO) or "latest"

        Returns:
            Cached rate or None if cache miss
        """
        data = self._client.get(f"fx:{base}:{quote}:{as_of}")
        if data:
            return Decimal(data)
        return None

    def set_fx_rate(
        self,
        base: str,
        quote: str,
        as_of: str,
        rate: Decimal,
        ttl: int = 3600,
    ) -> None:
        """Cache an FX rate with a 1h TTL."""
        self._client.setex(f"fx:{base}:{quote}:{as_of}", ttl, str(rate))


# -------------------------------------------------------------------------
# Singleton instance
# -------------------------------------------------------------------------

_redis_client: Optional[RedisClient] = None


def get_redis_client() -> RedisClient:
    """Get singleton Redis client.

    Returns:
        Initialized RedisClient instance
    """
    global _redis_client
    if _redis_client is None:
        _redis_client = RedisClient()
    return _redis_client
