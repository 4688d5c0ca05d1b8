"""Named-lease mutual exclusion for import jobs.

A lease is acquire-or-fail: a second caller for the same key gets ``None``
immediately instead of waiting.  Leases carry a TTL so a crashed holder
cannot wedge a job key forever; the stale-run sweeper cleans up the
ImportRun such a holder left behind.

Backends:
- ``RedisLeaseLock``: ``redis.lock.Lock`` with ``blocking=False`` (default)
- ``DatabaseLeaseLock``: a row in ``import_locks`` guarded by its primary key
"""

from __future__ import annotations

import logging
import os
import uuid
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import timedelta
from typing import Callable, Iterator, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from landedcost.errors import ImportAlreadyRunning
from landedcost.money import utcnow

logger = logging.getLogger(__name__)

IMPORT_LOCK_TTL_SECONDS = int(os.getenv("IMPORT_LOCK_TTL_SECONDS", "1800"))


class LeaseLock(ABC):
    """Abstract acquire-or-fail lease service."""

    @abstractmethod
    def acquire(self, key: str, ttl_seconds: int = IMPORT_LOCK_TTL_SECONDS) -> Optional[str]:
        """Return a lease token, or ``None`` if ``key`` is already held."""

    @abstractmethod
    def release(self, key: str, token: str) -> None:
        ...

    @contextmanager
    def hold(self, key: str, ttl_seconds: int = IMPORT_LOCK_TTL_SECONDS) -> Iterator[str]:
        """Hold ``key`` for the duration of the block.

        Raises:
            ImportAlreadyRunning: another holder has the lease
        """
        token = self.acquire(key, ttl_seconds)
        if token is None:
            logger.warning("Lease %s is held elsewhere", key)
            raise ImportAlreadyRunning(key)
        try:
            yield token
        finally:
            self.release(key, token)


class RedisLeaseLock(LeaseLock):
    def __init__(self, client=None):
        if client is None:
            from landedcost.caching.redis_client import get_redis_client

            client = get_redis_client()
        self._client = client

    def acquire(self, key: str, ttl_seconds: int = IMPORT_LOCK_TTL_SECONDS) -> Optional[str]:
        return self._client.try_lock(key, timeout=ttl_seconds)

    def release(self, key: str, token: str) -> None:
        if not self._client.release_lock(key, token):
            logger.warning("Lease %s expired before release", key)


class DatabaseLeaseLock(LeaseLock):
    """Lease stored in ``import_locks``; the INSERT is the atomic step."""

    def __init__(self, session_factory: Optional[Callable[[], Session]] = None):
        if session_factory is None:
            from landedcost.db.session import SessionLocal

            session_factory = SessionLocal
        self._session_factory = session_factory

    def acquire(self, key: str, ttl_seconds: int = IMPORT_LOCK_TTL_SECONDS) -> Optional[str]:
        from landedcost.db.models import ImportLock

        token = uuid.uuid4().hex
        now = utcnow()
        session = self._session_factory()
        try:
            session.query(ImportLock).filter(
                ImportLock.key == key,
                ImportLock.expires_at <= now,
            ).delete(synchronize_session=False)
            session.add(
                ImportLock(
                    key=key,
                    token=token,
                    acquired_at=now,
                    expires_at=now + timedelta(seconds=ttl_seconds),
                )
            )
            session.commit()
        except IntegrityError:
            session.rollback()
            return None
        finally:
            session.close()
        return token

    def release(self, key: str, token: str) -> None:
        from landedcost.db.models import ImportLock

        session = self._session_factory()
        try:
            deleted = (
                session.query(ImportLock)
                .filter(ImportLock.key == key, ImportLock.token == token)
                .delete(synchronize_session=False)
            )
            session.commit()
        finally:
            session.close()
        if not deleted:
            logger.warning("Lease %s expired before release", key)


def get_lease_lock() -> LeaseLock:
    """Lease backend selected by ``LANDEDCOST_LOCK_BACKEND`` (redis | database)."""
    backend = os.getenv("LANDEDCOST_LOCK_BACKEND", "redis").strip().lower()
    if backend == "database":
        return DatabaseLeaseLock()
    if backend == "redis":
        return RedisLeaseLock()
    raise ValueError(f"unknown lock backend: {backend!r}")
