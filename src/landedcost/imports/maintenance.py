"""Maintenance jobs for the import bookkeeping tables.

- ``sweep_stale_imports``: force-fail runs whose heartbeat stopped
- ``prune_imports``: delete old provenance and finished runs
"""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from landedcost.db.models import ImportRun, ProvenanceRecord
from landedcost.money import utcnow
from landedcost.observability import increment, log_event

logger = logging.getLogger(__name__)

IMPORT_STALE_MINUTES = int(os.getenv("IMPORT_STALE_MINUTES", "30"))
IMPORT_PRUNE_DAYS = int(os.getenv("IMPORT_PRUNE_DAYS", "90"))


@dataclass(frozen=True)
class SweepResult:
    swept: int
    threshold_minutes: int
    cutoff: datetime

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["cutoff"] = self.cutoff.isoformat()
        return payload


@dataclass(frozen=True)
class PruneResult:
    provenance_deleted: int
    imports_deleted: int
    cutoff: datetime

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["cutoff"] = self.cutoff.isoformat()
        return payload


def _session_factory(session_factory: Optional[Callable[[], Session]]) -> Callable[[], Session]:
    if session_factory is not None:
        return session_factory
    from landedcost.db.session import SessionLocal

    return SessionLocal


def sweep_stale_imports(
    *,
    threshold_minutes: Optional[int] = None,
    limit: Optional[int] = None,
    now: Optional[datetime] = None,
    session_factory: Optional[Callable[[], Session]] = None,
) -> SweepResult:
    """Mark ``running`` imports with no recent heartbeat as ``failed``.

    A run is stale when it has no ``finished_at`` and its last heartbeat
    (or its start, if it never heartbeated) is older than the threshold.
    With ``limit``, the oldest runs are swept first.
    """
    minutes = IMPORT_STALE_MINUTES if threshold_minutes is None else int(threshold_minutes)
    if minutes < 0:
        raise ValueError("threshold_minutes must be non-negative")
    if limit is not None and limit < 1:
        raise ValueError("limit must be positive")
    now = now or utcnow()
    cutoff = now - timedelta(minutes=minutes)
    last_seen = func.coalesce(ImportRun.heartbeat_at, ImportRun.started_at)

    session = _session_factory(session_factory)()
    try:
        query = (
            session.query(ImportRun)
            .filter(
                ImportRun.status == "running",
                ImportRun.finished_at.is_(None),
                last_seen < cutoff,
            )
            .order_by(last_seen.asc())
        )
        if limit is not None:
            query = query.limit(limit)
        stale = query.all()
        for run in stale:
            run.status = "failed"
            run.finished_at = now
            run.error = f"stale heartbeat > {minutes}m"
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

    if stale:
        increment("imports_swept_total", len(stale))
        logger.warning("Swept %d stale import run(s) older than %dm", len(stale), minutes)
    log_event("stale imports swept", swept=len(stale), threshold_minutes=minutes)
    return SweepResult(swept=len(stale), threshold_minutes=minutes, cutoff=cutoff)


def prune_imports(
    *,
    days: Optional[int] = None,
    now: Optional[datetime] = None,
    session_factory: Optional[Callable[[], Session]] = None,
) -> PruneResult:
    """Delete provenance rows and finished import runs older than ``days``.

    Rate rows survive; their ``provenance_id`` is nulled by the foreign key.
    Running imports are never pruned.
    """
    keep_days = IMPORT_PRUNE_DAYS if days is None else int(days)
    if keep_days < 0:
        raise ValueError("days must be non-negative")
    cutoff = (now or utcnow()) - timedelta(days=keep_days)

    session = _session_factory(session_factory)()
    try:
        provenance_deleted = (
            session.query(ProvenanceRecord)
            .filter(ProvenanceRecord.created_at < cutoff)
            .delete(synchronize_session=False)
        )
        old_runs = select(ImportRun.id).where(
            ImportRun.started_at < cutoff,
            ImportRun.status != "running",
        )
        # Provenance of an old run that is itself newer than the cutoff goes with the run.
        provenance_deleted += (
            session.query(ProvenanceRecord)
            .filter(ProvenanceRecord.import_run_id.in_(old_runs))
            .delete(synchronize_session=False)
        )
        imports_deleted = (
            session.query(ImportRun)
            .filter(ImportRun.started_at < cutoff, ImportRun.status != "running")
            .delete(synchronize_session=False)
        )
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

    log_event(
        "imports pruned",
        provenance_deleted=provenance_deleted,
        imports_deleted=imports_deleted,
        days=keep_days,
    )
    return PruneResult(provenance_deleted=provenance_deleted, imports_deleted=imports_deleted, cutoff=cutoff)
