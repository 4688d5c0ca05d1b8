"""ImportRun lifecycle and per-row provenance records."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Session

from landedcost.db.models import ImportRun, ProvenanceRecord
from landedcost.imports.normalize import CanonicalRecord
from landedcost.money import utcnow

logger = logging.getLogger(__name__)


def build_import_id(kind: str, *parts: Any, now: Optional[datetime] = None) -> str:
    """Stable-per-invocation import id: ``kind:part1:part2:YYYYMMDDHHMMSS``."""
    stamp = (now or utcnow()).strftime("%Y%m%d%H%M%S")
    pieces = [str(kind)] + [str(part) for part in parts if part not in (None, "")] + [stamp]
    return ":".join(pieces)


def start_import_run(
    session: Session,
    *,
    source: str,
    job: str,
    params: Optional[Dict[str, Any]] = None,
    run_id: Optional[str] = None,
) -> ImportRun:
    """Create (or reopen a failed) ImportRun in status ``running``.

    The caller commits.  Callers must check for an already-succeeded run
    with :func:`find_succeeded_run` before starting.
    """
    now = utcnow()
    run = session.get(ImportRun, run_id) if run_id else None
    if run is None:
        run = ImportRun(
            id=run_id or f"{job}:{uuid.uuid4().hex[:12]}",
            source=source,
            job=job,
            params=params or {},
            status="running",
            started_at=now,
            heartbeat_at=now,
        )
        session.add(run)
    else:
        logger.info("Reopening %s import run %s", run.status, run.id)
        run.source = source
        run.job = job
        run.params = params or {}
        run.status = "running"
        run.inserted_count = 0
        run.updated_count = 0
        run.error = None
        run.started_at = now
        run.heartbeat_at = now
        run.finished_at = None
    session.flush()
    return run


def find_succeeded_run(session: Session, run_id: Optional[str]) -> Optional[ImportRun]:
    if not run_id:
        return None
    run = session.get(ImportRun, run_id)
    if run is not None and run.status == "succeeded":
        return run
    return None


def heartbeat(run: ImportRun, *, inserted: int, updated: int) -> None:
    run.inserted_count = inserted
    run.updated_count = updated
    run.heartbeat_at = utcnow()


def finish_import_run(
    session_factory: Callable[[], Session],
    run_id: str,
    *,
    status: str,
    inserted: int = 0,
    updated: int = 0,
    error: Optional[str] = None,
) -> None:
    """Move a run to a terminal status in its own transaction."""
    session = session_factory()
    try:
        run = session.get(ImportRun, run_id)
        if run is None:
            logger.error("Import run %s vanished before it could be finished", run_id)
            return
        run.status = status
        run.inserted_count = inserted
        run.updated_count = updated
        run.error = error[:4000] if error else None
        run.finished_at = utcnow()
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def record_failed_run(
    session_factory: Callable[[], Session],
    *,
    source: str,
    job: str,
    error: str,
    params: Optional[Dict[str, Any]] = None,
) -> str:
    """Persist a run that failed before it produced rows (e.g. a fetch error)."""
    session = session_factory()
    try:
        run = start_import_run(session, source=source, job=job, params=params)
        run.status = "failed"
        run.error = error[:4000]
        run.finished_at = utcnow()
        session.commit()
        return run.id
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def record_provenance(
    session: Session,
    run_id: str,
    record: CanonicalRecord,
    *,
    default_source_url: Optional[str] = None,
) -> ProvenanceRecord:
    provenance = ProvenanceRecord(
        import_run_id=run_id,
        entity=record.entity,
        natural_key=record.key_text[:255],
        source_url=record.source_url or default_source_url,
        raw_row_hash=record.raw_hash,
        created_at=utcnow(),
    )
    session.add(provenance)
    session.flush()
    return provenance
