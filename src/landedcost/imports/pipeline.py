"""Import pipeline: normalize, validate, lease, upsert, record provenance.

``run_import`` is the single entry point used by Celery tasks, the CLI and
the FX refresher.  Job-level preconditions (empty source, oversized LLM
payload, lease contention) abort before anything is written; row-level
validation failures are collected and reported.
"""

from __future__ import annotations

import logging
import os
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Sequence, TypeVar

from sqlalchemy.orm import Session

from landedcost.errors import EmptySource
from landedcost.imports.locks import LeaseLock, get_lease_lock
from landedcost.imports.normalize import CanonicalRecord, entity_for_job, normalize_rows
from landedcost.imports.provenance import (
    find_succeeded_run,
    finish_import_run,
    heartbeat,
    record_provenance,
    start_import_run,
)
from landedcost.imports.upsert import INSERTED, UNCHANGED, UPDATED, RecordWriter, UpsertOutcome
from landedcost.observability import bind_run_id, increment, log_event, reset_run_id, set_gauge

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = int(os.getenv("LANDEDCOST_IMPORT_BATCH_SIZE", "5000"))
MAX_REPORTED_ISSUES = 50

T = TypeVar("T")


@dataclass
class ImportResult:
    inserted: int = 0
    updated: int = 0
    superseded: int = 0
    unchanged: int = 0
    skipped: int = 0
    import_run_id: Optional[str] = None
    dry_run: bool = False
    replayed: bool = False
    issues: List[Dict[str, Any]] = field(default_factory=list)

    def tally(self, outcome: UpsertOutcome) -> None:
        if outcome.action == INSERTED:
            self.inserted += 1
        elif outcome.action == UPDATED:
            self.updated += 1
        elif outcome.action == UNCHANGED:
            self.unchanged += 1
        self.superseded += outcome.superseded

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


def run_import(
    source: str,
    job: str,
    raw_rows: Iterable[Any],
    *,
    batch_size: Optional[int] = None,
    import_id: Optional[str] = None,
    dry_run: bool = False,
    entity: Optional[str] = None,
    source_url: Optional[str] = None,
    params: Optional[Dict[str, Any]] = None,
    lock_key: Optional[str] = None,
    min_confidence: Optional[float] = None,
    session_factory: Optional[Callable[[], Session]] = None,
    lock: Optional[LeaseLock] = None,
) -> ImportResult:
    """Import ``raw_rows`` for ``job`` from ``source``.

    Parameters
    ----------
    source:
        Origin of the rows, e.g. ``"ECB"``, ``"WITS"``, ``"OPENAI"``.
        LLM sources get the strict row variants and the 2000-row cap.
    job:
        Stable job identifier, e.g. ``"fx:daily"``.  Its prefix selects the
        target entity unless *entity* is given, and it names the lease
        (``import:{job}``) unless *lock_key* is given.
    raw_rows:
        Any iterable of dict-like rows.  It is consumed while the lease is
        held.
    batch_size:
        Records per committed batch (default ``LANDEDCOST_IMPORT_BATCH_SIZE``).
    import_id:
        ImportRun id.  Re-running a succeeded id is a no-op replay.
    dry_run:
        Plan the upsert and report counts without writing or leasing.

    Raises
    ------
    EmptySource
        No row survived validation.
    BatchTooLarge
        An LLM payload exceeded the row cap.
    ImportAlreadyRunning
        Another import holds the lease for this job.
    """
    session_factory = session_factory or _default_session_factory()
    target = entity_for_job(job, entity)
    size = batch_size or DEFAULT_BATCH_SIZE
    if size < 1:
        raise ValueError("batch_size must be positive")

    if dry_run:
        records, result = _normalize(source, job, target, raw_rows, min_confidence)
        result.dry_run = True
        return _plan(session_factory, records, result, dataset=f"{source}:{job}")

    lock = lock or get_lease_lock()
    key = lock_key or f"import:{job}"
    started = time.monotonic()

    with lock.hold(key):
        replay = _replayed_result(session_factory, import_id)
        if replay is not None:
            logger.info("Import %s already succeeded; nothing to do", import_id)
            return replay

        records, result = _normalize(source, job, target, raw_rows, min_confidence)
        run_params = {
            "entity": target,
            "batch_size": size,
            "source_url": source_url,
            **(params or {}),
        }
        _execute(
            session_factory,
            records,
            result,
            source=source,
            job=job,
            params=run_params,
            import_id=import_id,
            source_url=source_url,
            batch_size=size,
        )

    set_gauge("import_duration_seconds", time.monotonic() - started, label=job)
    set_gauge("import_last_run_timestamp", time.time(), label=job)
    return result


def _default_session_factory() -> Callable[[], Session]:
    from landedcost.db.session import SessionLocal

    return SessionLocal


def _normalize(source, job, target, raw_rows, min_confidence):
    rows = list(raw_rows)
    normalized = normalize_rows(target, source, rows, min_confidence=min_confidence)
    increment("import_rows_fetched_total", normalized.fetched, label=job)
    if normalized.issues:
        increment("import_rows_skipped_total", len(normalized.issues), label=job)
    if not normalized.records:
        increment("import_errors_total", label=job)
        raise EmptySource(job, skipped=len(normalized.issues))
    result = ImportResult(
        skipped=len(normalized.issues),
        issues=[issue.to_dict() for issue in normalized.issues[:MAX_REPORTED_ISSUES]],
    )
    return normalized.records, result


def _replayed_result(session_factory, import_id: Optional[str]) -> Optional[ImportResult]:
    if not import_id:
        return None
    session = session_factory()
    try:
        previous = find_succeeded_run(session, import_id)
        if previous is None:
            return None
        return ImportResult(
            inserted=previous.inserted_count,
            updated=previous.updated_count,
            import_run_id=previous.id,
            replayed=True,
        )
    finally:
        session.close()


def _plan(session_factory, records: List[CanonicalRecord], result: ImportResult, *, dataset: str) -> ImportResult:
    """Run the upsert planner and roll everything back."""
    session = session_factory()
    try:
        writer = RecordWriter(session, dataset=dataset)
        for record in records:
            result.tally(writer.apply(record))
    finally:
        session.rollback()
        session.close()
    log_event("import dry run", dataset=dataset, inserted=result.inserted, updated=result.updated,
              superseded=result.superseded, unchanged=result.unchanged)
    return result


def _execute(
    session_factory,
    records: List[CanonicalRecord],
    result: ImportResult,
    *,
    source: str,
    job: str,
    params: Dict[str, Any],
    import_id: Optional[str],
    source_url: Optional[str],
    batch_size: int,
) -> None:
    session = session_factory()
    run_id: Optional[str] = None
    token = None
    committed = (0, 0)
    try:
        run = start_import_run(session, source=source, job=job, params=params, run_id=import_id)
        run_id = run.id
        session.commit()
        result.import_run_id = run_id
        token = bind_run_id(run_id)
        log_event("import started", source=source, job=job, rows=len(records))

        writer = RecordWriter(session, dataset=f"{source}:{job}")
        for batch in _chunked(records, batch_size):
            for record in batch:
                provenance = record_provenance(session, run_id, record, default_source_url=source_url or source)
                result.tally(writer.apply(record, provenance.id))
            committed = (result.inserted, result.updated + result.superseded)
            heartbeat(run, inserted=committed[0], updated=committed[1])
            session.commit()
    except Exception as exc:
        session.rollback()
        increment("import_errors_total", label=job)
        if run_id is not None:
            logger.exception("Import %s failed", run_id)
            try:
                finish_import_run(
                    session_factory,
                    run_id,
                    status="failed",
                    inserted=committed[0],
                    updated=committed[1],
                    error=str(exc),
                )
            except Exception:
                logger.exception("Could not mark import %s as failed", run_id)
        raise
    finally:
        session.close()
        reset_run_id(token)

    finish_import_run(
        session_factory,
        run_id,
        status="succeeded",
        inserted=result.inserted,
        updated=result.updated + result.superseded,
    )
    increment("import_rows_inserted_total", result.inserted, label=job)
    log_event(
        "import finished",
        source=source,
        job=job,
        import_run_id=run_id,
        inserted=result.inserted,
        updated=result.updated,
        superseded=result.superseded,
        unchanged=result.unchanged,
        skipped=result.skipped,
    )
