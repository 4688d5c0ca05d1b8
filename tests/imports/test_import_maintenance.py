"""Stale-run sweeping and bookkeeping retention."""

from __future__ import annotations

from datetime import date, datetime, timedelta

import pytest

from landedcost.db.models import ImportRun, ProvenanceRecord, VatRule
from landedcost.imports.maintenance import prune_imports, sweep_stale_imports
from landedcost.observability import counter_value

NOW = datetime(2026, 10, 18, 12, 0, 0)


def _run(session, run_id: str, *, status: str = "running", started: datetime, heartbeat=None) -> ImportRun:
    run = ImportRun(
        id=run_id,
        source="CSV",
        job="vat:eu",
        params={},
        status=status,
        started_at=started,
        heartbeat_at=heartbeat,
        finished_at=None if status == "running" else started + timedelta(minutes=1),
    )
    session.add(run)
    session.commit()
    return run


def _provenance(session, run_id: str, created: datetime) -> ProvenanceRecord:
    record = ProvenanceRecord(
        import_run_id=run_id,
        entity="vat",
        natural_key=f"DE|{created.isoformat()}",
        raw_row_hash="0" * 64,
        created_at=created,
    )
    session.add(record)
    session.commit()
    return record


class TestSweepStaleImports:
    def test_only_runs_past_threshold_are_failed(self, session, session_factory) -> None:
        _run(session, "stale", started=NOW - timedelta(hours=2), heartbeat=NOW - timedelta(minutes=40))
        _run(session, "alive", started=NOW - timedelta(hours=2), heartbeat=NOW - timedelta(minutes=10))
        _run(session, "never-beat", started=NOW - timedelta(minutes=45))
        _run(session, "done", status="succeeded", started=NOW - timedelta(days=1))

        result = sweep_stale_imports(threshold_minutes=30, now=NOW, session_factory=session_factory)

        assert result.swept == 2
        assert result.cutoff == NOW - timedelta(minutes=30)
        check = session_factory()
        try:
            runs = {run.id: run for run in check.query(ImportRun).all()}
        finally:
            check.close()
        assert runs["stale"].status == "failed"
        assert runs["stale"].error == "stale heartbeat > 30m"
        assert runs["stale"].finished_at == NOW
        assert runs["never-beat"].status == "failed"
        assert runs["alive"].status == "running"
        assert runs["done"].status == "succeeded"
        assert counter_value("imports_swept_total") == 2

    def test_limit_sweeps_oldest_first(self, session, session_factory) -> None:
        _run(session, "older", started=NOW - timedelta(hours=3), heartbeat=NOW - timedelta(hours=2))
        _run(session, "newer", started=NOW - timedelta(hours=3), heartbeat=NOW - timedelta(hours=1))

        result = sweep_stale_imports(threshold_minutes=30, limit=1, now=NOW, session_factory=session_factory)

        assert result.swept == 1
        check = session_factory()
        try:
            assert check.get(ImportRun, "older").status == "failed"
            assert check.get(ImportRun, "newer").status == "running"
        finally:
            check.close()

    def test_nothing_stale_is_a_no_op(self, session_factory) -> None:
        result = sweep_stale_imports(threshold_minutes=30, now=NOW, session_factory=session_factory)
        assert result.swept == 0
        assert counter_value("imports_swept_total") == 0

    @pytest.mark.parametrize("kwargs", [{"threshold_minutes": -1}, {"limit": 0}])
    def test_invalid_arguments_rejected(self, session_factory, kwargs) -> None:
        with pytest.raises(ValueError):
            sweep_stale_imports(now=NOW, session_factory=session_factory, **kwargs)


class TestPruneImports:
    def test_old_finished_runs_and_provenance_are_deleted(self, session, session_factory) -> None:
        old = NOW - timedelta(days=120)
        _run(session, "old-done", status="succeeded", started=old)
        _run(session, "old-running", started=old)
        _run(session, "recent", status="succeeded", started=NOW - timedelta(days=5))
        old_record = _provenance(session, "old-done", old)
        _provenance(session, "recent", NOW - timedelta(days=5))
        session.add(
            VatRule(
                dest="DE",
                rate_pct=19,
                base="CIF_PLUS_DUTY",
                effective_from=date(2024, 1, 1),
                dataset="CSV:vat:eu",
                provenance_id=old_record.id,
            )
        )
        session.commit()

        result = prune_imports(days=90, now=NOW, session_factory=session_factory)

        assert result.imports_deleted == 1
        assert result.provenance_deleted == 1
        check = session_factory()
        try:
            assert {run.id for run in check.query(ImportRun).all()} == {"old-running", "recent"}
            assert check.query(ProvenanceRecord).count() == 1
            rule = check.query(VatRule).one()
            assert rule.provenance_id is None
            assert rule.dataset == "CSV:vat:eu"
        finally:
            check.close()

    def test_negative_days_rejected(self, session_factory) -> None:
        with pytest.raises(ValueError):
            prune_imports(days=-1, session_factory=session_factory)
