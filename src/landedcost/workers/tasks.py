"""Celery tasks for imports, FX refresh and import maintenance.

Errors propagate so the worker records the task as failed; the import
pipeline has already marked the ImportRun failed by then.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from landedcost.fx.refresh import refresh_fx
from landedcost.imports.maintenance import prune_imports, sweep_stale_imports
from landedcost.imports.pipeline import run_import
from landedcost.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, name="landedcost.workers.tasks.import_rows")
def import_rows(
    self,
    source: str,
    job: str,
    rows: List[Dict[str, Any]],
    options: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Run one import from a JSON-serializable row payload.

    Args:
        self: Celery task instance
        source: Source name, e.g. ``WITS`` or ``OPENAI``
        job: Job identifier; selects the entity and the lease
        rows: Raw rows as plain dicts
        options: ``run_import`` keyword options (import_id, entity,
            dry_run, batch_size, source_url, min_confidence)

    Returns:
        ImportResult as a dict
    """
    options = dict(options or {})
    options.setdefault("params", {})["celery_task_id"] = self.request.id
    result = run_import(source, job, rows, **options)
    logger.info(
        "Import task %s for %s: %d inserted, %d updated, %d skipped",
        self.request.id,
        job,
        result.inserted,
        result.updated,
        result.skipped,
    )
    return result.to_dict()


@celery_app.task(name="landedcost.workers.tasks.refresh_fx_task")
def refresh_fx_task() -> Dict[str, Any]:
    return refresh_fx().to_dict()


@celery_app.task(name="landedcost.workers.tasks.sweep_stale_imports_task")
def sweep_stale_imports_task(threshold_minutes: Optional[int] = None, limit: Optional[int] = None) -> Dict[str, Any]:
    return sweep_stale_imports(threshold_minutes=threshold_minutes, limit=limit).to_dict()


@celery_app.task(name="landedcost.workers.tasks.prune_imports_task")
def prune_imports_task(days: Optional[int] = None) -> Dict[str, Any]:
    return prune_imports(days=days).to_dict()
