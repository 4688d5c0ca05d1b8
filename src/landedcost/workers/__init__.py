"""Celery workers for imports, FX refresh and maintenance."""

from landedcost.workers.celery_app import celery_app
from landedcost.workers.tasks import import_rows, prune_imports_task, refresh_fx_task, sweep_stale_imports_task

__all__ = ["celery_app", "import_rows", "refresh_fx_task", "sweep_stale_imports_task", "prune_imports_task"]
