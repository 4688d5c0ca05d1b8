"""Import pipeline for the effective-dated rate store.

Normalizes loosely-typed source rows, upserts them under a per-job lease and
records provenance; maintenance helpers sweep stale runs and prune history.
"""

from landedcost.imports.locks import DatabaseLeaseLock, LeaseLock, RedisLeaseLock, get_lease_lock
from landedcost.imports.maintenance import PruneResult, SweepResult, prune_imports, sweep_stale_imports
from landedcost.imports.pipeline import ImportResult, run_import
from landedcost.imports.provenance import build_import_id

__all__ = [
    "run_import",
    "ImportResult",
    "build_import_id",
    "sweep_stale_imports",
    "prune_imports",
    "SweepResult",
    "PruneResult",
    "LeaseLock",
    "RedisLeaseLock",
    "DatabaseLeaseLock",
    "get_lease_lock",
]
