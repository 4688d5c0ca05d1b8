"""Database layer for the landed-cost rate store.

Provides SQLAlchemy models and session management.
"""

from landedcost.db.models import (
    Base,
    Category,
    DeMinimisThreshold,
    DutyRate,
    FreightCard,
    FreightStep,
    FxRate,
    ImportLock,
    ImportRun,
    ProvenanceRecord,
    Surcharge,
    VatRule,
)
from landedcost.db.session import (
    SessionLocal,
    configure_engine,
    drop_all,
    get_engine,
    get_standalone_session,
    init_db,
)

__all__ = [
    # Models
    "Base",
    "DutyRate",
    "VatRule",
    "DeMinimisThreshold",
    "Surcharge",
    "FreightCard",
    "FreightStep",
    "FxRate",
    "Category",
    "ImportRun",
    "ProvenanceRecord",
    "ImportLock",
    # Session management
    "SessionLocal",
    "configure_engine",
    "get_engine",
    "get_standalone_session",
    "init_db",
    "drop_all",
]
