"""Exception taxonomy shared by the import pipeline and the quote engine.

Quote-time lookup failures are *not* exceptions; they travel as
:class:`landedcost.rates.resolver.LookupStatus` values.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class LandedCostError(Exception):
    """Base class for all landedcost errors."""


class EmptySource(LandedCostError):
    """Raised when an import normalizes to zero valid rows."""

    def __init__(self, job: str, skipped: int = 0):
        self.job = job
        self.skipped = skipped
        super().__init__(f"Import {job!r} produced no valid rows ({skipped} rejected)")


class RowValidationError(LandedCostError):
    """A single rejected input row. Collected, never raised out of an import."""

    def __init__(self, index: int, message: str):
        self.index = index
        self.message = message
        super().__init__(f"row {index}: {message}")

    def to_dict(self) -> Dict[str, Any]:
        return {"index": self.index, "message": self.message}


class BatchTooLarge(LandedCostError):
    """An LLM-extracted payload exceeded the per-call row cap."""

    def __init__(self, count: int, limit: int):
        self.count = count
        self.limit = limit
        super().__init__(f"Batch of {count} rows exceeds the limit of {limit}")


class ImportAlreadyRunning(LandedCostError):
    """Another import currently holds the lease for this job key."""

    def __init__(self, lock_key: str):
        self.lock_key = lock_key
        super().__init__(f"Import already running for {lock_key!r}")


class UnknownEntity(LandedCostError):
    """A request referenced a country, category or code we cannot resolve."""

    def __init__(self, kind: str, value: Optional[str]):
        self.kind = kind
        self.value = value
        super().__init__(f"Unknown {kind}: {value!r}")


class UpstreamFetchError(LandedCostError):
    """An external data source could not be fetched or parsed."""

    def __init__(self, source: str, message: str):
        self.source = source
        super().__init__(f"{source}: {message}")


class FxRateUnavailable(LandedCostError):
    """No direct, reverse or triangulated rate exists for a currency pair."""

    def __init__(self, base: str, quote: str):
        self.base = base
        self.quote = quote
        super().__init__(f"No FX rate available for {base}->{quote}")
