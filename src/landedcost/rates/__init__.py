"""Rate resolution over the effective-dated store."""

from landedcost.rates.categories import normalize_hs6, resolve_hs6
from landedcost.rates.resolver import (
    DeMinimisLookup,
    DutyLookup,
    LookupMeta,
    LookupStatus,
    RateResolver,
    SurchargeItem,
    SurchargeLookup,
    VatLookup,
)

__all__ = [
    "RateResolver",
    "LookupStatus",
    "LookupMeta",
    "DutyLookup",
    "VatLookup",
    "DeMinimisLookup",
    "SurchargeItem",
    "SurchargeLookup",
    "resolve_hs6",
    "normalize_hs6",
]
