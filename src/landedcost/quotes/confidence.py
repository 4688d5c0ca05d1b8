"""Quote confidence derived from per-component lookup statuses."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional

from landedcost.rates.resolver import LookupStatus

AUTHORITATIVE = "authoritative"
ESTIMATED = "estimated"
MISSING = "missing"

COMPONENT_ORDER = ("duty", "vat", "surcharges", "freight", "fx")

_RANK = {AUTHORITATIVE: 0, ESTIMATED: 1, MISSING: 2}
_STATUS_CONFIDENCE = {
    LookupStatus.OK: AUTHORITATIVE,
    LookupStatus.NO_MATCH: AUTHORITATIVE,
    LookupStatus.OUT_OF_SCOPE: ESTIMATED,
    LookupStatus.NO_DATASET: MISSING,
    LookupStatus.ERROR: MISSING,
}


def confidence_from_status(status) -> str:
    """Map a lookup status (enum or its string value) to a confidence level."""
    try:
        return _STATUS_CONFIDENCE[LookupStatus(status)]
    except ValueError:
        return MISSING


def overall_confidence(levels: Mapping[str, str]) -> str:
    """Worst level across components; ``authoritative`` when empty."""
    return max(levels.values(), key=lambda level: _RANK.get(level, _RANK[MISSING]), default=AUTHORITATIVE)


@dataclass(frozen=True)
class QuoteConfidence:
    components: Dict[str, str]
    overall: str
    missing_components: List[str]


def derive_confidence(
    statuses: Mapping[str, object],
    *,
    fx_missing: bool = False,
    freight_overridden: bool = False,
) -> QuoteConfidence:
    """Per-component confidence, the overall worst-of and the missing list.

    An overridden freight amount is ``estimated`` whatever the card lookup
    returned.
    """
    levels: Dict[str, str] = {}
    for component in COMPONENT_ORDER:
        if component == "fx":
            levels["fx"] = MISSING if fx_missing else AUTHORITATIVE
            continue
        if component == "freight" and freight_overridden:
            levels["freight"] = ESTIMATED
            continue
        status: Optional[object] = statuses.get(component)
        levels[component] = confidence_from_status(status) if status is not None else MISSING
    missing = [component for component in COMPONENT_ORDER if levels[component] == MISSING]
    return QuoteConfidence(components=levels, overall=overall_confidence(levels), missing_components=missing)
