"""Landed-cost quote computation."""

from landedcost.quotes.confidence import QuoteConfidence, derive_confidence
from landedcost.quotes.models import Dims, FreightMode, Money, QuoteInput
from landedcost.quotes.orchestrator import DeMinimisDecision, QuoteResult, compute_quote

__all__ = [
    "compute_quote",
    "QuoteInput",
    "QuoteResult",
    "Money",
    "Dims",
    "FreightMode",
    "DeMinimisDecision",
    "QuoteConfidence",
    "derive_confidence",
]
