"""Fixed-point money helpers and effective-window date arithmetic.

All monetary values are :class:`decimal.Decimal`.  Nothing in the engine
rounds until a figure is presented to a caller; ``round_money`` is that
final step.
"""

from __future__ import annotations

import hashlib
import json
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional, Union

Number = Union[Decimal, int, float, str]

_SIX_PLACES = Decimal("0.000001")

# FX rates keep significant figures, not fixed places: an IDR->EUR rate
# sits around 5e-5 and would otherwise lose most of its digits.
FX_SIGNIFICANT_DIGITS = 12

# ISO-4217 currencies that are not presented with two decimals.
_ZERO_DECIMAL = frozenset({"JPY", "KRW", "VND", "CLP", "ISK", "HUF"})
_THREE_DECIMAL = frozenset({"BHD", "KWD", "OMR", "JOD", "TND"})


def to_decimal(value: Number) -> Decimal:
    """Convert ``value`` to an exact Decimal (floats go through ``str``)."""
    if value is None:
        raise TypeError("cannot convert None to Decimal")
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    try:
        return Decimal(value)
    except InvalidOperation as exc:
        raise ValueError(f"not a decimal number: {value!r}") from exc


def ad_valorem_percent_to_fraction_string(pct: Number) -> str:
    """Convert a percentage into a 6-place fraction string.

    >>> ad_valorem_percent_to_fraction_string(25)
    '0.250000'
    >>> ad_valorem_percent_to_fraction_string(0.3464)
    '0.003464'
    """
    value = to_decimal(pct)
    if value < 0:
        raise ValueError(f"percentage must be non-negative: {pct!r}")
    return str((value / 100).quantize(_SIX_PLACES, rounding=ROUND_HALF_UP))


def to_numeric_string(value: Number, places: int) -> str:
    """Render ``value`` as a fixed-point string with ``places`` decimals."""
    quantum = Decimal(1).scaleb(-places)
    return str(to_decimal(value).quantize(quantum, rounding=ROUND_HALF_UP))


def to_significant_string(value: Number, digits: int = FX_SIGNIFICANT_DIGITS) -> str:
    """Render ``value`` rounded to ``digits`` significant figures.

    >>> to_significant_string(Decimal(1) / Decimal("17523.45"))
    '0.0000570663881827'
    >>> to_significant_string(Decimal("1.085"))
    '1.08500000000'
    """
    number = to_decimal(value)
    if number.is_zero():
        return "0"
    quantum = Decimal(1).scaleb(number.adjusted() - digits + 1)
    return format(number.quantize(quantum, rounding=ROUND_HALF_UP), "f")


def minor_units(currency: str) -> int:
    code = (currency or "").upper()
    if code in _ZERO_DECIMAL:
        return 0
    if code in _THREE_DECIMAL:
        return 3
    return 2


def round_money(amount: Number, currency: str) -> Decimal:
    """Round to the currency's minor unit, half-up."""
    quantum = Decimal(1).scaleb(-minor_units(currency))
    return to_decimal(amount).quantize(quantum, rounding=ROUND_HALF_UP)


# ---------------------------------------------------------------------------
# Effective windows: [effective_from, effective_to), None = open-ended
# ---------------------------------------------------------------------------


def window_contains(effective_from: date, effective_to: Optional[date], on: date) -> bool:
    if on < effective_from:
        return False
    return effective_to is None or on < effective_to


def windows_overlap(
    a_from: date,
    a_to: Optional[date],
    b_from: date,
    b_to: Optional[date],
) -> bool:
    a_ends_after_b_starts = a_to is None or a_to > b_from
    b_ends_after_a_starts = b_to is None or b_to > a_from
    return a_ends_after_b_starts and b_ends_after_a_starts


def parse_iso_date(value: Union[str, date, datetime]) -> date:
    """Accept a ``date``, ``datetime`` or ``YYYY-MM-DD`` string."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value).strip()[:10])


def utcnow() -> datetime:
    """Naive UTC timestamp used for every persisted datetime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def today_utc() -> date:
    return utcnow().date()


def sha256_hex(payload: Any) -> str:
    """Stable SHA-256 of the canonical JSON form of ``payload``."""
    canonical = json.dumps(payload, sort_keys=True, default=str, separators=(",", ":"))
    return hashlib.sha256(canonical.encode()).hexdigest()
