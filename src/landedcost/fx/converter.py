"""As-of-date FX lookup and conversion with reverse and hub fallbacks.

Rates come from the ``fx_rates`` snapshot log: for a requested date the
most recent row with ``as_of <= date`` wins.  Conversion tries, in order,
the direct pair, the reverse pair (``1 / rate``) and triangulation through
EUR then USD.  All arithmetic is Decimal.
"""

from __future__ import annotations

import logging
import os
from datetime import date
from decimal import Decimal
from typing import Dict, Optional, Set, Tuple

from sqlalchemy.orm import Session

from landedcost.db.models import FxRate
from landedcost.errors import FxRateUnavailable
from landedcost.money import Number, to_decimal

logger = logging.getLogger(__name__)

HUB_CURRENCIES = ("EUR", "USD")

FX_REDIS_CACHE = os.getenv("LANDEDCOST_FX_REDIS_CACHE", "").lower() in {"1", "true", "yes"}
FX_CACHE_TTL = int(os.getenv("LANDEDCOST_FX_CACHE_TTL", "3600"))

_MISS = object()


class FxConverter:
    """FX lookups bound to one session; memoizes per instance.

    ``missing`` collects the pairs a non-strict :meth:`convert` could not
    price, so a caller can report FX as incomplete.
    """

    def __init__(self, session: Session, *, redis_cache: Optional[bool] = None):
        self.session = session
        self.missing: Set[Tuple[str, str]] = set()
        self._memo: Dict[Tuple[str, str, Optional[date]], object] = {}
        self._redis = None
        if FX_REDIS_CACHE if redis_cache is None else redis_cache:
            from landedcost.caching.redis_client import get_redis_client

            self._redis = get_redis_client()

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def rate(self, base: str, quote: str, as_of: Optional[date] = None) -> Optional[Decimal]:
        """Most recent stored rate for ``base -> quote`` on or before ``as_of``."""
        base, quote = base.upper(), quote.upper()
        if base == quote:
            return Decimal(1)
        memo_key = (base, quote, as_of)
        cached = self._memo.get(memo_key, _MISS)
        if cached is not _MISS:
            return cached  # type: ignore[return-value]

        value = self._cached_rate(base, quote, as_of)
        self._memo[memo_key] = value
        return value

    def _cached_rate(self, base: str, quote: str, as_of: Optional[date]) -> Optional[Decimal]:
        cache_day = as_of.isoformat() if as_of else "latest"
        if self._redis is not None:
            hit = self._redis.get_fx_rate(base, quote, cache_day)
            if hit is not None:
                return hit
        value = self._query_rate(base, quote, as_of)
        if value is not None and self._redis is not None:
            self._redis.set_fx_rate(base, quote, cache_day, value, ttl=FX_CACHE_TTL)
        return value

    def _query_rate(self, base: str, quote: str, as_of: Optional[date]) -> Optional[Decimal]:
        query = self.session.query(FxRate.rate).filter(FxRate.base == base, FxRate.quote == quote)
        if as_of is not None:
            query = query.filter(FxRate.as_of <= as_of)
        row = query.order_by(FxRate.as_of.desc()).first()
        return to_decimal(row[0]) if row is not None else None

    def latest_as_of(self, on: Optional[date] = None) -> Optional[date]:
        """Date of the newest FX snapshot on or before ``on``."""
        query = self.session.query(FxRate.as_of)
        if on is not None:
            query = query.filter(FxRate.as_of <= on)
        row = query.order_by(FxRate.as_of.desc()).first()
        return row[0] if row is not None else None

    # ------------------------------------------------------------------
    # Conversion
    # ------------------------------------------------------------------

    def cross_rate(self, base: str, quote: str, as_of: Optional[date] = None) -> Optional[Decimal]:
        """Direct, reverse or hub-triangulated rate; ``None`` if no path exists."""
        base, quote = base.upper(), quote.upper()
        if base == quote:
            return Decimal(1)
        value = self._leg(base, quote, as_of)
        if value is not None:
            return value
        for hub in HUB_CURRENCIES:
            if hub in (base, quote):
                continue
            first = self._leg(base, hub, as_of)
            if first is None:
                continue
            second = self._leg(hub, quote, as_of)
            if second is not None:
                return first * second
        return None

    def _leg(self, base: str, quote: str, as_of: Optional[date]) -> Optional[Decimal]:
        direct = self.rate(base, quote, as_of)
        if direct is not None:
            return direct
        reverse = self.rate(quote, base, as_of)
        if reverse is not None and reverse != 0:
            return Decimal(1) / reverse
        return None

    def convert(
        self,
        amount: Number,
        from_currency: str,
        to_currency: str,
        *,
        on: Optional[date] = None,
        strict: bool = False,
    ) -> Decimal:
        """Convert ``amount`` at the rate in force on ``on``.

        Without ``strict``, an unpriceable pair returns the amount unchanged
        and is recorded in :attr:`missing`.
        """
        value = to_decimal(amount)
        source, target = from_currency.upper(), to_currency.upper()
        if source == target:
            return value
        rate = self.cross_rate(source, target, on)
        if rate is None:
            if strict:
                raise FxRateUnavailable(source, target)
            logger.warning("No FX rate %s->%s as of %s; amount left unconverted", source, target, on)
            self.missing.add((source, target))
            return value
        return value * rate
