"""Tiered freight pricing.

A freight card is an ordered list of ``(upto_qty, price_per_unit)`` steps.
The first step whose ceiling covers the chargeable quantity sets the unit
price for the whole quantity; past the last ceiling the last step's price
applies.  Because unit prices usually fall with volume, the charge is
floored at the full-tier charge of every lower step so that shipping more
never costs less.

The break-point floor is a business rule still to be confirmed.  The plain
tier formula is ``price_per_unit * quantity``, which dips at each tier
boundary; dropping the second loop in :func:`cost` restores it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import case
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from landedcost.db.models import FreightCard
from landedcost.money import Number, to_decimal, today_utc
from landedcost.rates.resolver import LookupMeta, LookupStatus, active_on

logger = logging.getLogger(__name__)

WILDCARD = "*"
AIR_VOLUMETRIC_DIVISOR = Decimal(5000)
CM3_PER_M3 = Decimal(1_000_000)
MODE_UNITS = {"air": "kg", "sea": "m3"}

Step = Tuple[Decimal, Decimal]


def _sorted_steps(steps: Iterable[Tuple[Number, Number]]) -> List[Step]:
    ordered = sorted((to_decimal(upto), to_decimal(price)) for upto, price in steps)
    if not ordered:
        raise ValueError("freight card has no steps")
    return ordered


def cost(steps: Iterable[Tuple[Number, Number]], quantity: Number) -> Decimal:
    """Charge for ``quantity`` under a step schedule, before min/rounding."""
    qty = to_decimal(quantity)
    if qty < 0:
        raise ValueError(f"freight quantity must be non-negative: {qty}")
    ordered = _sorted_steps(steps)

    unit_price = ordered[-1][1]
    for upto, price in ordered:
        if upto >= qty:
            unit_price = price
            break
    charge = unit_price * qty

    for upto, price in ordered:
        if upto >= qty:
            break
        charge = max(charge, upto * price)
    return charge


def apply_card_adjustments(
    charge: Decimal,
    *,
    min_charge: Optional[Number] = None,
    price_rounding: Optional[Number] = None,
) -> Decimal:
    """Floor at ``min_charge`` then round half-up to a multiple of ``price_rounding``."""
    if min_charge is not None:
        charge = max(charge, to_decimal(min_charge))
    if price_rounding is not None:
        step = to_decimal(price_rounding)
        if step > 0:
            charge = (charge / step).quantize(Decimal(1), rounding=ROUND_HALF_UP) * step
    return charge


def chargeable_quantity(mode: str, dims_cm: Sequence[Number], weight_kg: Number) -> Tuple[Decimal, str]:
    """Chargeable quantity and its unit for ``mode``.

    Air bills the greater of actual and volumetric weight (L*W*H / 5000).
    Sea bills cubic metres.
    """
    length, width, height = (to_decimal(d) for d in dims_cm)
    volume_cm3 = length * width * height
    if mode == "air":
        return max(to_decimal(weight_kg), volume_cm3 / AIR_VOLUMETRIC_DIVISOR), "kg"
    if mode == "sea":
        return volume_cm3 / CM3_PER_M3, "m3"
    raise ValueError(f"unknown freight mode: {mode!r}")


@dataclass(frozen=True)
class FreightLookup:
    meta: LookupMeta
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    card_id: Optional[int] = None
    origin: Optional[str] = None
    dest: Optional[str] = None


class FreightCalculator:
    """Resolves the freight card for a lane and prices a quantity on it."""

    def __init__(self, session: Session):
        self.session = session

    def find_card(self, origin: str, dest: str, mode: str, unit: str, on: date) -> Optional[FreightCard]:
        """Exact lane first, then wildcard origin/dest; newest window wins."""
        return (
            self.session.query(FreightCard)
            .options(selectinload(FreightCard.steps))
            .filter(
                FreightCard.origin.in_((origin, WILDCARD)),
                FreightCard.dest.in_((dest, WILDCARD)),
                FreightCard.mode == mode,
                FreightCard.unit == unit,
                *active_on(FreightCard, on),
            )
            .order_by(
                case((FreightCard.origin == WILDCARD, 1), else_=0),
                case((FreightCard.dest == WILDCARD, 1), else_=0),
                FreightCard.effective_from.desc(),
                FreightCard.id.desc(),
            )
            .first()
        )

    def quote(
        self,
        origin: str,
        dest: str,
        mode: str,
        quantity: Number,
        unit: Optional[str] = None,
        as_of: Optional[date] = None,
    ) -> FreightLookup:
        on = as_of or today_utc()
        unit = unit or MODE_UNITS.get(mode)
        try:
            card = self.find_card(origin, dest, mode, unit, on)
            if card is None:
                covered = (
                    self.session.query(FreightCard.id)
                    .filter(FreightCard.dest.in_((dest, WILDCARD)), FreightCard.mode == mode)
                    .first()
                    is not None
                )
                status = LookupStatus.NO_MATCH if covered else LookupStatus.NO_DATASET
                return FreightLookup(
                    meta=LookupMeta(status, note=f"no {mode} freight card {origin}->{dest} on {on.isoformat()}")
                )
            steps = [(step.upto_qty, step.price_per_unit) for step in card.steps]
        except SQLAlchemyError as exc:
            logger.exception("Freight lookup failed for %s->%s", origin, dest)
            return FreightLookup(meta=LookupMeta(LookupStatus.ERROR, note=str(exc)))

        if not steps:
            return FreightLookup(
                meta=LookupMeta(LookupStatus.ERROR, dataset=card.dataset, note=f"freight card {card.id} has no steps")
            )
        amount = apply_card_adjustments(
            cost(steps, quantity),
            min_charge=card.min_charge,
            price_rounding=card.price_rounding,
        )
        return FreightLookup(
            meta=LookupMeta(LookupStatus.OK, dataset=card.dataset, effective_from=card.effective_from),
            amount=amount,
            currency=card.currency,
            card_id=card.id,
            origin=card.origin,
            dest=card.dest,
        )

    def cost(
        self,
        mode: str,
        quantity: Number,
        *,
        origin: str = WILDCARD,
        dest: str = WILDCARD,
        as_of: Optional[date] = None,
    ) -> Optional[Decimal]:
        """Price ``quantity`` on the best card for the lane; ``None`` without one."""
        return self.quote(origin, dest, mode, quantity, as_of=as_of).amount
