"""Landed-cost quote computation.

Every component is computed at full precision in the destination currency,
converted once into the result currency and rounded only for presentation.
A missing dataset never aborts a quote: the component contributes zero and
its status is reported through ``sources`` and ``confidence``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from landedcost.countries import currency_for_country, require_country
from landedcost.freight import FreightCalculator, chargeable_quantity
from landedcost.fx.converter import FxConverter
from landedcost.money import round_money, today_utc
from landedcost.quotes.confidence import derive_confidence
from landedcost.quotes.models import Money, QuoteInput
from landedcost.rates.categories import resolve_hs6
from landedcost.rates.resolver import DeMinimisLookup, LookupMeta, LookupStatus, RateResolver

logger = logging.getLogger(__name__)

GUARANTEE_MARGIN = Decimal("1.02")
DEFAULT_INCOTERM = "DAP"
STANDARD_POLICY = "Standard import tax rules apply."

_ZERO = Decimal(0)
_HUNDRED = Decimal(100)


@dataclass(frozen=True)
class DeMinimisDecision:
    threshold: Optional[Decimal] = None
    currency: Optional[str] = None
    applies_to: Optional[str] = None
    basis: Optional[str] = None
    waive_duty: bool = False
    waive_vat: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "threshold": None if self.threshold is None else str(self.threshold),
            "currency": self.currency,
            "applies_to": self.applies_to,
            "basis": self.basis,
            "waive_duty": self.waive_duty,
            "waive_vat": self.waive_vat,
        }


@dataclass(frozen=True)
class QuoteResult:
    hs6: str
    currency: str
    chargeable_kg: Decimal
    chargeable_quantity: Decimal
    chargeable_unit: str
    freight: Decimal
    components: Dict[str, Decimal]
    total: Decimal
    guaranteed_max: Decimal
    policy: str
    confidence: str
    missing_components: List[str]
    component_confidence: Dict[str, str]
    sources: Dict[str, LookupMeta]
    fx_as_of: Optional[date]
    de_minimis: DeMinimisDecision
    incoterm: str = DEFAULT_INCOTERM

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hs6": self.hs6,
            "currency": self.currency,
            "chargeable_kg": str(self.chargeable_kg),
            "chargeable_quantity": str(self.chargeable_quantity),
            "chargeable_unit": self.chargeable_unit,
            "freight": str(self.freight),
            "components": {name: str(value) for name, value in self.components.items()},
            "total": str(self.total),
            "guaranteed_max": str(self.guaranteed_max),
            "policy": self.policy,
            "incoterm": self.incoterm,
            "confidence": self.confidence,
            "component_confidence": dict(self.component_confidence),
            "missing_components": list(self.missing_components),
            "sources": {name: meta.to_dict() for name, meta in self.sources.items()},
            "fx_as_of": self.fx_as_of.isoformat() if self.fx_as_of else None,
            "de_minimis": self.de_minimis.to_dict(),
        }


def policy_text(decision: DeMinimisDecision) -> str:
    if decision.waive_duty and decision.waive_vat:
        return "De minimis: duty & VAT not charged at import."
    if decision.waive_duty:
        return "De minimis: duty not charged at import."
    if decision.waive_vat:
        return "De minimis: VAT not charged at import."
    return STANDARD_POLICY


def compute_quote(
    quote_input: QuoteInput,
    *,
    session: Optional[Session] = None,
    as_of: Optional[date] = None,
    result_currency: Optional[str] = None,
    freight_override: Optional[Money] = None,
) -> QuoteResult:
    """Price ``quote_input`` as of ``as_of`` (default: today UTC).

    ``freight_override`` replaces the card lookup with a caller-supplied
    amount, e.g. a manifest-level allocation; freight is then reported as
    estimated.

    Raises:
        UnknownEntity: unknown origin/destination, category or malformed HS6
    """
    if session is None:
        from landedcost.db.session import get_standalone_session

        with get_standalone_session() as own_session:
            return _compute(quote_input, own_session, as_of, result_currency, freight_override)
    return _compute(quote_input, session, as_of, result_currency, freight_override)


def _compute(
    quote_input: QuoteInput,
    session: Session,
    as_of: Optional[date],
    result_currency: Optional[str],
    freight_override: Optional[Money],
) -> QuoteResult:
    on = as_of or today_utc()
    origin = require_country(quote_input.origin)
    dest = require_country(quote_input.dest)
    dest_ccy = currency_for_country(dest)
    target_ccy = (result_currency or dest_ccy).upper()

    fx = FxConverter(session)
    resolver = RateResolver(session)
    hs6 = resolve_hs6(session, quote_input.category_key, quote_input.user_hs6)

    # Freight
    mode = quote_input.mode.value
    quantity, unit = chargeable_quantity(mode, quote_input.dims_cm.as_tuple(), quote_input.weight_kg)
    chargeable_kg = quantity if unit == "kg" else quote_input.weight_kg
    freight_lookup = FreightCalculator(session).quote(origin, dest, mode, quantity, unit, on)
    if freight_override is not None:
        freight = fx.convert(freight_override.amount, freight_override.currency, dest_ccy, on=on)
    elif freight_lookup.amount is not None:
        freight = fx.convert(freight_lookup.amount, freight_lookup.currency, dest_ccy, on=on)
    else:
        freight = _ZERO

    goods = fx.convert(quote_input.item_value.amount, quote_input.item_value.currency, dest_ccy, on=on)
    cif = goods + freight

    # Duty: candidates are ranked by what they would charge on this shipment
    def duty_amount(rate: Any) -> Decimal:
        amount = _ZERO
        if rate.rate_pct is not None:
            amount += rate.rate_pct / _HUNDRED * cif
        if rate.specific_amount is not None:
            units = quote_input.weight_kg if rate.specific_unit == "kg" else Decimal(1)
            amount += fx.convert(
                rate.specific_amount * units,
                rate.specific_currency or dest_ccy,
                dest_ccy,
                on=on,
            )
        return amount

    duty_lookup = resolver.resolve_duty(origin, dest, hs6, on, assess=duty_amount)
    duty = duty_amount(duty_lookup) if duty_lookup.meta.ok else _ZERO

    # De minimis
    de_minimis_lookup = resolver.resolve_de_minimis(dest, on)
    decision = _evaluate_de_minimis(de_minimis_lookup, fx, dest_ccy, goods, cif, on)
    if decision.waive_duty:
        duty = _ZERO

    # VAT
    vat_lookup = resolver.resolve_vat(dest, on)
    vat = _ZERO
    if vat_lookup.meta.ok and not decision.waive_vat:
        base = cif + duty if vat_lookup.base == "CIF_PLUS_DUTY" else cif
        vat = vat_lookup.rate_pct / _HUNDRED * base

    # Surcharges
    surcharge_lookup = resolver.resolve_surcharges(dest, on)
    fees = surcharge_lookup.pct_total * cif
    for currency, amount in surcharge_lookup.fixed_total_by_currency.items():
        fees += fx.convert(amount, currency or dest_ccy, dest_ccy, on=on)

    # Result currency and presentation
    def present(amount: Decimal) -> Decimal:
        return fx.convert(amount, dest_ccy, target_ccy, on=on)

    cif_out, duty_out, vat_out, fees_out = present(cif), present(duty), present(vat), present(fees)
    freight_out = present(freight)
    total = round_money(cif_out + duty_out + vat_out + fees_out, target_ccy)

    fx_missing = bool(fx.missing)
    fx_as_of = fx.latest_as_of(on)
    fx_meta = (
        LookupMeta(
            LookupStatus.NO_DATASET,
            effective_from=fx_as_of,
            note="missing rates: " + ", ".join(f"{a}->{b}" for a, b in sorted(fx.missing)),
        )
        if fx_missing
        else LookupMeta(LookupStatus.OK, effective_from=fx_as_of)
    )
    confidence = derive_confidence(
        {
            "duty": duty_lookup.meta.status,
            "vat": vat_lookup.meta.status,
            "surcharges": surcharge_lookup.meta.status,
            "freight": freight_lookup.meta.status,
        },
        fx_missing=fx_missing,
        freight_overridden=freight_override is not None,
    )

    result = QuoteResult(
        hs6=hs6,
        currency=target_ccy,
        chargeable_kg=chargeable_kg,
        chargeable_quantity=quantity,
        chargeable_unit=unit,
        freight=round_money(freight_out, target_ccy),
        components={
            "cif": round_money(cif_out, target_ccy),
            "duty": round_money(duty_out, target_ccy),
            "vat": round_money(vat_out, target_ccy),
            "fees": round_money(fees_out, target_ccy),
        },
        total=total,
        guaranteed_max=round_money(total * GUARANTEE_MARGIN, target_ccy),
        policy=policy_text(decision),
        confidence=confidence.overall,
        missing_components=confidence.missing_components,
        component_confidence=confidence.components,
        sources={
            "duty": duty_lookup.meta,
            "vat": vat_lookup.meta,
            "de_minimis": de_minimis_lookup.meta,
            "surcharges": surcharge_lookup.meta,
            "freight": freight_lookup.meta,
            "fx": fx_meta,
        },
        fx_as_of=fx_as_of,
        de_minimis=decision,
    )
    logger.info(
        "Quote %s->%s hs6=%s total=%s %s confidence=%s",
        origin,
        dest,
        hs6,
        result.total,
        target_ccy,
        result.confidence,
    )
    return result


def _evaluate_de_minimis(
    lookup: DeMinimisLookup,
    fx: FxConverter,
    dest_ccy: str,
    goods: Decimal,
    cif: Decimal,
    on: date,
) -> DeMinimisDecision:
    """Waive duty (and VAT) when the shipment value is at or below the threshold."""
    if not lookup.meta.ok or lookup.value is None:
        return DeMinimisDecision()
    threshold = fx.convert(lookup.value, lookup.currency or dest_ccy, dest_ccy, on=on)
    compared = cif if lookup.basis == "CIF" else goods
    under = compared <= threshold
    return DeMinimisDecision(
        threshold=threshold,
        currency=dest_ccy,
        applies_to=lookup.applies_to,
        basis=lookup.basis,
        waive_duty=under and lookup.applies_to in ("DUTY", "DUTY_VAT"),
        waive_vat=under and lookup.applies_to == "DUTY_VAT",
    )
