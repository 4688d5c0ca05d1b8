"""Quote-time rate resolution over the effective-dated store.

Each resolver returns a frozen lookup result tagged with a
:class:`LookupStatus`; absence is a value, never an exception:

- ``ok``: a record applies on the requested date
- ``no_match``: the destination has data, but nothing for this code/date
- ``no_dataset``: the destination has no data at all
- ``out_of_scope``: the component is not computed for this destination
- ``error``: the store could not be read
"""

from __future__ import annotations

import enum
import logging
import os
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from landedcost.db.models import DeMinimisThreshold, DutyRate, Surcharge, VatRule
from landedcost.money import today_utc

logger = logging.getLogger(__name__)


def _env_codes(name: str, default: str) -> frozenset:
    return frozenset(code.strip().upper() for code in os.getenv(name, default).split(",") if code.strip())


VAT_OUT_OF_SCOPE = _env_codes("LANDEDCOST_VAT_OUT_OF_SCOPE", "US")
DUTY_OUT_OF_SCOPE = _env_codes("LANDEDCOST_DUTY_OUT_OF_SCOPE", "")


class LookupStatus(str, enum.Enum):
    OK = "ok"
    NO_MATCH = "no_match"
    NO_DATASET = "no_dataset"
    OUT_OF_SCOPE = "out_of_scope"
    ERROR = "error"


# ---------------------------------------------------------------------------
# Result dataclasses
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class LookupMeta:
    """Which dataset version produced a component, and whether one did."""

    status: LookupStatus
    dataset: Optional[str] = None
    effective_from: Optional[date] = None
    note: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is LookupStatus.OK

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "dataset": self.dataset,
            "effective_from": self.effective_from.isoformat() if self.effective_from else None,
            "note": self.note,
        }


@dataclass(frozen=True)
class DutyLookup:
    meta: LookupMeta
    rate_pct: Optional[Decimal] = None
    specific_amount: Optional[Decimal] = None
    specific_unit: Optional[str] = None
    specific_currency: Optional[str] = None
    rule: Optional[str] = None
    partner: Optional[str] = None
    record_id: Optional[int] = None


@dataclass(frozen=True)
class VatLookup:
    meta: LookupMeta
    rate_pct: Optional[Decimal] = None
    base: Optional[str] = None


@dataclass(frozen=True)
class DeMinimisLookup:
    meta: LookupMeta
    currency: Optional[str] = None
    value: Optional[Decimal] = None
    applies_to: Optional[str] = None
    basis: Optional[str] = None


@dataclass(frozen=True)
class SurchargeItem:
    code: str
    fixed_amount: Optional[Decimal]
    fixed_currency: Optional[str]
    pct_amount: Optional[Decimal]
    effective_from: date
    dataset: Optional[str]


@dataclass(frozen=True)
class SurchargeLookup:
    meta: LookupMeta
    items: Tuple[SurchargeItem, ...] = ()
    fixed_total_by_currency: Dict[str, Decimal] = field(default_factory=dict)
    pct_total: Decimal = Decimal(0)


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------


def active_on(model, on: date):
    return (
        model.effective_from <= on,
        or_(model.effective_to.is_(None), model.effective_to > on),
    )


DutyAssessor = Callable[[DutyRate], Decimal]


def _duty_sort_key(row: DutyRate, assess: Optional[DutyAssessor] = None) -> Tuple:
    """Lowest assessed duty; on a tie prefer the preferential rule, then the
    latest window, then the latest record.

    Without an assessor the ad valorem rate is compared directly and a purely
    specific rate, whose amount depends on the shipment, ranks after every
    rate that has an ad valorem part.
    """
    rule_rank = {"FTA": 0, "MFN": 1, "OTHER": 2}.get(row.rule, 3)
    tie_break = (
        rule_rank,
        -row.effective_from.toordinal(),
        -(row.created_at.timestamp() if row.created_at else 0),
        -(row.id or 0),
    )
    if assess is not None:
        return (assess(row),) + tie_break
    return (
        row.rate_pct is None,
        row.rate_pct if row.rate_pct is not None else Decimal(0),
        row.specific_amount if row.specific_amount is not None else Decimal(0),
    ) + tie_break


class RateResolver:
    """Read-only resolver over one session."""

    def __init__(self, session: Session):
        self.session = session

    def _absence(self, model, dest: str, note: str) -> LookupMeta:
        has_dataset = self.session.query(model.id).filter(model.dest == dest).first() is not None
        status = LookupStatus.NO_MATCH if has_dataset else LookupStatus.NO_DATASET
        return LookupMeta(status=status, note=note)

    # ------------------------------------------------------------------
    # Duty
    # ------------------------------------------------------------------

    def resolve_duty(
        self,
        origin: str,
        dest: str,
        hs6: str,
        as_of: Optional[date] = None,
        *,
        assess: Optional[DutyAssessor] = None,
    ) -> DutyLookup:
        """Select the single applicable duty rate.

        Candidates are MFN rows plus FTA rows whose partner is ``origin``;
        OTHER rows are consulted only when neither exists.  The lowest rate
        wins regardless of rule.  ``assess`` prices a candidate for the
        shipment at hand so specific and ad valorem rates compare by amount.
        """
        on = as_of or today_utc()
        if dest in DUTY_OUT_OF_SCOPE:
            return DutyLookup(meta=LookupMeta(LookupStatus.OUT_OF_SCOPE, note=f"duty not computed for {dest}"))
        try:
            candidates: List[DutyRate] = (
                self.session.query(DutyRate)
                .filter(
                    DutyRate.dest == dest,
                    DutyRate.hs6 == hs6,
                    *active_on(DutyRate, on),
                    or_(
                        DutyRate.rule == "MFN",
                        DutyRate.partner == origin,
                        (DutyRate.rule == "OTHER") & (DutyRate.partner == ""),
                    ),
                )
                .all()
            )
            primary = [row for row in candidates if row.rule == "MFN" or (row.rule == "FTA" and row.partner == origin)]
            pool = primary or [row for row in candidates if row.rule == "OTHER"]
            if not pool:
                return DutyLookup(meta=self._absence(DutyRate, dest, f"no duty for {hs6} on {on.isoformat()}"))
        except SQLAlchemyError as exc:
            logger.exception("Duty lookup failed for %s/%s", dest, hs6)
            return DutyLookup(meta=LookupMeta(LookupStatus.ERROR, note=str(exc)))

        best = min(pool, key=lambda row: _duty_sort_key(row, assess))
        return DutyLookup(
            meta=LookupMeta(LookupStatus.OK, dataset=best.dataset, effective_from=best.effective_from),
            rate_pct=best.rate_pct,
            specific_amount=best.specific_amount,
            specific_unit=best.specific_unit,
            specific_currency=best.specific_currency,
            rule=best.rule,
            partner=best.partner or None,
            record_id=best.id,
        )

    # ------------------------------------------------------------------
    # VAT / de-minimis
    # ------------------------------------------------------------------

    def resolve_vat(self, dest: str, as_of: Optional[date] = None) -> VatLookup:
        on = as_of or today_utc()
        if dest in VAT_OUT_OF_SCOPE:
            return VatLookup(meta=LookupMeta(LookupStatus.OUT_OF_SCOPE, note=f"VAT not computed for {dest}"))
        try:
            row = self._current(VatRule, dest, on)
            if row is None:
                return VatLookup(meta=self._absence(VatRule, dest, f"no VAT rule on {on.isoformat()}"))
        except SQLAlchemyError as exc:
            logger.exception("VAT lookup failed for %s", dest)
            return VatLookup(meta=LookupMeta(LookupStatus.ERROR, note=str(exc)))
        return VatLookup(
            meta=LookupMeta(LookupStatus.OK, dataset=row.dataset, effective_from=row.effective_from),
            rate_pct=row.rate_pct,
            base=row.base,
        )

    def resolve_de_minimis(self, dest: str, as_of: Optional[date] = None) -> DeMinimisLookup:
        on = as_of or today_utc()
        try:
            row = self._current(DeMinimisThreshold, dest, on)
            if row is None:
                return DeMinimisLookup(
                    meta=self._absence(DeMinimisThreshold, dest, f"no de-minimis threshold on {on.isoformat()}")
                )
        except SQLAlchemyError as exc:
            logger.exception("De-minimis lookup failed for %s", dest)
            return DeMinimisLookup(meta=LookupMeta(LookupStatus.ERROR, note=str(exc)))
        return DeMinimisLookup(
            meta=LookupMeta(LookupStatus.OK, dataset=row.dataset, effective_from=row.effective_from),
            currency=row.currency,
            value=row.value,
            applies_to=row.applies_to,
            basis=row.basis,
        )

    def _current(self, model, dest: str, on: date):
        return (
            self.session.query(model)
            .filter(model.dest == dest, *active_on(model, on))
            .order_by(model.effective_from.desc(), model.id.desc())
            .first()
        )

    # ------------------------------------------------------------------
    # Surcharges
    # ------------------------------------------------------------------

    def resolve_surcharges(self, dest: str, as_of: Optional[date] = None) -> SurchargeLookup:
        """Every surcharge active for ``dest`` on ``as_of``, summed."""
        on = as_of or today_utc()
        try:
            rows: List[Surcharge] = (
                self.session.query(Surcharge)
                .filter(Surcharge.dest == dest, *active_on(Surcharge, on))
                .order_by(Surcharge.code, Surcharge.effective_from)
                .all()
            )
            if not rows:
                return SurchargeLookup(meta=self._absence(Surcharge, dest, f"no surcharges on {on.isoformat()}"))
        except SQLAlchemyError as exc:
            logger.exception("Surcharge lookup failed for %s", dest)
            return SurchargeLookup(meta=LookupMeta(LookupStatus.ERROR, note=str(exc)))

        fixed: Dict[str, Decimal] = {}
        pct_total = Decimal(0)
        items = []
        for row in rows:
            if row.fixed_amount is not None:
                currency = row.fixed_currency or ""
                fixed[currency] = fixed.get(currency, Decimal(0)) + row.fixed_amount
            if row.pct_amount is not None:
                pct_total += row.pct_amount
            items.append(
                SurchargeItem(
                    code=row.code,
                    fixed_amount=row.fixed_amount,
                    fixed_currency=row.fixed_currency,
                    pct_amount=row.pct_amount,
                    effective_from=row.effective_from,
                    dataset=row.dataset,
                )
            )
        latest = max(rows, key=lambda row: row.effective_from)
        return SurchargeLookup(
            meta=LookupMeta(LookupStatus.OK, dataset=latest.dataset, effective_from=latest.effective_from),
            items=tuple(items),
            fixed_total_by_currency=fixed,
            pct_total=pct_total,
        )
