"""Shared fixtures: a per-test SQLite store and seeding helpers."""

from __future__ import annotations

import os

# Must be set before landedcost.db.session builds its module-level engine.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("LANDEDCOST_LOCK_BACKEND", "database")
# Eager Celery tasks must not reach the PostgreSQL result backend.
os.environ.setdefault("CELERY_RESULT_BACKEND", "cache+memory://")

from datetime import date  # noqa: E402
from decimal import Decimal  # noqa: E402
from typing import Iterator, Optional, Sequence, Tuple  # noqa: E402

import pytest  # noqa: E402

from landedcost.db import session as db_session  # noqa: E402
from landedcost.db.models import (  # noqa: E402
    Category,
    DeMinimisThreshold,
    DutyRate,
    FreightCard,
    FreightStep,
    FxRate,
    Surcharge,
    VatRule,
)
from landedcost.imports.locks import DatabaseLeaseLock  # noqa: E402
from landedcost.observability import reset_counters  # noqa: E402

D = Decimal


@pytest.fixture(autouse=True)
def store(tmp_path, monkeypatch):
    """Point the engine at a fresh SQLite file and create the schema."""
    monkeypatch.setenv("LANDEDCOST_LOCK_BACKEND", "database")
    db_session.configure_engine(f"sqlite:///{tmp_path / 'landedcost.db'}")
    db_session.init_db()
    reset_counters()
    yield db_session.SessionLocal
    db_session.drop_all()


@pytest.fixture()
def session_factory(store):
    return store


@pytest.fixture()
def session(store) -> Iterator:
    db = store()
    try:
        yield db
    finally:
        db.rollback()
        db.close()


@pytest.fixture()
def lock(store) -> DatabaseLeaseLock:
    return DatabaseLeaseLock(store)


class Seeder:
    """Writes rate rows directly, bypassing the import pipeline."""

    def __init__(self, session):
        self.session = session

    def _add(self, row):
        self.session.add(row)
        self.session.commit()
        return row

    def duty(
        self,
        dest: str,
        hs6: str,
        rate_pct,
        *,
        rule: str = "MFN",
        partner: str = "",
        effective_from: date = date(2024, 1, 1),
        effective_to: Optional[date] = None,
        specific_amount=None,
        specific_unit: Optional[str] = None,
        specific_currency: Optional[str] = None,
        dataset: str = "seed",
    ) -> DutyRate:
        return self._add(
            DutyRate(
                dest=dest,
                partner=partner,
                hs6=hs6,
                rule=rule,
                rate_pct=None if rate_pct is None else D(str(rate_pct)),
                specific_amount=None if specific_amount is None else D(str(specific_amount)),
                specific_unit=specific_unit,
                specific_currency=specific_currency,
                effective_from=effective_from,
                effective_to=effective_to,
                dataset=dataset,
            )
        )

    def vat(
        self,
        dest: str,
        rate_pct,
        *,
        base: str = "CIF",
        effective_from: date = date(2024, 1, 1),
        effective_to: Optional[date] = None,
    ) -> VatRule:
        return self._add(
            VatRule(
                dest=dest,
                rate_pct=D(str(rate_pct)),
                base=base,
                effective_from=effective_from,
                effective_to=effective_to,
                dataset="seed",
            )
        )

    def de_minimis(
        self,
        dest: str,
        value,
        currency: str,
        *,
        applies_to: str = "DUTY_VAT",
        basis: str = "INTRINSIC",
        effective_from: date = date(2024, 1, 1),
    ) -> DeMinimisThreshold:
        return self._add(
            DeMinimisThreshold(
                dest=dest,
                value=D(str(value)),
                currency=currency,
                applies_to=applies_to,
                basis=basis,
                effective_from=effective_from,
                dataset="seed",
            )
        )

    def surcharge(
        self,
        dest: str,
        code: str,
        *,
        fixed_amount=None,
        fixed_currency: Optional[str] = None,
        pct_amount=None,
        effective_from: date = date(2024, 1, 1),
        effective_to: Optional[date] = None,
    ) -> Surcharge:
        return self._add(
            Surcharge(
                dest=dest,
                code=code,
                fixed_amount=None if fixed_amount is None else D(str(fixed_amount)),
                fixed_currency=fixed_currency,
                pct_amount=None if pct_amount is None else D(str(pct_amount)),
                effective_from=effective_from,
                effective_to=effective_to,
                dataset="seed",
            )
        )

    def freight(
        self,
        steps: Sequence[Tuple[object, object]],
        *,
        origin: str = "*",
        dest: str = "*",
        mode: str = "air",
        unit: str = "kg",
        currency: str = "USD",
        min_charge=None,
        price_rounding=None,
        effective_from: date = date(2024, 1, 1),
    ) -> FreightCard:
        card = FreightCard(
            origin=origin,
            dest=dest,
            mode=mode,
            unit=unit,
            currency=currency,
            min_charge=None if min_charge is None else D(str(min_charge)),
            price_rounding=None if price_rounding is None else D(str(price_rounding)),
            effective_from=effective_from,
            dataset="seed",
            steps=[FreightStep(upto_qty=D(str(upto)), price_per_unit=D(str(price))) for upto, price in steps],
        )
        return self._add(card)

    def fx(self, base: str, quote: str, rate, *, as_of: date = date(2024, 1, 2)) -> FxRate:
        return self._add(FxRate(base=base, quote=quote, rate=D(str(rate)), as_of=as_of, provider="seed"))

    def category(self, key: str, default_hs6: str, title: Optional[str] = None) -> Category:
        return self._add(Category(key=key, default_hs6=default_hs6, title=title))


@pytest.fixture()
def seed(session) -> Seeder:
    return Seeder(session)
