"""As-of FX conversion with reverse and hub fallbacks."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import hypothesis.strategies as st
import pytest
from hypothesis import given

from landedcost.errors import FxRateUnavailable
from landedcost.fx.converter import FxConverter
from landedcost.fx.refresh import build_fx_rows
from landedcost.money import round_money


class TestConversionPaths:
    def test_direct_pair(self, seed, session) -> None:
        seed.fx("EUR", "USD", "1.10")
        assert FxConverter(session).convert(100, "EUR", "USD") == Decimal("110")

    def test_same_currency_is_identity(self, session) -> None:
        fx = FxConverter(session)
        assert fx.convert("12.34", "eur", "EUR") == Decimal("12.34")
        assert not fx.missing

    def test_reverse_pair(self, seed, session) -> None:
        seed.fx("EUR", "USD", "1.10")
        converted = FxConverter(session).convert(100, "USD", "EUR")
        assert round_money(converted, "EUR") == Decimal("90.91")

    def test_triangulates_through_eur(self, seed, session) -> None:
        seed.fx("EUR", "USD", "1.10")
        seed.fx("EUR", "GBP", "0.85")

        fx = FxConverter(session)

        assert round_money(fx.convert(100, "GBP", "USD"), "USD") == Decimal("129.41")
        assert round_money(fx.cross_rate("USD", "GBP"), "EUR") == Decimal("0.77")

    def test_triangulates_through_usd(self, seed, session) -> None:
        seed.fx("USD", "SGD", "1.35")
        seed.fx("USD", "THB", "36")

        converted = FxConverter(session).convert(135, "SGD", "THB")

        assert round_money(converted, "THB") == Decimal("3600.00")


class TestAsOfSelection:
    @pytest.fixture()
    def fx(self, seed, session) -> FxConverter:
        seed.fx("EUR", "USD", "1.10", as_of=date(2024, 1, 2))
        seed.fx("EUR", "USD", "1.20", as_of=date(2024, 2, 1))
        return FxConverter(session)

    def test_latest_snapshot_on_or_before_date(self, fx) -> None:
        assert fx.rate("EUR", "USD", date(2024, 1, 31)) == Decimal("1.10")
        assert fx.rate("EUR", "USD", date(2024, 2, 1)) == Decimal("1.20")
        assert fx.rate("EUR", "USD") == Decimal("1.20")

    def test_nothing_before_first_snapshot(self, fx) -> None:
        assert fx.rate("EUR", "USD", date(2023, 12, 31)) is None

    def test_latest_as_of(self, fx) -> None:
        assert fx.latest_as_of(date(2024, 1, 20)) == date(2024, 1, 2)
        assert fx.latest_as_of() == date(2024, 2, 1)


class TestMissingRates:
    def test_strict_conversion_raises(self, session) -> None:
        with pytest.raises(FxRateUnavailable):
            FxConverter(session).convert(10, "EUR", "JPY", strict=True)

    def test_lenient_conversion_records_gap(self, session) -> None:
        fx = FxConverter(session)

        assert fx.convert(10, "EUR", "JPY") == Decimal("10")
        assert fx.missing == {("EUR", "JPY")}


@given(
    st.decimals(
        min_value=Decimal("0.01"),
        max_value=Decimal("100000"),
        places=4,
        allow_nan=False,
        allow_infinity=False,
    )
)
def test_published_pairs_are_reciprocal(eur_to_x: Decimal) -> None:
    eur_map = {
        "USD": (Decimal("1.0850"), "ecb", "ecb:2024-06-03"),
        "XTS": (eur_to_x, "ecb", "ecb:2024-06-03"),
    }
    rows = {(row["base"], row["quote"]): Decimal(row["rate"]) for row in build_fx_rows(date(2024, 6, 3), eur_map)}

    for base, quote in (("EUR", "XTS"), ("USD", "XTS"), ("EUR", "USD")):
        product = rows[(base, quote)] * rows[(quote, base)]
        assert abs(product - 1) < Decimal("1E-10")


class TestHighValueCurrencies:
    EUR_MAP = {
        "USD": (Decimal("1.0850"), "ecb", "ecb:2024-06-03"),
        "IDR": (Decimal("17523.45"), "ecb", "ecb:2024-06-03"),
        "KRW": (Decimal("1496.20"), "ecb", "ecb:2024-06-03"),
    }

    def test_inverse_rates_keep_significant_digits(self) -> None:
        rows = {(row["base"], row["quote"]): row for row in build_fx_rows(date(2024, 6, 3), self.EUR_MAP)}

        idr_to_eur = Decimal(rows[("IDR", "EUR")]["rate"])

        assert idr_to_eur == Decimal("0.0000570663881827")
        assert len(idr_to_eur.normalize().as_tuple().digits) == 12

    def test_stored_pairs_round_trip_without_drift(self, seed, session) -> None:
        for row in build_fx_rows(date(2024, 6, 3), self.EUR_MAP):
            seed.fx(row["base"], row["quote"], row["rate"], as_of=date(2024, 6, 3))
        fx = FxConverter(session)
        amount = Decimal("1000000000")

        for currency in ("IDR", "KRW"):
            for hub in ("EUR", "USD"):
                there = fx.convert(amount, currency, hub, strict=True)
                back = fx.convert(there, hub, currency, strict=True)
                assert abs(back - amount) < Decimal("1")
