"""End-to-end landed-cost quotes over a seeded store."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest
from pydantic import ValidationError

from landedcost.errors import UnknownEntity
from landedcost.quotes import compute_quote
from landedcost.quotes.models import Money, QuoteInput
from landedcost.rates.resolver import LookupStatus

ON = date(2025, 6, 1)


def _input(**overrides) -> QuoteInput:
    payload = {
        "origin": "CN",
        "dest": "DE",
        "item_value": {"amount": "100", "currency": "EUR"},
        "dims_cm": {"l": 10, "w": 10, "h": 10},
        "weight_kg": "1",
        "category_key": "laptops",
    }
    payload.update(overrides)
    return QuoteInput.model_validate(payload)


@pytest.fixture()
def laptops(seed):
    seed.category("laptops", "847130")
    return seed


class TestBasicQuote:
    def test_duty_and_vat_on_cif_plus_duty(self, laptops, session) -> None:
        laptops.duty("DE", "847130", 5)
        laptops.vat("DE", 10, base="CIF_PLUS_DUTY")

        result = compute_quote(_input(), session=session, as_of=ON)

        assert result.hs6 == "847130"
        assert result.currency == "EUR"
        assert result.components == {
            "cif": Decimal("100.00"),
            "duty": Decimal("5.00"),
            "vat": Decimal("10.50"),
            "fees": Decimal("0.00"),
        }
        assert result.total == Decimal("115.50")
        assert result.guaranteed_max == Decimal("117.81")
        assert result.policy == "Standard import tax rules apply."
        assert result.incoterm == "DAP"

    def test_missing_datasets_lower_confidence(self, laptops, session) -> None:
        laptops.duty("DE", "847130", 5)
        laptops.vat("DE", 10, base="CIF_PLUS_DUTY")

        result = compute_quote(_input(), session=session, as_of=ON)

        assert result.freight == Decimal("0.00")
        assert result.sources["freight"].status is LookupStatus.NO_DATASET
        assert result.sources["surcharges"].status is LookupStatus.NO_DATASET
        assert result.missing_components == ["surcharges", "freight"]
        assert result.confidence == "missing"
        assert result.component_confidence["duty"] == "authoritative"

    def test_full_quote_with_freight_fx_and_fees(self, laptops, session) -> None:
        laptops.duty("DE", "847130", 5)
        laptops.duty("DE", "847130", 0, rule="FTA", partner="KR")
        laptops.vat("DE", 19, base="CIF_PLUS_DUTY")
        laptops.surcharge("DE", "HANDLING", fixed_amount="5", fixed_currency="EUR")
        laptops.surcharge("DE", "CUSTOMS_PROCESSING", pct_amount="0.01")
        laptops.freight([(100, 5)], currency="USD")
        laptops.fx("EUR", "USD", "1.25")

        quote_input = _input(
            item_value={"amount": "200", "currency": "USD"},
            dims_cm={"l": 50, "w": 40, "h": 30},
            weight_kg="5",
        )
        result = compute_quote(quote_input, session=session, as_of=ON)

        assert result.chargeable_kg == Decimal("12")
        assert result.chargeable_unit == "kg"
        assert result.freight == Decimal("48.00")
        assert result.components == {
            "cif": Decimal("208.00"),
            "duty": Decimal("10.40"),
            "vat": Decimal("41.50"),
            "fees": Decimal("7.08"),
        }
        # Rounded from the unrounded sum (208 + 10.4 + 41.496 + 7.08).
        assert result.total == Decimal("266.98")
        assert result.guaranteed_max == Decimal("272.32")
        assert result.confidence == "authoritative"
        assert result.missing_components == []
        assert result.fx_as_of == date(2024, 1, 2)
        assert result.sources["duty"].dataset == "seed"

        in_usd = compute_quote(quote_input, session=session, as_of=ON, result_currency="usd")
        assert in_usd.currency == "USD"
        assert in_usd.total == Decimal("333.72")

    def test_specific_duty_per_kg(self, laptops, session) -> None:
        laptops.duty("DE", "847130", None, specific_amount="2", specific_unit="kg", specific_currency="EUR")
        laptops.vat("DE", 10, base="CIF")

        result = compute_quote(_input(weight_kg="3"), session=session, as_of=ON)

        assert result.components["duty"] == Decimal("6.00")
        assert result.components["vat"] == Decimal("10.00")

    def test_expensive_specific_mfn_loses_to_ad_valorem_preference(self, laptops, session) -> None:
        laptops.duty("DE", "847130", None, specific_amount="50", specific_unit="kg", specific_currency="EUR")
        laptops.duty("DE", "847130", 3, rule="FTA", partner="CN")

        result = compute_quote(_input(), session=session, as_of=ON)

        assert result.components["duty"] == Decimal("3.00")

    def test_cheap_specific_mfn_beats_ad_valorem_preference(self, laptops, session) -> None:
        laptops.duty("DE", "847130", None, specific_amount="0.10", specific_unit="kg", specific_currency="EUR")
        laptops.duty("DE", "847130", 3, rule="FTA", partner="CN")

        result = compute_quote(_input(weight_kg="3"), session=session, as_of=ON)

        assert result.components["duty"] == Decimal("0.30")

    def test_user_hs6_overrides_category(self, laptops, session) -> None:
        laptops.duty("DE", "847130", 5)
        laptops.duty("DE", "610910", 12)

        result = compute_quote(_input(user_hs6="6109.10"), session=session, as_of=ON)

        assert result.hs6 == "610910"
        assert result.components["duty"] == Decimal("12.00")

    def test_uses_own_session_when_none_given(self, laptops) -> None:
        laptops.duty("DE", "847130", 5)

        result = compute_quote(_input(), as_of=ON)

        assert result.components["duty"] == Decimal("5.00")


class TestDeMinimis:
    def test_duty_waived_under_threshold(self, laptops, session) -> None:
        laptops.duty("GB", "847130", 12)
        laptops.vat("GB", 20)
        laptops.de_minimis("GB", 135, "GBP", applies_to="DUTY")

        result = compute_quote(
            _input(dest="GB", item_value={"amount": "100", "currency": "GBP"}),
            session=session,
            as_of=ON,
        )

        assert result.components["duty"] == Decimal("0.00")
        assert result.components["vat"] == Decimal("20.00")
        assert result.policy == "De minimis: duty not charged at import."
        assert result.de_minimis.waive_duty and not result.de_minimis.waive_vat

    def test_threshold_is_inclusive(self, laptops, session) -> None:
        laptops.duty("GB", "847130", 12)
        laptops.de_minimis("GB", 135, "GBP", applies_to="DUTY")

        result = compute_quote(
            _input(dest="GB", item_value={"amount": "135", "currency": "GBP"}),
            session=session,
            as_of=ON,
        )

        assert result.de_minimis.waive_duty

    def test_over_threshold_charges_duty(self, laptops, session) -> None:
        laptops.duty("GB", "847130", 12)
        laptops.de_minimis("GB", 135, "GBP", applies_to="DUTY")

        result = compute_quote(
            _input(dest="GB", item_value={"amount": "150", "currency": "GBP"}),
            session=session,
            as_of=ON,
        )

        assert result.components["duty"] == Decimal("18.00")
        assert result.policy == "Standard import tax rules apply."

    def test_duty_and_vat_waived(self, laptops, session) -> None:
        laptops.duty("DE", "847130", 5)
        laptops.vat("DE", 19)
        laptops.de_minimis("DE", 150, "EUR", applies_to="DUTY_VAT")

        result = compute_quote(_input(), session=session, as_of=ON)

        assert result.total == Decimal("100.00")
        assert result.policy == "De minimis: duty & VAT not charged at import."

    def test_cif_basis_includes_freight(self, laptops, session) -> None:
        laptops.duty("DE", "847130", 5)
        laptops.de_minimis("DE", 120, "EUR", applies_to="DUTY_VAT", basis="CIF")

        overridden = compute_quote(
            _input(),
            session=session,
            as_of=ON,
            freight_override=Money(amount="30", currency="EUR"),
        )

        assert not overridden.de_minimis.waive_duty
        assert overridden.components["duty"] == Decimal("6.50")
        assert overridden.component_confidence["freight"] == "estimated"


class TestScopeAndErrors:
    def test_us_vat_is_out_of_scope(self, laptops, session) -> None:
        laptops.duty("US", "847130", 0)

        result = compute_quote(
            _input(dest="US", item_value={"amount": "100", "currency": "USD"}),
            session=session,
            as_of=ON,
        )

        assert result.sources["vat"].status is LookupStatus.OUT_OF_SCOPE
        assert result.component_confidence["vat"] == "estimated"
        assert result.components["vat"] == Decimal("0.00")

    def test_missing_fx_is_reported(self, laptops, session) -> None:
        laptops.duty("DE", "847130", 5)

        result = compute_quote(
            _input(item_value={"amount": "10000", "currency": "JPY"}),
            session=session,
            as_of=ON,
        )

        assert result.sources["fx"].status is LookupStatus.NO_DATASET
        assert "JPY->EUR" in result.sources["fx"].note
        assert "fx" in result.missing_components

    def test_unknown_country(self, laptops, session) -> None:
        with pytest.raises(UnknownEntity) as excinfo:
            compute_quote(_input(origin="ZZ"), session=session, as_of=ON)
        assert excinfo.value.kind == "country"

    def test_unknown_category(self, session) -> None:
        with pytest.raises(UnknownEntity) as excinfo:
            compute_quote(_input(), session=session, as_of=ON)
        assert excinfo.value.kind == "category"

    def test_result_serializes(self, laptops, session) -> None:
        laptops.duty("DE", "847130", 5)

        payload = compute_quote(_input(), session=session, as_of=ON).to_dict()

        assert payload["total"] == "105.00"
        assert payload["sources"]["duty"]["status"] == "ok"
        assert payload["de_minimis"]["waive_duty"] is False


class TestQuoteInput:
    def test_codes_are_uppercased(self) -> None:
        quote_input = _input(origin="cn", item_value={"amount": "5", "currency": "eur"})
        assert quote_input.origin == "CN"
        assert quote_input.item_value.currency == "EUR"

    @pytest.mark.parametrize(
        "overrides",
        [
            {"item_value": {"amount": "0", "currency": "EUR"}},
            {"dims_cm": {"l": 0, "w": 1, "h": 1}},
            {"weight_kg": "-1"},
            {"incoterm": "DDP"},
        ],
    )
    def test_invalid_input_rejected(self, overrides) -> None:
        with pytest.raises(ValidationError):
            _input(**overrides)
