"""Step-schedule pricing, chargeable quantity and card resolution."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import hypothesis.strategies as st
import pytest
from hypothesis import given

from landedcost.freight import FreightCalculator, apply_card_adjustments, chargeable_quantity, cost
from landedcost.rates.resolver import LookupStatus

STEPS = [(10, 5), (50, 4), (100, 3)]


class TestCost:
    @pytest.mark.parametrize(
        "quantity, expected",
        [
            (0, Decimal("0")),
            (5, Decimal("25")),
            (10, Decimal("50")),
            (100, Decimal("300")),
        ],
    )
    def test_step_price_applies_to_whole_quantity(self, quantity, expected) -> None:
        assert cost(STEPS, quantity) == expected

    def test_break_point_floor(self) -> None:
        # 11 kg at 4/kg is 44, but 10 kg at 5/kg already costs 50.
        assert cost(STEPS, 11) == Decimal("50")
        assert cost(STEPS, 60) == Decimal("200")

    def test_quantity_past_last_ceiling_uses_last_price(self) -> None:
        assert cost(STEPS, 150) == Decimal("450")

    def test_steps_are_sorted_first(self) -> None:
        assert cost(list(reversed(STEPS)), 5) == Decimal("25")

    def test_empty_schedule_rejected(self) -> None:
        with pytest.raises(ValueError):
            cost([], 1)

    def test_negative_quantity_rejected(self) -> None:
        with pytest.raises(ValueError):
            cost(STEPS, -1)


_prices = st.decimals(min_value=Decimal("0.5"), max_value=Decimal("1000"), places=2, allow_nan=False, allow_infinity=False)
_quantities = st.decimals(min_value=Decimal("0"), max_value=Decimal("2000"), places=3, allow_nan=False, allow_infinity=False)


@given(st.lists(st.tuples(_prices, _prices), min_size=1, max_size=6), _quantities, _quantities)
def test_more_quantity_never_costs_less(steps, first, second) -> None:
    low, high = sorted((first, second))
    assert cost(steps, low) <= cost(steps, high)


class TestCardAdjustments:
    def test_minimum_charge(self) -> None:
        assert apply_card_adjustments(Decimal("12.30"), min_charge=20) == Decimal("20")
        assert apply_card_adjustments(Decimal("32.30"), min_charge=20) == Decimal("32.30")

    @pytest.mark.parametrize(
        "charge, expected",
        [
            ("12.24", Decimal("12.0")),
            ("12.25", Decimal("12.5")),
            ("12.26", Decimal("12.5")),
        ],
    )
    def test_rounds_half_up_to_increment(self, charge, expected) -> None:
        assert apply_card_adjustments(Decimal(charge), price_rounding="0.5") == expected

    def test_minimum_applies_before_rounding(self) -> None:
        assert apply_card_adjustments(Decimal("3"), min_charge="9.8", price_rounding=1) == Decimal("10")


class TestChargeableQuantity:
    def test_air_uses_volumetric_weight_when_larger(self) -> None:
        assert chargeable_quantity("air", (50, 40, 30), 5) == (Decimal("12"), "kg")

    def test_air_uses_actual_weight_when_larger(self) -> None:
        assert chargeable_quantity("air", (50, 40, 30), 20) == (Decimal("20"), "kg")

    def test_sea_bills_cubic_metres(self) -> None:
        assert chargeable_quantity("sea", (100, 100, 60), 500) == (Decimal("0.6"), "m3")

    def test_unknown_mode(self) -> None:
        with pytest.raises(ValueError):
            chargeable_quantity("rail", (1, 1, 1), 1)


class TestFreightCalculator:
    ON = date(2025, 6, 1)

    def test_exact_lane_beats_wildcard(self, seed, session) -> None:
        seed.freight([(100, 9)])
        exact = seed.freight([(100, 4)], origin="CN", dest="DE", currency="EUR")

        lookup = FreightCalculator(session).quote("CN", "DE", "air", 10, as_of=self.ON)

        assert lookup.meta.status is LookupStatus.OK
        assert lookup.card_id == exact.id
        assert lookup.amount == Decimal("40")
        assert lookup.currency == "EUR"

    def test_wildcard_lane_used_when_no_exact_card(self, seed, session) -> None:
        seed.freight([(100, 9)])
        seed.freight([(100, 4)], origin="CN", dest="DE")

        lookup = FreightCalculator(session).quote("CN", "FR", "air", 10, as_of=self.ON)

        assert (lookup.origin, lookup.dest) == ("*", "*")
        assert lookup.amount == Decimal("90")

    def test_card_adjustments_are_applied(self, seed, session) -> None:
        seed.freight([(100, 2)], origin="CN", dest="DE", min_charge=35, price_rounding=5)

        lookup = FreightCalculator(session).quote("CN", "DE", "air", "1.5", as_of=self.ON)

        assert lookup.amount == Decimal("35")

    def test_no_match_when_lane_not_covered(self, seed, session) -> None:
        seed.freight([(100, 4)], origin="CN", dest="DE")

        lookup = FreightCalculator(session).quote("VN", "DE", "air", 10, as_of=self.ON)

        assert lookup.meta.status is LookupStatus.NO_MATCH
        assert lookup.amount is None

    def test_no_dataset_without_cards_for_mode(self, seed, session) -> None:
        seed.freight([(100, 4)], origin="CN", dest="DE")

        lookup = FreightCalculator(session).quote("CN", "DE", "sea", 1, as_of=self.ON)

        assert lookup.meta.status is LookupStatus.NO_DATASET

    def test_card_without_steps_is_an_error(self, seed, session) -> None:
        seed.freight([], origin="CN", dest="DE")

        lookup = FreightCalculator(session).quote("CN", "DE", "air", 1, as_of=self.ON)

        assert lookup.meta.status is LookupStatus.ERROR

    def test_card_outside_window_ignored(self, seed, session) -> None:
        seed.freight([(100, 4)], origin="CN", dest="DE", effective_from=date(2026, 1, 1))

        lookup = FreightCalculator(session).quote("CN", "DE", "air", 1, as_of=self.ON)

        assert lookup.meta.status is LookupStatus.NO_MATCH

    def test_cost_shortcut(self, seed, session) -> None:
        seed.freight([(100, 9)])
        calculator = FreightCalculator(session)

        assert calculator.cost("air", 2, as_of=self.ON) == Decimal("18")
        assert calculator.cost("sea", 2, as_of=self.ON) is None
