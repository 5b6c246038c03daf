"""
Plan catalog and Amount & Discount Calculator tests
"""

from decimal import Decimal

import pytest

from billing.plans import PLANS, get_plan, list_plans
from billing.pricing import PricingCalculator, to_usdc
from infrastructure.errors import InvalidPlan, ValidationError


class TestPlanCatalog:

    def test_catalog_prices(self):
        assert get_plan("pro").monthly_price == Decimal("29.99")
        assert get_plan("premium").monthly_price == Decimal("99.99")

    def test_free_is_not_purchasable(self):
        with pytest.raises(InvalidPlan):
            get_plan("free")

    def test_list_plans_matches_catalog(self):
        assert [p.id for p in list_plans()] == list(PLANS)


class TestQuote:

    def test_first_month_discount_three_months(self):
        quote = PricingCalculator(Decimal("9.99")).quote("pro", 3)

        assert quote.first_month_price == Decimal("20.00")
        assert quote.total_due == Decimal("79.98")
        assert quote.base_amount == Decimal("89.97")
        assert quote.discount_amount == Decimal("9.99")
        assert quote.savings == Decimal("9.99")

    def test_discount_larger_than_price_clamps_to_zero(self):
        calculator = PricingCalculator(Decimal("35.00"))

        for months in (1, 2, 6):
            quote = calculator.quote("pro", months)
            assert quote.first_month_price == Decimal("0.00")
            assert quote.total_due == Decimal("29.99") * (months - 1)
            assert quote.discount_amount == Decimal("29.99")

    def test_no_discount_is_plain_multiplication(self):
        quote = PricingCalculator().quote("premium", 12)
        assert quote.total_due == Decimal("1199.88")
        assert quote.savings == Decimal("0.00")

    def test_quote_is_deterministic(self):
        calculator = PricingCalculator(Decimal("4.50"))
        assert calculator.quote("premium", 6) == calculator.quote("premium", 6)

    def test_totals_never_negative(self):
        for discount in ("0", "0.01", "29.98", "29.99", "100"):
            calculator = PricingCalculator(Decimal(discount))
            for plan_id in PLANS:
                for months in range(1, 13):
                    quote = calculator.quote(plan_id, months)
                    assert quote.first_month_price >= 0
                    assert quote.total_due >= 0

    @pytest.mark.parametrize("months", [0, -1, 1.5, True])
    def test_invalid_month_counts(self, months):
        with pytest.raises(ValidationError):
            PricingCalculator().quote("pro", months)

    def test_unknown_plan(self):
        with pytest.raises(InvalidPlan):
            PricingCalculator().quote("enterprise", 1)

    def test_negative_discount_rejected(self):
        with pytest.raises(ValidationError):
            PricingCalculator(Decimal("-1"))

    def test_discount_normalized_to_cents(self):
        assert PricingCalculator(Decimal("9.995")).discount == Decimal("10.00")
        assert to_usdc(29.99) == Decimal("29.99")


class TestRenewalOptions:

    def test_standard_month_options(self):
        options = PricingCalculator(Decimal("9.99")).renewal_options("pro")

        assert [q.months for q in options] == [1, 3, 6, 12]
        assert options[0].total_due == Decimal("20.00")
        assert options[3].total_due == Decimal("20.00") + Decimal("29.99") * 11

    def test_to_dict_uses_strings(self):
        data = PricingCalculator(Decimal("9.99")).quote("pro", 3).to_dict()
        assert data["total_due"] == "79.98"
        assert data["first_month_price"] == "20.00"
        assert data["savings"] == "9.99"
