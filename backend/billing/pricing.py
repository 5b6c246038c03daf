"""
Amount & Discount Calculator

The flat discount (a currency amount, not a percentage) comes off the first
month only. Quotes are pure functions of (plan_id, months) for a given
discount, so a re-quote always matches what the poller verifies against.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, List

from infrastructure.errors import ValidationError
from .plans import get_plan

CENT = Decimal("0.01")


def to_usdc(value) -> Decimal:
    """Normalize a price to cents."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class Quote:
    plan_id: str
    months: int
    monthly_price: Decimal
    base_amount: Decimal
    discount_amount: Decimal
    first_month_price: Decimal
    total_due: Decimal

    @property
    def savings(self) -> Decimal:
        return self.base_amount - self.total_due

    def to_dict(self) -> Dict:
        return {
            "plan_id": self.plan_id,
            "months": self.months,
            "monthly_price": str(self.monthly_price),
            "base_amount": str(self.base_amount),
            "discount_amount": str(self.discount_amount),
            "first_month_price": str(self.first_month_price),
            "total_due": str(self.total_due),
            "savings": str(self.savings),
        }


class PricingCalculator:
    def __init__(self, discount: Decimal = Decimal("0")):
        discount = to_usdc(discount)
        if discount < 0:
            raise ValidationError("Discount cannot be negative", {"discount": str(discount)})
        self.discount = discount

    def quote(self, plan_id: str, months: int) -> Quote:
        plan = get_plan(plan_id)
        if not isinstance(months, int) or isinstance(months, bool) or months < 1:
            raise ValidationError("months must be a positive integer", {"months": months})

        monthly = to_usdc(plan.monthly_price)
        first_month = max(monthly - self.discount, Decimal("0.00"))

        return Quote(
            plan_id=plan.id,
            months=months,
            monthly_price=monthly,
            base_amount=monthly * months,
            discount_amount=monthly - first_month,
            first_month_price=first_month,
            total_due=first_month + monthly * (months - 1),
        )

    def renewal_options(self, plan_id: str, month_options: Iterable[int] = (1, 3, 6, 12)) -> List[Quote]:
        return [self.quote(plan_id, months) for months in month_options]
