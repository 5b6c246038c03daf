"""
Payment Intent Generator

An intent is one renewal attempt: a quoted amount, a destination address on
one network, and a 24 hour window. The payment id embeds user, plan, months
and the creation time in milliseconds, so it is unique without a sequence.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Dict, NamedTuple

from infrastructure.config import BillingConfig
from infrastructure.errors import ValidationError
from .networks import Network, destination_address
from .pricing import PricingCalculator, Quote


class PaymentIdParts(NamedTuple):
    user_id: str
    plan_id: str
    months: int
    created_ms: int


def build_payment_id(user_id: str, plan_id: str, months: int, created_at: datetime) -> str:
    return f"{user_id}_{plan_id}_{months}_{int(created_at.timestamp() * 1000)}"


def parse_payment_id(payment_id: str) -> PaymentIdParts:
    """Split a payment id back into its parts. User ids may contain underscores."""
    try:
        user_id, plan_id, months, created_ms = payment_id.rsplit("_", 3)
        return PaymentIdParts(user_id, plan_id, int(months), int(created_ms))
    except ValueError:
        raise ValidationError("Malformed payment id", {"payment_id": payment_id})


@dataclass(frozen=True)
class PaymentIntent:
    payment_id: str
    user_id: str
    plan_id: str
    months: int
    network: Network
    destination_address: str
    expected_amount: Decimal
    created_at: datetime
    expires_at: datetime
    quote: Quote = field(compare=False)
    currency: str = "USDC"

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    def to_dict(self) -> Dict:
        return {
            "payment_id": self.payment_id,
            "user_id": self.user_id,
            "plan_id": self.plan_id,
            "months": self.months,
            "network": self.network.value,
            "address": self.destination_address,
            "amount": str(self.expected_amount),
            "currency": self.currency,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "discount": str(self.quote.discount_amount),
            "savings": str(self.quote.savings),
        }


class IntentGenerator:
    def __init__(self, config: BillingConfig, calculator: PricingCalculator, clock: Callable[[], datetime]):
        self.config = config
        self.calculator = calculator
        self.clock = clock
        self.ttl = timedelta(hours=config.pricing.intent_ttl_hours)

    def create(self, user_id: str, plan_id: str, months: int, network) -> PaymentIntent:
        """Build an intent; raises InvalidPlan or UnconfiguredNetwork. Does not persist."""
        network = Network.parse(network)
        quote = self.calculator.quote(plan_id, months)
        address = destination_address(self.config, network)

        created_at = self.clock()
        return PaymentIntent(
            payment_id=build_payment_id(user_id, plan_id, months, created_at),
            user_id=user_id,
            plan_id=plan_id,
            months=months,
            network=network,
            destination_address=address,
            expected_amount=quote.total_due,
            created_at=created_at,
            expires_at=created_at + self.ttl,
            quote=quote,
        )
