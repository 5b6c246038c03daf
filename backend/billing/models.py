"""
Subscription record: one row per user, owned by the state machine.
"""

from dataclasses import dataclass, fields as dataclass_fields
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from .networks import Network


class SubscriptionStatus(str, Enum):
    FREE = "free"
    PENDING_PAYMENT = "pending_payment"
    ACTIVE = "active"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


@dataclass
class SubscriptionRecord:
    user_id: str
    status: SubscriptionStatus = SubscriptionStatus.FREE
    plan_id: Optional[str] = None
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None
    linked_payment_id: Optional[str] = None

    # Outstanding intent, recoverable from the row alone
    network: Optional[Network] = None
    destination_address: Optional[str] = None
    expected_amount: Optional[Decimal] = None
    months: Optional[int] = None
    intent_created_at: Optional[datetime] = None
    intent_expires_at: Optional[datetime] = None

    # Transaction the user says they sent; checked first by the poller
    claimed_tx_ref: Optional[str] = None
    # Transaction that activated linked_payment_id
    payment_tx_ref: Optional[str] = None

    updated_at: Optional[datetime] = None

    def to_row(self) -> Dict[str, Any]:
        return {f.name: serialize_value(getattr(self, f.name)) for f in dataclass_fields(self)}

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "SubscriptionRecord":
        def dt(key):
            value = row.get(key)
            if value is None or isinstance(value, datetime):
                return value
            return datetime.fromisoformat(str(value).replace("Z", "+00:00"))

        amount = row.get("expected_amount")
        network = row.get("network")
        months = row.get("months")

        return cls(
            user_id=str(row["user_id"]),
            status=SubscriptionStatus(row.get("status") or SubscriptionStatus.FREE.value),
            plan_id=row.get("plan_id"),
            period_start=dt("period_start"),
            period_end=dt("period_end"),
            linked_payment_id=row.get("linked_payment_id"),
            network=Network(network) if network else None,
            destination_address=row.get("destination_address"),
            expected_amount=Decimal(str(amount)) if amount is not None else None,
            months=int(months) if months is not None else None,
            intent_created_at=dt("intent_created_at"),
            intent_expires_at=dt("intent_expires_at"),
            claimed_tx_ref=row.get("claimed_tx_ref"),
            payment_tx_ref=row.get("payment_tx_ref"),
            updated_at=dt("updated_at"),
        )


def serialize_value(value):
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    return value


# Fields cleared whenever an outstanding intent is consumed or abandoned
CLEARED_INTENT_FIELDS = {
    "network": None,
    "destination_address": None,
    "expected_amount": None,
    "intent_created_at": None,
    "intent_expires_at": None,
    "claimed_tx_ref": None,
}
