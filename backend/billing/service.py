"""
Billing Service
Facade the API layer talks to: intents, status reads, renewal quotes,
cancellation and transaction-hash claims.

Features:
- Admins bypass billing and always read as active
- Status reads apply due expiry lazily
- Renewal options for users inside the renewal window or already expired
"""

import logging
import math
import re
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from infrastructure.config import BillingConfig
from infrastructure.errors import (
    ConcurrentActivationConflict,
    IntentExpired,
    NotFoundError,
    ValidationError,
)
from .events import EventBus
from .intents import IntentGenerator, PaymentIntent
from .models import SubscriptionRecord, SubscriptionStatus
from .networks import Network
from .periods import utcnow
from .plans import FREE_FEATURES, PLANS, get_plan, list_plans
from .pricing import PricingCalculator, Quote
from .store import SubscriptionStore
from .subscriptions import SubscriptionStateMachine
from .users import User, UserDirectory

logger = logging.getLogger("BillingService")

Status = SubscriptionStatus

EVM_TX_HASH = re.compile(r"^0x[0-9a-fA-F]{64}$")
SOLANA_SIGNATURE = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{64,88}$")

ADMIN_FEATURES = ("all_features", "admin_access")

# Plan offered on renewal-info when the user never had one
DEFAULT_RENEWAL_PLAN = "pro"


class SubscriptionService:
    def __init__(
        self,
        config: BillingConfig,
        store: SubscriptionStore,
        users: UserDirectory,
        events: EventBus = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.config = config
        self.users = users
        self.clock = clock
        self.calculator = PricingCalculator(config.pricing.discount_offer)
        self.intents = IntentGenerator(config, self.calculator, clock)
        self.state = SubscriptionStateMachine(store, events, clock)
        self.renewal_window = timedelta(days=config.pricing.renewal_window_days)

    @property
    def events(self) -> EventBus:
        return self.state.events

    # ===========================================
    # CATALOG
    # ===========================================

    def list_plans(self) -> List[Dict]:
        return [plan.to_dict() for plan in list_plans()]

    def quote(self, plan_id: str, months: int) -> Quote:
        return self.calculator.quote(plan_id, months)

    # ===========================================
    # INTENTS
    # ===========================================

    async def create_renewal_intent(
        self,
        user_id: str,
        plan_id: str,
        months: int,
        network,
        is_renewal: bool = False,
    ) -> PaymentIntent:
        """
        Quote, build and link a payment intent for `user_id`.

        Raises InvalidPlan, UnconfiguredNetwork, ValidationError, NotFoundError,
        or InvalidTransition when the current row cannot take a new intent.
        """
        user = await self._require_user(user_id)
        if user.is_admin:
            raise ValidationError("Admin accounts have full access and cannot purchase a plan", {"user_id": user_id})

        intent = self.intents.create(user_id, plan_id, months, network)
        await self.state.open_intent(intent)

        kind = "renewal" if is_renewal else "payment"
        logger.info(
            f"[Billing] Created {kind} {intent.payment_id}: {intent.expected_amount} USDC "
            f"on {intent.network.value} to {intent.destination_address[:10]}..."
        )
        return intent

    async def submit_transaction_hash(self, user_id: str, payment_id: str, tx_hash: str) -> Dict:
        """
        Record the transaction the user says paid `payment_id`.

        Nothing is activated here; the poller checks the claimed transaction
        first on its next cycle.
        """
        row = await self.state.current(user_id)
        if row is None or row.status != Status.PENDING_PAYMENT or row.linked_payment_id != payment_id:
            raise IntentExpired(payment_id)

        tx_ref = normalize_tx_ref(row.network, tx_hash)
        try:
            await self.state.record_claim(user_id, payment_id, tx_ref)
        except ConcurrentActivationConflict:
            raise IntentExpired(payment_id)

        logger.info(f"[Billing] {user_id} claimed {tx_ref[:12]}... for {payment_id}")
        return {
            "payment_id": payment_id,
            "tx_hash": tx_ref,
            "network": row.network.value,
            "status": "pending_verification",
        }

    # ===========================================
    # STATUS
    # ===========================================

    async def get_subscription_status(self, user_id: str) -> Dict:
        user = await self._require_user(user_id)
        if user.is_admin:
            return {
                "user_id": user_id,
                "status": Status.ACTIVE.value,
                "plan_id": "admin",
                "plan_name": "Admin",
                "features": list(ADMIN_FEATURES),
                "period_end": None,
                "days_until_expiry": None,
                "needs_renewal": False,
                "has_access": True,
                "is_admin": True,
                "expired_plan": None,
                "pending_payment": None,
            }

        row = await self.state.current(user_id)
        return self._describe(user_id, row)

    def _describe(self, user_id: str, row: Optional[SubscriptionRecord]) -> Dict:
        now = self.clock()
        status = row.status if row else Status.FREE
        plan = PLANS.get(row.plan_id) if row and row.plan_id else None

        period_end = row.period_end if row else None
        has_access = (
            status in (Status.ACTIVE, Status.PENDING_PAYMENT)
            and period_end is not None
            and period_end > now
        )

        days_until_expiry = None
        if has_access:
            days_until_expiry = math.ceil((period_end - now).total_seconds() / 86400)

        needs_renewal = status == Status.EXPIRED or (
            status == Status.ACTIVE and period_end is not None and period_end - now <= self.renewal_window
        )

        pending = None
        if status == Status.PENDING_PAYMENT:
            pending = {
                "payment_id": row.linked_payment_id,
                "plan_id": row.plan_id,
                "months": row.months,
                "network": row.network.value if row.network else None,
                "address": row.destination_address,
                "amount": str(row.expected_amount) if row.expected_amount is not None else None,
                "expires_at": row.intent_expires_at.isoformat() if row.intent_expires_at else None,
                "claimed_tx_hash": row.claimed_tx_ref,
            }

        return {
            "user_id": user_id,
            "status": status.value,
            "plan_id": row.plan_id if row else None,
            "plan_name": plan.name if plan and has_access else "Free Plan",
            "features": list(plan.features if plan and has_access else FREE_FEATURES),
            "period_end": period_end.isoformat() if period_end else None,
            "days_until_expiry": days_until_expiry,
            "needs_renewal": needs_renewal,
            "has_access": has_access,
            "is_admin": False,
            "expired_plan": row.plan_id if status == Status.EXPIRED else None,
            "pending_payment": pending,
        }

    async def get_renewal_options(self, user_id: str) -> Optional[Dict]:
        """Quotes for 1/3/6/12 months, or None when no renewal is due."""
        status = await self.get_subscription_status(user_id)
        if not status["needs_renewal"]:
            return None

        plan = get_plan(status["plan_id"] if status["plan_id"] in PLANS else DEFAULT_RENEWAL_PLAN)
        options = self.calculator.renewal_options(plan.id, self.config.pricing.renewal_option_months)

        return {
            "plan_id": plan.id,
            "plan_name": plan.name,
            "monthly_price": str(plan.monthly_price),
            "discount_offer": str(self.calculator.discount),
            "status": status["status"],
            "period_end": status["period_end"],
            "renewal_options": [quote.to_dict() for quote in options],
        }

    # ===========================================
    # CANCELLATION
    # ===========================================

    async def cancel_subscription(self, user_id: str) -> Dict:
        """active -> cancelled; raises NotActive for any other status."""
        await self._require_user(user_id)
        row = await self.state.cancel(user_id)
        return self._describe(user_id, row)

    async def _require_user(self, user_id: str) -> User:
        user = await self.users.get_user(user_id)
        if user is None:
            raise NotFoundError("User", user_id)
        return user


def normalize_tx_ref(network: Optional[Network], tx_hash: str) -> str:
    """Validate a submitted transaction reference for `network`; EVM hashes are lowercased."""
    tx_hash = (tx_hash or "").strip()
    if network == Network.EVM and EVM_TX_HASH.match(tx_hash):
        return tx_hash.lower()
    if network == Network.NON_EVM and SOLANA_SIGNATURE.match(tx_hash):
        return tx_hash
    raise ValidationError(
        "Transaction hash does not match the payment network",
        {"network": network.value if network else None},
    )
