"""
Billing Core
Plans, pricing, payment intents and the subscription state machine
"""

from .plans import Plan, PLANS, get_plan, list_plans
from .pricing import PricingCalculator, Quote
from .networks import Network
from .intents import IntentGenerator, PaymentIntent, build_payment_id, parse_payment_id
from .models import SubscriptionRecord, SubscriptionStatus
from .store import SubscriptionStore, InMemorySubscriptionStore, SupabaseSubscriptionStore, build_store
from .users import User, UserDirectory, InMemoryUserDirectory, build_user_directory
from .events import BillingEvent, EventBus, EventType
from .subscriptions import SubscriptionStateMachine
from .service import SubscriptionService

__all__ = [
    "Plan",
    "PLANS",
    "get_plan",
    "list_plans",
    "PricingCalculator",
    "Quote",
    "Network",
    "IntentGenerator",
    "PaymentIntent",
    "build_payment_id",
    "parse_payment_id",
    "SubscriptionRecord",
    "SubscriptionStatus",
    "SubscriptionStore",
    "InMemorySubscriptionStore",
    "SupabaseSubscriptionStore",
    "build_store",
    "User",
    "UserDirectory",
    "InMemoryUserDirectory",
    "build_user_directory",
    "BillingEvent",
    "EventBus",
    "EventType",
    "SubscriptionStateMachine",
    "SubscriptionService",
]
