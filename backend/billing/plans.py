"""
Plan Catalog
Static pricing table; never mutated at runtime.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Tuple

from infrastructure.errors import InvalidPlan


@dataclass(frozen=True)
class Plan:
    id: str
    name: str
    monthly_price: Decimal
    features: Tuple[str, ...] = ()

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "name": self.name,
            "monthly_price": str(self.monthly_price),
            "features": list(self.features),
        }


FREE_FEATURES = ("basic_alerts", "limited_api")

PLANS: Dict[str, Plan] = {
    "pro": Plan(
        id="pro",
        name="Pro Plan",
        monthly_price=Decimal("29.99"),
        features=("advanced_alerts", "unlimited_api", "data_export", "ai_analysis"),
    ),
    "premium": Plan(
        id="premium",
        name="Premium Plan",
        monthly_price=Decimal("99.99"),
        features=("all_features", "priority_support", "custom_integrations"),
    ),
}


def get_plan(plan_id: str) -> Plan:
    """Look up a purchasable plan; raises InvalidPlan for unknown ids."""
    plan = PLANS.get(plan_id)
    if plan is None:
        raise InvalidPlan(plan_id)
    return plan


def list_plans() -> List[Plan]:
    return list(PLANS.values())
