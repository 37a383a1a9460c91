"""
tutorgate/features/subscriptions/catalog.py

Public plan catalogue (display prices only; no payment processing).
"""

from typing import Dict, List

from pydantic import BaseModel, ConfigDict

from tutorgate.models.subscription import PlanTier


class PlanOffer(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: PlanTier
    name: str
    price: float
    price_yearly: float


PLAN_CATALOG: Dict[PlanTier, PlanOffer] = {
    PlanTier.FREE: PlanOffer(id=PlanTier.FREE, name="Free", price=0.0, price_yearly=0.0),
    PlanTier.PREMIUM: PlanOffer(id=PlanTier.PREMIUM, name="Premium", price=9.99, price_yearly=99.99),
    PlanTier.PRO: PlanOffer(id=PlanTier.PRO, name="Pro", price=19.99, price_yearly=199.99),
}


def list_plans() -> List[PlanOffer]:
    """Plans ordered from lowest to highest tier."""
    return sorted(PLAN_CATALOG.values(), key=lambda offer: offer.id.rank)


def plan_name(plan: PlanTier) -> str:
    return PLAN_CATALOG[plan].name
