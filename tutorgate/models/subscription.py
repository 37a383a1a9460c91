"""
tutorgate/models/subscription.py

Subscription model and its enums.

A user has at most one current subscription (the most recent record).
Users without a record are implicitly on the free plan.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict, model_validator

from tutorgate.core.clock import add_months


class PlanTier(str, Enum):
    FREE = "free"
    PREMIUM = "premium"
    PRO = "pro"

    @property
    def rank(self) -> int:
        return PLAN_RANK[self]


PLAN_RANK = {
    PlanTier.FREE: 0,
    PlanTier.PREMIUM: 1,
    PlanTier.PRO: 2,
}


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    PAST_DUE = "past_due"


class BillingCycle(str, Enum):
    MONTHLY = "monthly"
    YEARLY = "yearly"

    def period_end(self, start: datetime) -> datetime:
        """End of a paid period that begins at `start`."""
        if self is BillingCycle.YEARLY:
            return add_months(start, 12)
        return add_months(start, 1)


class Subscription(BaseModel):
    """
    Snapshot of a user's subscription record.

    Constraint: scheduled_plan, scheduled_billing_cycle and
    scheduled_change_date are either all set or all None.
    """
    model_config = ConfigDict(frozen=True)

    id: int
    user_id: str
    plan: PlanTier
    status: SubscriptionStatus
    billing_cycle: BillingCycle
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    scheduled_plan: Optional[PlanTier] = None
    scheduled_billing_cycle: Optional[BillingCycle] = None
    scheduled_change_date: Optional[datetime] = None
    version: int = 1
    generation: int = 1  # nth record opened for this user
    created_at: datetime
    updated_at: datetime

    @model_validator(mode="after")
    def _schedule_fields_together(self):
        fields = (self.scheduled_plan, self.scheduled_billing_cycle, self.scheduled_change_date)
        if any(f is None for f in fields) and any(f is not None for f in fields):
            raise ValueError("scheduled plan fields must be set or cleared together")
        return self

    @property
    def has_scheduled_change(self) -> bool:
        return self.scheduled_plan is not None
