"""
tutorgate/features/entitlements/service.py

Entitlement evaluation and the AI-tutor request gate.

Handles:
- Pure plan/status/period evaluation (no persistence, no caching)
- Gate decisions combining entitlement and the per-user rate limit
- Structured logs and denial counters
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional
import logging

from tutorgate.core.clock import Clock, ensure_utc, utc_now
from tutorgate.core.metrics import gate_denied_total
from tutorgate.core.ratelimit import SlidingWindowLimiter
from tutorgate.core.tracing import start_span
from tutorgate.features.subscriptions.lifecycle import SubscriptionLifecycleManager
from tutorgate.models.subscription import PlanTier, Subscription, SubscriptionStatus


logger = logging.getLogger("tutorgate")


def is_subscription_valid(
    subscription: Optional[Subscription],
    required_plan: PlanTier,
    now: datetime,
) -> bool:
    """
    Whether `subscription` grants a feature gated at `required_plan` at `now`.

    Entitlement is an exact tier match: a pro subscriber is not entitled to a
    premium-gated feature.
    """
    if subscription is None:
        return required_plan == PlanTier.FREE
    if subscription.plan != required_plan:
        return False
    if subscription.plan == PlanTier.FREE:
        return True
    if subscription.status == SubscriptionStatus.ACTIVE:
        return True
    if subscription.status == SubscriptionStatus.CANCELLED and subscription.current_period_end:
        return ensure_utc(now) < subscription.current_period_end
    return False


class DenialReason(str, Enum):
    UNENTITLED = "unentitled"
    RATE_LIMITED = "rate_limited"


@dataclass(frozen=True)
class GateDecision:
    allowed: bool
    reason: Optional[DenialReason] = None
    retry_after: Optional[int] = None
    subscription: Optional[Subscription] = None


class TutorGate:
    """Entitlement + rate-limit gate in front of the AI tutor."""

    def __init__(
        self,
        lifecycle: SubscriptionLifecycleManager,
        limiter: SlidingWindowLimiter,
        required_plan: PlanTier,
        now_fn: Clock = utc_now,
    ):
        self.lifecycle = lifecycle
        self.limiter = limiter
        self.required_plan = required_plan
        self.now_fn = now_fn

    def check_entitlement(self, user_id: str, required_plan: Optional[PlanTier] = None) -> bool:
        subscription = self.lifecycle.get_subscription(user_id)
        return is_subscription_valid(subscription, required_plan or self.required_plan, self.now_fn())

    def check_rate_limit(self, user_id: str) -> bool:
        """Consume one request from the user's window if there is room."""
        return self.limiter.allow(user_id)

    def evaluate(self, user_id: str, *, consume: bool = True) -> GateDecision:
        """
        Entitlement first, then the rate limit.

        With consume=False only entitlement is checked, so read-only
        endpoints do not spend the user's quota.
        """
        with start_span("gate.evaluate", {"user_id": user_id, "required_plan": self.required_plan.value}):
            subscription = self.lifecycle.get_subscription(user_id)
            if not is_subscription_valid(subscription, self.required_plan, self.now_fn()):
                return self._deny(user_id, DenialReason.UNENTITLED, subscription=subscription)
            if consume and not self.limiter.allow(user_id):
                return self._deny(
                    user_id,
                    DenialReason.RATE_LIMITED,
                    subscription=subscription,
                    retry_after=self.limiter.retry_after(user_id),
                )
            return GateDecision(allowed=True, subscription=subscription)

    def _deny(self, user_id: str, reason: DenialReason, **kwargs) -> GateDecision:
        gate_denied_total.inc(reason=reason.value)
        logger.info("gate.denied", extra={"user_id": user_id, "event_type": reason.value})
        return GateDecision(allowed=False, reason=reason, **kwargs)
