"""
tutorgate/features/subscriptions/lifecycle.py

Subscription lifecycle state machine.

Handles:
- Creation (free -> paid)
- Upgrades (immediate, clear any pending change or cancellation)
- Downgrades (scheduled for the end of the paid period)
- Cancellation (grace period until current_period_end)
- Period rollover (applied lazily on every read, or by a sweep)

Each mutation is a read-modify-write guarded by the record's version. A lost
race re-reads the latest record and re-validates the transition.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple

from tutorgate.core.clock import Clock, ensure_utc, utc_now
from tutorgate.core.errors import ConflictError, InvalidTransitionError, NotFoundError
from tutorgate.core.logging import log_event
from tutorgate.core.metrics import subscription_transitions_total
from tutorgate.core.tracing import start_span
from tutorgate.features.subscriptions.store import SubscriptionStore
from tutorgate.models.subscription import BillingCycle, PlanTier, Subscription, SubscriptionStatus


MAX_WRITE_ATTEMPTS = 3

_CLEARED_SCHEDULE = {
    "scheduled_plan": None,
    "scheduled_billing_cycle": None,
    "scheduled_change_date": None,
}


class PlanChangeOutcome(str, Enum):
    CREATED = "created"
    UPGRADED = "upgraded"
    SCHEDULED = "scheduled"
    ALREADY_FREE = "already_free"


@dataclass(frozen=True)
class PlanChangeResult:
    outcome: PlanChangeOutcome
    subscription: Optional[Subscription]
    previous_plan: PlanTier


def parse_plan(value: Any) -> PlanTier:
    try:
        return PlanTier(value)
    except ValueError:
        raise InvalidTransitionError("Invalid plan selected") from None


def parse_billing_cycle(value: Any) -> BillingCycle:
    try:
        return BillingCycle(value)
    except ValueError:
        raise InvalidTransitionError("Invalid billing cycle") from None


def rollover_changes(subscription: Subscription, now: datetime) -> Optional[Dict[str, Any]]:
    """Changes the period-rollover policy requires at `now`, or None."""
    if subscription.has_scheduled_change and now >= subscription.scheduled_change_date:
        start = subscription.scheduled_change_date
        cycle = subscription.scheduled_billing_cycle
        return {
            "plan": subscription.scheduled_plan,
            "billing_cycle": cycle,
            "status": SubscriptionStatus.ACTIVE,
            "current_period_start": start,
            "current_period_end": cycle.period_end(start),
            "cancel_at_period_end": False,
            **_CLEARED_SCHEDULE,
        }

    lapsed = (
        subscription.status == SubscriptionStatus.CANCELLED
        and subscription.plan != PlanTier.FREE
        and subscription.current_period_end is not None
        and now >= subscription.current_period_end
    )
    if lapsed:
        return {"plan": PlanTier.FREE, "status": SubscriptionStatus.EXPIRED}
    return None


def holds_paid_plan(subscription: Optional[Subscription]) -> bool:
    """A paid plan that is active or still inside its cancellation grace period."""
    return (
        subscription is not None
        and subscription.plan != PlanTier.FREE
        and subscription.status in (SubscriptionStatus.ACTIVE, SubscriptionStatus.CANCELLED)
    )


class SubscriptionLifecycleManager:
    """Plan/status/period transitions for one store."""

    def __init__(self, store: SubscriptionStore, now_fn: Clock = utc_now):
        self.store = store
        self.now_fn = now_fn

    def _now(self) -> datetime:
        return ensure_utc(self.now_fn())

    # Reads

    def get_subscription(self, user_id: str) -> Optional[Subscription]:
        """Current subscription with any due rollover applied, or None."""
        subscription, _ = self._roll_forward(user_id, self.store.get_latest(user_id))
        return subscription

    def _roll_forward(self, user_id: str, subscription: Optional[Subscription]) -> Tuple[Optional[Subscription], bool]:
        now = self._now()
        for _ in range(MAX_WRITE_ATTEMPTS):
            if subscription is None:
                return None, False
            changes = rollover_changes(subscription, now)
            if not changes:
                return subscription, False
            if self.store.apply_update(subscription.id, subscription.version, changes):
                transition = "rollover_scheduled" if subscription.has_scheduled_change else "rollover_expired"
                self._record(transition, subscription, changes)
                return self.store.get_by_id(subscription.id), True
            subscription = self.store.get_latest(user_id)
        raise ConflictError("Subscription changed concurrently, please retry")

    # Mutations

    def create(self, user_id: str, plan: PlanTier, billing_cycle: BillingCycle = BillingCycle.MONTHLY) -> Subscription:
        """Open a new paid subscription starting now."""
        if plan == PlanTier.FREE:
            raise InvalidTransitionError("The free plan does not need a subscription")
        for _ in range(MAX_WRITE_ATTEMPTS):
            current = self.get_subscription(user_id)
            if holds_paid_plan(current):
                raise InvalidTransitionError(f"You already have the {current.plan.value} plan")
            created = self._open(user_id, plan, billing_cycle, current)
            if created is not None:
                return created
        raise ConflictError("Subscription changed concurrently, please retry")

    def _open(
        self, user_id: str, plan: PlanTier, billing_cycle: BillingCycle, previous: Optional[Subscription]
    ) -> Optional[Subscription]:
        """Insert the record that follows `previous`; None if a concurrent create got there first."""
        start = self._now()
        with start_span("subscription.create", {"user_id": user_id, "plan": plan.value}):
            subscription = self.store.insert(
                user_id=user_id,
                plan=plan,
                billing_cycle=billing_cycle,
                period_start=start,
                period_end=billing_cycle.period_end(start),
                generation=previous.generation + 1 if previous else 1,
            )
        if subscription is None:
            return None
        self._record("create", subscription, {"plan": plan, "billing_cycle": billing_cycle})
        return subscription

    def upgrade(self, user_id: str, subscription: Subscription, new_plan: PlanTier, new_billing_cycle: BillingCycle) -> Subscription:
        """Move to a strictly higher plan, effective immediately."""

        def compute(current: Subscription) -> Dict[str, Any]:
            if not holds_paid_plan(current):
                raise InvalidTransitionError("No paid subscription to upgrade, subscribe instead")
            if new_plan == current.plan:
                raise InvalidTransitionError(f"You are already on the {current.plan.value} plan")
            if new_plan.rank < current.plan.rank:
                raise InvalidTransitionError("Upgrade must move to a higher plan")
            return {
                "plan": new_plan,
                "billing_cycle": new_billing_cycle,
                "status": SubscriptionStatus.ACTIVE,
                "cancel_at_period_end": False,
                **_CLEARED_SCHEDULE,
            }

        return self._transition("upgrade", user_id, subscription, compute)

    def schedule_plan_change(self, user_id: str, subscription: Subscription, new_plan: PlanTier, new_billing_cycle: BillingCycle) -> Subscription:
        """Schedule a move to a strictly lower plan at the end of the paid period."""

        def compute(current: Subscription) -> Dict[str, Any]:
            if not holds_paid_plan(current):
                raise InvalidTransitionError("No paid subscription to change")
            if new_plan == current.plan:
                raise InvalidTransitionError(f"You are already on the {current.plan.value} plan")
            if new_plan.rank > current.plan.rank:
                raise InvalidTransitionError("Downgrade must move to a lower plan")
            if current.status == SubscriptionStatus.CANCELLED:
                raise InvalidTransitionError("Subscription is already cancelled")
            if current.current_period_end is None:
                raise InvalidTransitionError("Subscription has no paid period to schedule against")
            return {
                "scheduled_plan": new_plan,
                "scheduled_billing_cycle": new_billing_cycle,
                "scheduled_change_date": current.current_period_end,
            }

        return self._transition("schedule_change", user_id, subscription, compute)

    def cancel_scheduled_change(self, user_id: str, subscription: Optional[Subscription]) -> Subscription:
        """Drop the pending plan change, leaving plan and status untouched."""

        def compute(current: Subscription) -> Dict[str, Any]:
            if not current.has_scheduled_change:
                raise NotFoundError("No scheduled plan change")
            return dict(_CLEARED_SCHEDULE)

        return self._transition("cancel_scheduled_change", user_id, subscription, compute)

    def cancel(self, user_id: str, subscription: Optional[Subscription]) -> Subscription:
        """Cancel at period end; access continues until current_period_end."""

        def compute(current: Subscription) -> Dict[str, Any]:
            if current.plan == PlanTier.FREE:
                raise InvalidTransitionError("You are on the free plan, nothing to cancel")
            if current.status == SubscriptionStatus.CANCELLED:
                raise InvalidTransitionError("Subscription was already cancelled")
            return {"status": SubscriptionStatus.CANCELLED, "cancel_at_period_end": True}

        return self._transition("cancel", user_id, subscription, compute)

    def change_plan(self, user_id: str, plan: Any, billing_cycle: Any = BillingCycle.MONTHLY) -> PlanChangeResult:
        """
        Entry point for a user asking for `plan`.

        Creates, upgrades or schedules a downgrade depending on the current
        state. Same-plan requests are rejected.

        Raises:
            InvalidTransitionError: Unknown plan/cycle or disallowed move
            StoreFailureError: Store unavailable
        """
        target = parse_plan(plan)
        cycle = parse_billing_cycle(billing_cycle)
        for _ in range(MAX_WRITE_ATTEMPTS):
            current = self.get_subscription(user_id)
            if not holds_paid_plan(current):
                # Free, expired or past-due: a paid request opens a fresh period
                if target == PlanTier.FREE:
                    return PlanChangeResult(PlanChangeOutcome.ALREADY_FREE, current, PlanTier.FREE)
                created = self._open(user_id, target, cycle, current)
                if created is None:
                    continue
                return PlanChangeResult(PlanChangeOutcome.CREATED, created, PlanTier.FREE)

            if target == current.plan:
                raise InvalidTransitionError(f"You are already on the {target.value} plan")
            if target.rank > current.plan.rank:
                upgraded = self.upgrade(user_id, current, target, cycle)
                return PlanChangeResult(PlanChangeOutcome.UPGRADED, upgraded, current.plan)
            scheduled = self.schedule_plan_change(user_id, current, target, cycle)
            return PlanChangeResult(PlanChangeOutcome.SCHEDULED, scheduled, current.plan)
        raise ConflictError("Subscription changed concurrently, please retry")

    def apply_scheduled_changes(self) -> int:
        """
        Sweep: roll forward every user with a due change or a lapsed grace
        period. Returns the number of subscriptions changed.

        Uses the same policy as the lazy rollover in get_subscription, so the
        observable result does not depend on whether the sweep runs.
        """
        now = self._now()
        user_ids = {s.user_id for s in self.store.list_due_scheduled_changes(now)}
        user_ids |= {s.user_id for s in self.store.list_lapsed_cancellations(now)}
        changed = 0
        for user_id in sorted(user_ids):
            _, rolled = self._roll_forward(user_id, self.store.get_latest(user_id))
            changed += int(rolled)
        return changed

    # Internals

    def _transition(
        self,
        name: str,
        user_id: str,
        subscription: Optional[Subscription],
        compute: Callable[[Subscription], Dict[str, Any]],
    ) -> Subscription:
        current = subscription
        with start_span(f"subscription.{name}", {"user_id": user_id}):
            for _ in range(MAX_WRITE_ATTEMPTS):
                if current is None or current.user_id != user_id:
                    raise NotFoundError("Subscription not found")
                # Validate against the state the rollover policy says is current
                current, _ = self._roll_forward(user_id, current)
                changes = compute(current)
                if self.store.apply_update(current.id, current.version, changes):
                    self._record(name, current, changes)
                    return self.store.get_by_id(current.id)
                current = self.get_subscription(user_id)
        raise ConflictError("Subscription changed concurrently, please retry")

    def _record(self, transition: str, subscription: Subscription, changes: Dict[str, Any]) -> None:
        subscription_transitions_total.inc(transition=transition)
        log_event(
            "info",
            "subscription.transition",
            user_id=subscription.user_id,
            subscription_id=subscription.id,
            event_type=transition,
            extra={key: getattr(value, "value", value) for key, value in changes.items()},
        )
