"""Premium subscription API.

Plan catalogue, subscription snapshot, plan changes, cancellation and promo
codes. Payment capture happens upstream; these endpoints only move
subscription state.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from tutorgate.api.deps import get_lifecycle, get_promotions, request_id
from tutorgate.core.auth import get_current_user_id
from tutorgate.core.errors import InvalidTransitionError
from tutorgate.core.tracing import start_span
from tutorgate.features.promotions.service import PromoCodeService
from tutorgate.features.subscriptions.catalog import list_plans, plan_name
from tutorgate.features.subscriptions.lifecycle import PlanChangeOutcome, SubscriptionLifecycleManager
from tutorgate.models.subscription import PlanTier, Subscription, SubscriptionStatus

router = APIRouter(prefix="/api/premium", tags=["premium"])

PREMIUM_TIERS = (PlanTier.PREMIUM, PlanTier.PRO)


class ChangePlanRequest(BaseModel):
    plan_id: Optional[str] = None
    billing_cycle: str = "monthly"


class PromoRequest(BaseModel):
    code: Optional[str] = None


def subscription_payload(subscription: Optional[Subscription]) -> Dict[str, Any]:
    """API view of a subscription; no record means implicit free/active."""
    if subscription is None:
        return {"plan": PlanTier.FREE.value, "status": SubscriptionStatus.ACTIVE.value}
    return {
        "id": subscription.id,
        "plan": subscription.plan.value,
        "status": subscription.status.value,
        "billing_cycle": subscription.billing_cycle.value,
        "start_date": subscription.current_period_start,
        "end_date": subscription.current_period_end,
        "cancel_at_period_end": subscription.cancel_at_period_end,
        "scheduled_plan": subscription.scheduled_plan.value if subscription.scheduled_plan else None,
        "scheduled_billing_cycle": (
            subscription.scheduled_billing_cycle.value if subscription.scheduled_billing_cycle else None
        ),
        "scheduled_change_date": subscription.scheduled_change_date,
        "created_at": subscription.created_at,
    }


@router.get("/plans")
def get_plans(request: Request):
    return {
        "data": [plan.model_dump(mode="json") for plan in list_plans()],
        "request_id": request_id(request),
    }


@router.get("/subscription")
def get_subscription(
    request: Request,
    user_id: str = Depends(get_current_user_id),
    lifecycle: SubscriptionLifecycleManager = Depends(get_lifecycle),
):
    return {"data": subscription_payload(lifecycle.get_subscription(user_id)), "request_id": request_id(request)}


@router.post("/upgrade")
def change_plan(
    body: ChangePlanRequest,
    request: Request,
    user_id: str = Depends(get_current_user_id),
    lifecycle: SubscriptionLifecycleManager = Depends(get_lifecycle),
):
    """Create, upgrade (immediate) or schedule a downgrade (end of period)."""
    with start_span("api.change_plan", {"user_id": user_id, "plan_id": body.plan_id}):
        result = lifecycle.change_plan(user_id, body.plan_id, body.billing_cycle)

    subscription = result.subscription
    if result.outcome == PlanChangeOutcome.ALREADY_FREE:
        message = "You are on the free plan."
    elif result.outcome == PlanChangeOutcome.CREATED:
        message = f"Subscribed to the {plan_name(subscription.plan)} plan."
    elif result.outcome == PlanChangeOutcome.UPGRADED:
        message = f"Upgraded to the {plan_name(subscription.plan)} plan."
    else:
        message = (
            f"Scheduled a change to the {plan_name(subscription.scheduled_plan)} plan. "
            f"You keep the {plan_name(subscription.plan)} plan until "
            f"{subscription.scheduled_change_date:%Y-%m-%d}; the new plan starts automatically after that."
        )

    return {
        "data": {"outcome": result.outcome.value, "subscription": subscription_payload(subscription)},
        "message": message,
        "request_id": request_id(request),
    }


@router.post("/cancel")
def cancel_subscription(
    request: Request,
    user_id: str = Depends(get_current_user_id),
    lifecycle: SubscriptionLifecycleManager = Depends(get_lifecycle),
):
    current = lifecycle.get_subscription(user_id)
    if current is None:
        raise InvalidTransitionError("You are on the free plan, nothing to cancel", request_id=request_id(request))

    cancelled = lifecycle.cancel(user_id, current)
    return {
        "data": {
            "access_until": cancelled.current_period_end,
            "plan": cancelled.plan.value,
            "status": cancelled.status.value,
        },
        "message": "Subscription cancelled. You keep access until the end of the billing period.",
        "request_id": request_id(request),
    }


@router.post("/cancel-scheduled-change")
def cancel_scheduled_change(
    request: Request,
    user_id: str = Depends(get_current_user_id),
    lifecycle: SubscriptionLifecycleManager = Depends(get_lifecycle),
):
    updated = lifecycle.cancel_scheduled_change(user_id, lifecycle.get_subscription(user_id))
    return {
        "data": subscription_payload(updated),
        "message": "Scheduled plan change cancelled.",
        "request_id": request_id(request),
    }


@router.post("/promo")
def apply_promo_code(
    body: PromoRequest,
    request: Request,
    user_id: str = Depends(get_current_user_id),
    promotions: PromoCodeService = Depends(get_promotions),
):
    promo = promotions.redeem(body.code, user_id=user_id)
    return {
        "data": {
            "code": promo.code,
            "discount": promo.discount_percent,
            "description": promo.description,
        },
        "request_id": request_id(request),
    }


@router.get("/check-access")
def check_premium_access(
    request: Request,
    user_id: str = Depends(get_current_user_id),
    lifecycle: SubscriptionLifecycleManager = Depends(get_lifecycle),
):
    subscription = lifecycle.get_subscription(user_id)
    is_premium = (
        subscription is not None
        and subscription.status == SubscriptionStatus.ACTIVE
        and subscription.plan in PREMIUM_TIERS
    )
    return {
        "data": {
            "is_premium": is_premium,
            "plan": subscription.plan.value if subscription else PlanTier.FREE.value,
            "expires_at": subscription.current_period_end if subscription else None,
        },
        "request_id": request_id(request),
    }
