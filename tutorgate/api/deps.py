"""Request-scoped accessors for services owned by app.state."""

from fastapi import Request

from tutorgate.core.errors import RateLimitError, UnentitledError
from tutorgate.core.logging import get_request_id
from tutorgate.features.chat.service import TutorChatService
from tutorgate.features.entitlements.service import DenialReason, GateDecision, TutorGate
from tutorgate.features.promotions.service import PromoCodeService
from tutorgate.features.subscriptions.lifecycle import SubscriptionLifecycleManager


def request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or get_request_id()


def get_lifecycle(request: Request) -> SubscriptionLifecycleManager:
    return request.app.state.lifecycle


def get_gate(request: Request) -> TutorGate:
    return request.app.state.tutor_gate


def get_chat_service(request: Request) -> TutorChatService:
    return request.app.state.chat_service


def get_promotions(request: Request) -> PromoCodeService:
    return request.app.state.promotions


def raise_for_denial(decision: GateDecision, chat_service: TutorChatService, rid: str) -> None:
    """Turn a gate denial into the matching 403/429 error."""
    if decision.allowed:
        return
    if decision.reason == DenialReason.RATE_LIMITED:
        raise RateLimitError(
            chat_service.config.error_messages.rate_limit,
            retry_after=decision.retry_after,
            request_id=rid,
        )
    required = chat_service.config.required_plan.value
    raise UnentitledError(f"AI Tutor is only available for {required.capitalize()} subscribers", request_id=rid)
