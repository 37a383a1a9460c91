"""AI tutor chat API.

Every conversational endpoint runs: validation -> entitlement -> rate limit
-> provider. History endpoints check entitlement only and do not spend the
user's quota.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from tutorgate.api.deps import get_chat_service, get_gate, raise_for_denial, request_id
from tutorgate.core.auth import get_current_user_id
from tutorgate.core.tracing import start_span
from tutorgate.features.chat.service import TutorChatService
from tutorgate.features.entitlements.service import TutorGate

router = APIRouter(prefix="/api/chat", tags=["chat"])


class MessageRequest(BaseModel):
    message: Optional[str] = None
    context: Optional[str] = None


class QuickActionRequest(BaseModel):
    action: Optional[str] = None
    data: Optional[str] = None


@router.get("/config")
def get_config(request: Request, chat: TutorChatService = Depends(get_chat_service)):
    return {"data": chat.public_config(), "request_id": request_id(request)}


@router.get("/access")
def check_access(
    request: Request,
    user_id: str = Depends(get_current_user_id),
    gate: TutorGate = Depends(get_gate),
    chat: TutorChatService = Depends(get_chat_service),
):
    decision = gate.evaluate(user_id, consume=False)
    subscription = decision.subscription
    return {
        "data": {
            "has_access": decision.allowed,
            "plan": subscription.plan.value if subscription else "free",
            "status": subscription.status.value if subscription else "none",
            "end_date": subscription.current_period_end if subscription else None,
            "required_plan": gate.required_plan.value,
            "bot_name": chat.config.name,
        },
        "request_id": request_id(request),
    }


@router.post("/message")
def send_message(
    body: MessageRequest,
    request: Request,
    user_id: str = Depends(get_current_user_id),
    gate: TutorGate = Depends(get_gate),
    chat: TutorChatService = Depends(get_chat_service),
):
    rid = request_id(request)
    with start_span("api.chat_message", {"user_id": user_id}):
        message = chat.validate_message(body.message)
        raise_for_denial(gate.evaluate(user_id), chat, rid)
        reply = chat.reply(user_id, message, context=body.context)

    return {
        "data": {"response": reply.response, "conversation_length": reply.conversation_length},
        "request_id": rid,
    }


@router.get("/history")
def get_history(
    request: Request,
    user_id: str = Depends(get_current_user_id),
    gate: TutorGate = Depends(get_gate),
    chat: TutorChatService = Depends(get_chat_service),
):
    rid = request_id(request)
    raise_for_denial(gate.evaluate(user_id, consume=False), chat, rid)
    exchanges = chat.get_exchanges(user_id)
    return {
        "data": {
            "messages": [exchange.model_dump() for exchange in exchanges],
            "total_messages": len(exchanges),
        },
        "request_id": rid,
    }


@router.delete("/history")
def clear_history(
    request: Request,
    user_id: str = Depends(get_current_user_id),
    gate: TutorGate = Depends(get_gate),
    chat: TutorChatService = Depends(get_chat_service),
):
    rid = request_id(request)
    raise_for_denial(gate.evaluate(user_id, consume=False), chat, rid)
    chat.clear_history(user_id)
    return {"data": {"cleared": True}, "request_id": rid}


@router.post("/quick-action")
def quick_action(
    body: QuickActionRequest,
    request: Request,
    user_id: str = Depends(get_current_user_id),
    gate: TutorGate = Depends(get_gate),
    chat: TutorChatService = Depends(get_chat_service),
):
    rid = request_id(request)
    with start_span("api.chat_quick_action", {"user_id": user_id, "action": body.action}):
        prompt = chat.build_quick_action_prompt(body.action, body.data)
        raise_for_denial(gate.evaluate(user_id), chat, rid)
        response = chat.run_quick_action(user_id, prompt)

    return {"data": {"action": body.action, "response": response}, "request_id": rid}
