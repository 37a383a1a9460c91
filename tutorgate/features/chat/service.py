"""
tutorgate/features/chat/service.py

AI tutor conversation service.

Handles:
- Message validation (required, length, blocked topics)
- Prompt assembly (system prompt + optional learning context + history)
- Quick-action prompt templates
- Provider calls and history bookkeeping

Entitlement and rate limiting are decided by the TutorGate before any of
the calls below that reach the provider.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional
import logging

from tutorgate.core.errors import ProviderBusyError, ProviderError, ServiceUnavailableError, ValidationError
from tutorgate.core.metrics import ai_requests_total
from tutorgate.core.tracing import start_span
from tutorgate.features.chat.config import ChatbotConfig
from tutorgate.features.chat.history import ConversationWindowManager
from tutorgate.features.chat.provider import ChatProvider
from tutorgate.models.chat import ChatExchange, ChatRole


logger = logging.getLogger("tutorgate")

MAX_MESSAGE_LENGTH = 2000
FALLBACK_REPLY = "I apologize, I could not generate a response."

BUILTIN_QUICK_ACTIONS: Dict[str, str] = {
    "explain_grammar": 'Explain this English grammar concept in detail with examples: "{data}"',
    "translate": 'Translate this to English and explain any important grammar or vocabulary: "{data}"',
    "vocabulary": (
        "Teach me about this English word/phrase with pronunciation (IPA), meaning, "
        'usage examples, and common collocations: "{data}"'
    ),
    "correct_writing": 'Please correct and improve this English text, explaining all corrections:\n\n"{data}"',
    "practice_conversation": 'Let\'s practice a conversation about: "{data}". Start the conversation and I\'ll respond.',
    "pronunciation": 'Guide me on how to pronounce: "{data}"',
    "conversation": 'Create a sample conversation about: "{data}"',
    "ielts_tip": 'Give me an IELTS preparation tip for: "{data}"',
}


@dataclass(frozen=True)
class ChatReply:
    response: str
    conversation_length: int


class TutorChatService:
    def __init__(
        self,
        config: ChatbotConfig,
        history: ConversationWindowManager,
        provider: Optional[ChatProvider] = None,
    ):
        self.config = config
        self.history = history
        self.provider = provider

    # Validation

    def validate_message(self, message: Any) -> str:
        if not isinstance(message, str) or not message.strip():
            raise ValidationError("Message is required")
        if len(message) > MAX_MESSAGE_LENGTH:
            raise ValidationError(f"Message too long. Maximum {MAX_MESSAGE_LENGTH} characters.")
        if self.config.contains_blocked_keyword(message):
            raise ValidationError(self.config.error_messages.out_of_scope)
        return message

    def build_quick_action_prompt(self, action: Any, data: Any) -> str:
        """Configured template (with {input}) wins over the built-in one."""
        if not isinstance(action, str) or not action:
            raise ValidationError("Invalid action type")
        if not isinstance(data, str) or not data.strip():
            raise ValidationError("Quick action data is required")
        if len(data) > MAX_MESSAGE_LENGTH:
            raise ValidationError(f"Message too long. Maximum {MAX_MESSAGE_LENGTH} characters.")

        configured = self.config.quick_actions.get(action)
        if configured is not None and configured.prompt:
            return configured.prompt.replace("{input}", data, 1)
        template = BUILTIN_QUICK_ACTIONS.get(action)
        if template is None:
            raise ValidationError("Invalid action type")
        return template.format(data=data)

    # Conversation

    def reply(self, user_id: str, message: str, context: Optional[str] = None) -> ChatReply:
        """Answer `message` with the user's history as context, then record the exchange."""
        system_prompt = self.config.system_prompt
        if context:
            system_prompt += f"\n\n**Current Learning Context:** {context}"

        messages = [{"role": ChatRole.SYSTEM.value, "content": system_prompt}]
        messages.extend(turn.as_message() for turn in self.history.get_history(user_id))
        messages.append({"role": ChatRole.USER.value, "content": message})

        response = self._complete(user_id, messages, kind="message")
        self.history.append_exchange(user_id, message, response)
        return ChatReply(response=response, conversation_length=len(self.history.get_history(user_id)) // 2)

    def run_quick_action(self, user_id: str, prompt: str) -> str:
        # Quick actions are one-shot: no prior history in the prompt
        messages = [
            {"role": ChatRole.SYSTEM.value, "content": self.config.system_prompt},
            {"role": ChatRole.USER.value, "content": prompt},
        ]
        response = self._complete(user_id, messages, kind="quick_action")
        self.history.append_exchange(user_id, prompt, response)
        return response

    def get_exchanges(self, user_id: str) -> List[ChatExchange]:
        return self.history.exchanges(user_id)

    def clear_history(self, user_id: str) -> None:
        self.history.clear(user_id)
        logger.info("chat.history_cleared", extra={"user_id": user_id})

    def public_config(self) -> Dict[str, Any]:
        return {
            "name": self.config.name,
            "description": self.config.description,
            "required_plan": self.config.required_plan.value,
            "quick_actions": [
                {"action": key, "label": action.label, "icon": action.icon}
                for key, action in self.config.quick_actions.items()
            ],
            "welcome_message": self.config.welcome_message,
        }

    # Internals

    def _complete(self, user_id: str, messages: List[Dict[str, str]], kind: str) -> str:
        if self.provider is None:
            ai_requests_total.inc(outcome="unavailable")
            raise ServiceUnavailableError(self.config.error_messages.server_error)

        with start_span("chat.completion", {"user_id": user_id, "kind": kind, "model": self.config.model}):
            try:
                content = self.provider.complete(
                    messages,
                    model=self.config.model,
                    temperature=self.config.temperature,
                    max_tokens=self.config.max_tokens,
                    top_p=self.config.top_p,
                )
            except ProviderBusyError:
                ai_requests_total.inc(outcome="busy")
                raise
            except ProviderError:
                ai_requests_total.inc(outcome="error")
                raise

        if not content:
            ai_requests_total.inc(outcome="empty")
            return FALLBACK_REPLY
        ai_requests_total.inc(outcome="ok")
        return content
