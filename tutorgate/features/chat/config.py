"""
AI tutor configuration.

Loaded from a JSON file (camelCase keys) so prompts, model settings and the
required plan can change without a deploy. A missing or malformed file falls
back to the defaults below.
"""

import json
import logging
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from tutorgate.models.subscription import PlanTier


logger = logging.getLogger("tutorgate")

DEFAULT_SYSTEM_PROMPT = "You are an English tutor."


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class RateLimitSettings(_CamelModel):
    max_requests_per_minute: int = Field(default=10, ge=1)


class ErrorMessages(_CamelModel):
    out_of_scope: str = "This topic is not allowed."
    rate_limit: str = "Too many requests. Please wait a moment."
    server_error: str = "AI service is currently unavailable"


class QuickActionConfig(_CamelModel):
    label: str
    icon: Optional[str] = None
    prompt: Optional[str] = None


class ChatbotConfig(_CamelModel):
    name: str = "EduBot"
    description: str = "AI English Tutor"
    model: str = "llama-3.3-70b-versatile"
    max_tokens: int = 1024
    temperature: float = 0.7
    top_p: float = 0.9
    required_plan: PlanTier = PlanTier.PRO
    rate_limit: RateLimitSettings = RateLimitSettings()
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    blocked_keywords: List[str] = []
    error_messages: ErrorMessages = ErrorMessages()
    quick_actions: Dict[str, QuickActionConfig] = {}
    welcome_message: Optional[str] = None

    def contains_blocked_keyword(self, message: str) -> bool:
        lowered = message.lower()
        return any(keyword.lower() in lowered for keyword in self.blocked_keywords if keyword)


def load_chatbot_config(path: Optional[str]) -> ChatbotConfig:
    """Read the chatbot JSON config, falling back to defaults on any problem."""
    if not path:
        return ChatbotConfig()
    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
        config = ChatbotConfig.model_validate(raw)
    except (OSError, json.JSONDecodeError, PydanticValidationError) as exc:
        logger.error(f"Failed to load chatbot config from {path}: {exc}")
        return ChatbotConfig()
    logger.info(f"Loaded chatbot config: {config.name}")
    return config
