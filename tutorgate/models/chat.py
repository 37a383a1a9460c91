"""
tutorgate/models/chat.py

Conversation turns kept as AI tutor context.
"""

from enum import Enum
from pydantic import BaseModel, ConfigDict


class ChatRole(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class ChatTurn(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: ChatRole
    content: str

    def as_message(self) -> dict:
        """Provider wire shape: {"role": ..., "content": ...}."""
        return {"role": self.role.value, "content": self.content}


class ChatExchange(BaseModel):
    """A user message and the tutor's reply."""
    model_config = ConfigDict(frozen=True)

    user_message: str
    ai_response: str
