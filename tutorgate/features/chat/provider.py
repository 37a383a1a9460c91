"""
Chat completion provider.

The tutor talks to Groq's OpenAI-compatible chat API. Tests inject a fake
that implements the same `complete` method.
"""

import logging
from typing import Dict, List, Optional, Protocol

import groq

from tutorgate.core.errors import ProviderBusyError, ProviderError


logger = logging.getLogger("tutorgate")


class ChatProvider(Protocol):
    def complete(
        self,
        messages: List[Dict[str, str]],
        *,
        model: str,
        temperature: float,
        max_tokens: int,
        top_p: float,
    ) -> Optional[str]:
        ...


class GroqChatProvider:
    """Non-streaming Groq completions; client is built on first use."""

    def __init__(self, api_key: Optional[str]):
        self.api_key = api_key
        self._client = None

    def _get_client(self):
        if self._client is None:
            self._client = groq.Groq(api_key=self.api_key)
        return self._client

    def complete(self, messages, *, model, temperature, max_tokens, top_p):
        try:
            completion = self._get_client().chat.completions.create(
                messages=messages,
                model=model,
                temperature=temperature,
                max_tokens=max_tokens,
                top_p=top_p,
                stream=False,
            )
        except groq.RateLimitError as e:
            logger.warning(f"Groq rate limited the request: {e}")
            raise ProviderBusyError("AI service is busy. Please try again in a moment.") from e
        except groq.APIError as e:
            logger.error(f"Groq API error: {e}", exc_info=True)
            raise ProviderError("AI service is currently unavailable") from e

        if not completion.choices:
            return None
        return completion.choices[0].message.content
