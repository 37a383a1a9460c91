"""
Bounded per-user conversation history used as AI context.

Process-local and best-effort: losing it only costs conversational
continuity. Oldest turns are evicted first once a user exceeds max_length.
"""

import threading
from collections import deque
from typing import Deque, Dict, List, Tuple

from tutorgate.core.ratelimit import LOCK_STRIPES
from tutorgate.models.chat import ChatExchange, ChatRole, ChatTurn


class ConversationWindowManager:
    def __init__(self, max_length: int = 20):
        if max_length < 1:
            raise ValueError("max_length must be at least 1")
        self.max_length = max_length
        self._histories: Dict[str, Deque[ChatTurn]] = {}
        # Users share a fixed set of locks
        self._locks = [threading.Lock() for _ in range(LOCK_STRIPES)]

    def _lock_for(self, user_id: str) -> threading.Lock:
        return self._locks[hash(user_id) % LOCK_STRIPES]

    def _history_for(self, user_id: str) -> Deque[ChatTurn]:
        history = self._histories.get(user_id)
        if history is None:
            history = deque(maxlen=self.max_length)
            self._histories[user_id] = history
        return history

    def append(self, user_id: str, role: ChatRole, content: str) -> None:
        with self._lock_for(user_id):
            self._history_for(user_id).append(ChatTurn(role=role, content=content))

    def append_exchange(self, user_id: str, user_message: str, assistant_message: str) -> None:
        """Append a user turn and its reply together so they are never split by a racing append."""
        with self._lock_for(user_id):
            history = self._history_for(user_id)
            history.append(ChatTurn(role=ChatRole.USER, content=user_message))
            history.append(ChatTurn(role=ChatRole.ASSISTANT, content=assistant_message))

    def get_history(self, user_id: str) -> Tuple[ChatTurn, ...]:
        """Oldest-first snapshot; callers cannot mutate the stored sequence."""
        with self._lock_for(user_id):
            return tuple(self._histories.get(user_id, ()))

    def clear(self, user_id: str) -> None:
        with self._lock_for(user_id):
            self._histories.pop(user_id, None)

    def exchanges(self, user_id: str) -> List[ChatExchange]:
        """Pair consecutive user/assistant turns; unpaired turns are skipped."""
        turns = self.get_history(user_id)
        paired: List[ChatExchange] = []
        i = 0
        while i + 1 < len(turns):
            first, second = turns[i], turns[i + 1]
            if first.role == ChatRole.USER and second.role == ChatRole.ASSISTANT:
                paired.append(ChatExchange(user_message=first.content, ai_response=second.content))
                i += 2
            else:
                i += 1
        return paired
