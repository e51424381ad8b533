"""In-process conversation history store.

Stands in for the database-backed history source in local runs and tests.
Bounded per user so a long-lived process cannot grow without limit.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict, deque

from dobby.ports.outbound import ConversationHistoryWriterPort, ConversationTurn


class InMemoryConversationHistory(ConversationHistoryWriterPort):
    def __init__(self, *, max_turns_per_user: int = 50) -> None:
        self._turns: defaultdict[str, deque[ConversationTurn]] = defaultdict(
            lambda: deque(maxlen=max_turns_per_user)
        )
        self._lock = asyncio.Lock()

    async def get_history(self, user_id: str, limit: int = 5) -> list[ConversationTurn]:
        async with self._lock:
            turns = list(self._turns.get(user_id, ()))
        return turns[-limit:] if limit > 0 else []

    async def append(self, user_id: str, turn: ConversationTurn) -> None:
        async with self._lock:
            self._turns[user_id].append(turn)
