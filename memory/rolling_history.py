from __future__ import annotations

from collections import deque
from typing import Deque, Dict, List


class RollingHistory:
    """Bounded per-conversation turn window used as generation context."""

    def __init__(self, limit: int = 10) -> None:
        self.limit = limit
        self._turns: Dict[int, Deque[Dict[str, str]]] = {}

    def append(self, conversation_id: int, role: str, content: str) -> None:
        turns = self._turns.get(conversation_id)
        if turns is None:
            turns = self._turns.setdefault(conversation_id, deque(maxlen=self.limit))
        turns.append({"role": role, "content": content})

    def window(self, conversation_id: int) -> List[Dict[str, str]]:
        return [dict(turn) for turn in self._turns.get(conversation_id, ())]

    def clear(self, conversation_id: int) -> bool:
        return self._turns.pop(conversation_id, None) is not None

    def resize(self, limit: int) -> None:
        if limit == self.limit:
            return
        self.limit = limit
        for conversation_id, turns in list(self._turns.items()):
            self._turns[conversation_id] = deque(turns, maxlen=limit)

    def conversation_count(self) -> int:
        return len(self._turns)

    def turn_count(self) -> int:
        return sum(len(turns) for turns in self._turns.values())
