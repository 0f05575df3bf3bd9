from __future__ import annotations

import re
from collections import defaultdict, deque
from dataclasses import asdict, dataclass, field
from typing import Any, Deque, Dict, List


_NEGATIVE_TERMS = [
    "angry",
    "upset",
    "terrible",
    "awful",
    "ridiculous",
    "unacceptable",
    "frustrated",
    "useless",
    "scam",
    "worst",
]
_POSITIVE_TERMS = ["thanks", "thank you", "great", "helpful", "perfect"]
_LEGAL_TERMS = ["lawyer", "legal", "court", "sue", "chargeback"]
_HUMAN_REQUESTS = ["human", "real person", "live agent", "speak to an agent", "talk to an agent", "supervisor", "manager"]


@dataclass
class DistressSignal:
    valence: float
    emotion: str
    consecutive_negative_turns: int
    trajectory: List[float] = field(default_factory=list)
    wants_human: bool = False
    legal_risk: bool = False
    escalate: bool = False
    reason: str = ""

    def to_wire(self) -> Dict[str, Any]:
        payload = asdict(self)
        return {
            "valence": payload["valence"],
            "emotion": payload["emotion"],
            "consecutiveNegativeTurns": payload["consecutive_negative_turns"],
            "trajectory": payload["trajectory"],
            "wantsHuman": payload["wants_human"],
            "legalRisk": payload["legal_risk"],
        }


class DistressDetector:
    """Keyword sentiment over a short per-conversation trajectory; suggests human takeover."""

    def __init__(self, window: int = 6, negative_streak: int = 3) -> None:
        self.negative_streak = negative_streak
        self._trajectories: Dict[int, Deque[float]] = defaultdict(lambda: deque(maxlen=window))

    def analyze(self, conversation_id: int, text: str) -> DistressSignal:
        lower = text.lower()

        def has_term(term: str) -> bool:
            if " " in term:
                return term in lower
            return bool(re.search(rf"\b{re.escape(term)}\b", lower))

        negative_hits = sum(1 for term in _NEGATIVE_TERMS if has_term(term))
        positive_hits = sum(1 for term in _POSITIVE_TERMS if has_term(term))
        valence = max(-1.0, min(1.0, (positive_hits - negative_hits) * 0.35))
        if "!" in text and negative_hits:
            valence = max(-1.0, valence - 0.2)
        emotion = "angry" if negative_hits >= 2 else "frustrated" if negative_hits == 1 else "satisfied" if positive_hits else "neutral"

        trajectory = self._trajectories[conversation_id]
        trajectory.append(round(valence, 3))
        consecutive_negative = 0
        for value in reversed(trajectory):
            if value < -0.2:
                consecutive_negative += 1
            else:
                break

        wants_human = any(has_term(term) for term in _HUMAN_REQUESTS)
        legal_risk = any(has_term(term) for term in _LEGAL_TERMS)
        reason = ""
        if wants_human:
            reason = "customer_requested_human"
        elif legal_risk:
            reason = "legal_risk"
        elif consecutive_negative >= self.negative_streak:
            reason = "sustained_negative_sentiment"
        return DistressSignal(
            valence=round(valence, 3),
            emotion=emotion,
            consecutive_negative_turns=consecutive_negative,
            trajectory=list(trajectory),
            wants_human=wants_human,
            legal_risk=legal_risk,
            escalate=bool(reason),
            reason=reason,
        )

    def clear(self, conversation_id: int) -> None:
        self._trajectories.pop(conversation_id, None)
