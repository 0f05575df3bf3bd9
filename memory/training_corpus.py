from __future__ import annotations

import re
from typing import Iterable, List, Optional, Tuple

from errors import NotFoundError
from models.schemas import TrainingEntry


_STOPWORDS = {
    "the", "and", "are", "can", "does", "for", "how", "you", "your", "what", "when", "where",
    "who", "why", "with", "this", "that", "have", "has", "there", "about", "please", "from",
}

DEFAULT_TRAINING_DATA = [
    TrainingEntry(
        question="What are your business hours?",
        answer=(
            "Our customer support team is available 24/7. However, our live agents are typically online "
            "Monday through Friday, 9 AM to 6 PM EST. Outside these hours, I'm here to help you with most questions!"
        ),
        category="general",
    ),
    TrainingEntry(
        question="How do I reset my password?",
        answer=(
            "To reset your password, click on the 'Forgot Password' link on the login page, enter your email address, "
            "and you'll receive a reset link within a few minutes. If you don't see the email, please check your spam folder."
        ),
        category="account",
    ),
    TrainingEntry(
        question="How can I track my order?",
        answer=(
            "You can track your order by logging into your account and visiting the 'My Orders' section. You'll find "
            "tracking information and delivery updates there. If you need immediate assistance, please provide your order number."
        ),
        category="orders",
    ),
    TrainingEntry(
        question="What is your refund policy?",
        answer=(
            "We offer a 30-day money-back guarantee on most items. To request a refund, please contact us with your order "
            "number and reason for return. Refunds are typically processed within 5-7 business days."
        ),
        category="billing",
    ),
    TrainingEntry(
        question="How do I cancel my subscription?",
        answer=(
            "You can cancel your subscription anytime from your account settings under 'Billing & Subscriptions'. Your access "
            "will continue until the end of your current billing period. Would you like me to guide you through the cancellation process?"
        ),
        category="billing",
    ),
]


def keywords(text: str) -> List[str]:
    seen: List[str] = []
    for token in re.findall(r"[a-z0-9']+", text.lower()):
        if len(token) > 2 and token not in _STOPWORDS and token not in seen:
            seen.append(token)
    return seen


class TrainingCorpus:
    def __init__(self, entries: Iterable[TrainingEntry] | None = None) -> None:
        source = DEFAULT_TRAINING_DATA if entries is None else entries
        self._entries: List[TrainingEntry] = [entry.model_copy() for entry in source]

    def score(self, entry: TrainingEntry, message: str) -> float:
        lower = message.lower()
        phrase = entry.question.lower().strip(" ?!.")
        if phrase and phrase in lower:
            return 1.0
        terms = keywords(entry.question)
        if not terms:
            return 0.0
        hits = sum(1 for term in terms if term in lower)
        return hits / len(terms)

    def best_match(self, message: str, threshold: float) -> Optional[Tuple[TrainingEntry, float]]:
        best: Optional[Tuple[TrainingEntry, float]] = None
        for entry in self._entries:
            value = self.score(entry, message)
            # Strictly greater keeps the earliest entry on ties.
            if value >= threshold and (best is None or value > best[1]):
                best = (entry, value)
        return best

    def relevant(self, message: str, limit: int = 3) -> List[TrainingEntry]:
        lower = message.lower()
        return [
            entry
            for entry in self._entries
            if self.score(entry, message) > 0 or entry.category.lower() in lower
        ][:limit]

    def list(self) -> List[TrainingEntry]:
        return [entry.model_copy() for entry in self._entries]

    def add(self, entry: TrainingEntry) -> TrainingEntry:
        self._entries.append(entry)
        return entry

    def update(self, index: int, entry: TrainingEntry) -> TrainingEntry:
        self._check_index(index)
        self._entries[index] = entry
        return entry

    def remove(self, index: int) -> TrainingEntry:
        self._check_index(index)
        return self._entries.pop(index)

    def categories(self) -> set:
        return {entry.category for entry in self._entries}

    def average_answer_length(self) -> int:
        if not self._entries:
            return 0
        return round(sum(len(entry.answer) for entry in self._entries) / len(self._entries))

    def __len__(self) -> int:
        return len(self._entries)

    def _check_index(self, index: int) -> None:
        if not 0 <= index < len(self._entries):
            raise NotFoundError(f"Training entry {index} not found")
