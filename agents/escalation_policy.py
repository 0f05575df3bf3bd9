from __future__ import annotations

import math
from datetime import datetime

from models.schemas import AISettings, Conversation, ConversationStatus


DEFAULT_GRACE_WINDOW_MS = 30_000
DEFAULT_MIN_RESPONSE_DELAY_MS = 2_000


def should_automate(
    status: ConversationStatus | str,
    has_assigned_agent: bool,
    elapsed_since_last_message_ms: float,
    *,
    enabled: bool = True,
    grace_window_ms: float = DEFAULT_GRACE_WINDOW_MS,
    min_response_delay_ms: float = DEFAULT_MIN_RESPONSE_DELAY_MS,
) -> bool:
    """Decide whether the automated engine may answer.

    An assigned agent gets first right of reply for ``grace_window_ms`` after their
    last intervention. Stateless on purpose: every input is an argument.
    """
    if ConversationStatus(status) == ConversationStatus.CLOSED:
        return False
    if has_assigned_agent and elapsed_since_last_message_ms < grace_window_ms:
        return False
    return enabled and elapsed_since_last_message_ms >= min_response_delay_ms


def elapsed_since_agent_ms(conversation: Conversation, now: datetime) -> float:
    if conversation.last_agent_intervention_at is None:
        return math.inf
    return max(0.0, (now - conversation.last_agent_intervention_at).total_seconds() * 1000)


def should_automate_conversation(conversation: Conversation, settings: AISettings, now: datetime) -> bool:
    return should_automate(
        conversation.status,
        conversation.assigned_agent_id is not None,
        elapsed_since_agent_ms(conversation, now),
        enabled=settings.enable_auto_response,
        grace_window_ms=settings.agent_grace_window_ms,
        min_response_delay_ms=settings.response_delay_ms,
    )
