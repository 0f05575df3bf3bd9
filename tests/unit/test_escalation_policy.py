from __future__ import annotations

import itertools
import math
from datetime import datetime, timedelta, timezone

from agents.escalation_policy import elapsed_since_agent_ms, should_automate, should_automate_conversation
from models.schemas import AISettings, Conversation, ConversationStatus


def test_closed_conversation_is_never_automated():
    for assigned, elapsed, enabled in itertools.product([True, False], [0, 1_999, 2_000, 29_999, 30_000, math.inf], [True, False]):
        assert should_automate(ConversationStatus.CLOSED, assigned, elapsed, enabled=enabled) is False


def test_policy_is_total_over_enumerated_domain():
    for status, assigned, elapsed, enabled in itertools.product(
        list(ConversationStatus), [True, False], [0, 1_999, 2_000, 29_999, 30_000, math.inf], [True, False]
    ):
        decision = should_automate(status, assigned, elapsed, enabled=enabled)
        assert isinstance(decision, bool)
        if decision:
            assert status != ConversationStatus.CLOSED
            assert enabled
            assert elapsed >= 2_000
            if assigned:
                assert elapsed >= 30_000


def test_assigned_agent_keeps_grace_window():
    assert should_automate("assigned", True, 5_000) is False
    assert should_automate("assigned", True, 30_000) is True
    assert should_automate("open", False, 5_000) is True
    assert should_automate("open", False, 1_000) is False
    assert should_automate("open", False, 5_000, enabled=False) is False


def test_elapsed_is_infinite_without_agent_intervention():
    now = datetime(2024, 1, 1, tzinfo=timezone.utc)
    untouched = Conversation(id=1, customer_id=1)
    assert elapsed_since_agent_ms(untouched, now) == math.inf

    touched = Conversation(
        id=2,
        customer_id=1,
        assigned_agent_id=7,
        status=ConversationStatus.ASSIGNED,
        last_agent_intervention_at=now - timedelta(seconds=10),
    )
    assert elapsed_since_agent_ms(touched, now) == 10_000
    assert should_automate_conversation(touched, AISettings(), now) is False
    assert should_automate_conversation(touched, AISettings(), now + timedelta(seconds=25)) is True
