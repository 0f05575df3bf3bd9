from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from agents.distress_detector import DistressDetector
from agents.response_engine import AutomatedResponseEngine
from channels.hub import ConnectionHub
from errors import InvalidTransitionError, NotFoundError, ValidationError
from memory.storage import Storage
from models.schemas import (
    Conversation,
    ConversationDetail,
    ConversationStatus,
    ConversationSummary,
    Message,
    Sender,
    SenderRole,
    utcnow,
)
from models.wire import conversation_assigned_event, conversation_closed_event, new_message_event

logger = logging.getLogger(__name__)


# (current status, action) -> next status
TRANSITIONS: Dict[tuple, ConversationStatus] = {
    (ConversationStatus.OPEN, "assign"): ConversationStatus.ASSIGNED,
    (ConversationStatus.ASSIGNED, "assign"): ConversationStatus.ASSIGNED,
    (ConversationStatus.OPEN, "close"): ConversationStatus.CLOSED,
    (ConversationStatus.ASSIGNED, "close"): ConversationStatus.CLOSED,
}


def next_status(current: ConversationStatus, action: str) -> ConversationStatus:
    try:
        return TRANSITIONS[(current, action)]
    except KeyError:
        raise InvalidTransitionError(f"Cannot {action} a conversation that is {current.value}") from None


@dataclass
class AcceptedMessage:
    message: Message
    conversation: Conversation
    previous: Conversation


class ConversationLifecycleController:
    def __init__(
        self,
        storage: Storage,
        hub: ConnectionHub,
        engine: AutomatedResponseEngine,
        distress: DistressDetector | None = None,
        clock: Callable = utcnow,
    ) -> None:
        self.storage = storage
        self.hub = hub
        self.engine = engine
        self.distress = distress or DistressDetector()
        self._clock = clock
        self._locks: Dict[int, asyncio.Lock] = {}

    def _lock_for(self, conversation_id: int) -> asyncio.Lock:
        lock = self._locks.get(conversation_id)
        if lock is None:
            lock = self._locks.setdefault(conversation_id, asyncio.Lock())
        return lock

    async def get_conversation(self, conversation_id: int) -> Conversation:
        conversation = await self.storage.get_conversation(conversation_id)
        if conversation is None:
            raise NotFoundError(f"Conversation {conversation_id} not found")
        return conversation

    async def assign(self, conversation_id: int, agent_id: int) -> Conversation:
        agent = await self.storage.get_agent(agent_id)
        if agent is None or not agent.is_active:
            raise NotFoundError(f"Agent {agent_id} not found")
        async with self._lock_for(conversation_id):
            conversation = await self.get_conversation(conversation_id)
            status = next_status(conversation.status, "assign")
            now = self._clock()
            updated = await self.storage.update_conversation(
                conversation_id,
                {"status": status, "assigned_agent_id": agent_id, "last_agent_intervention_at": now, "updated_at": now},
            )
            if updated is None:
                raise NotFoundError(f"Conversation {conversation_id} not found")
            self.hub.broadcast_to_agents(conversation_assigned_event(updated))
        logger.info(
            "conversation_assigned",
            extra={"conversation_id": conversation_id, "agent_id": agent_id, "previous_agent_id": conversation.assigned_agent_id},
        )
        return updated

    async def close(self, conversation_id: int) -> Conversation:
        async with self._lock_for(conversation_id):
            conversation = await self.get_conversation(conversation_id)
            status = next_status(conversation.status, "close")
            updated = await self.storage.update_conversation(conversation_id, {"status": status, "updated_at": self._clock()})
            if updated is None:
                raise NotFoundError(f"Conversation {conversation_id} not found")
            self.hub.broadcast_to_conversation(conversation_id, conversation_closed_event(updated))
            self.engine.clear_history(conversation_id)
            self.distress.clear(conversation_id)
        self._locks.pop(conversation_id, None)
        logger.info("conversation_closed", extra={"conversation_id": conversation_id})
        return updated

    async def accept_message(self, conversation_id: int, sender: Sender, content: str) -> AcceptedMessage:
        text = (content or "").strip()
        if not text:
            raise ValidationError("Message content is required")
        async with self._lock_for(conversation_id):
            previous = await self.get_conversation(conversation_id)
            if previous.status == ConversationStatus.CLOSED:
                raise InvalidTransitionError(f"Conversation {conversation_id} is closed")
            message = await self.storage.create_message(conversation_id, sender, text)
            fields = {"updated_at": message.created_at}
            if sender.role == SenderRole.AGENT:
                fields["last_agent_intervention_at"] = message.created_at
            conversation = await self.storage.update_conversation(conversation_id, fields) or previous
            self.hub.broadcast_to_conversation(conversation_id, new_message_event(message))
        logger.info(
            "message_accepted",
            extra={"conversation_id": conversation_id, "message_id": message.id, "sender_role": sender.role.value},
        )
        return AcceptedMessage(message=message, conversation=conversation, previous=previous)

    async def list_conversations(self) -> List[ConversationSummary]:
        summaries: List[ConversationSummary] = []
        for conversation in await self.storage.list_conversations():
            customer = await self.storage.get_customer(conversation.customer_id)
            if customer is None:
                continue
            messages = await self.storage.list_messages(conversation.id)
            assigned = await self.storage.get_agent(conversation.assigned_agent_id) if conversation.assigned_agent_id else None
            summaries.append(
                ConversationSummary(
                    **conversation.model_dump(),
                    customer=customer,
                    assigned_agent=assigned,
                    last_message=messages[-1] if messages else None,
                    message_count=len(messages),
                    unread_count=sum(1 for m in messages if m.sender.role == SenderRole.CUSTOMER),
                )
            )
        summaries.sort(key=lambda s: s.updated_at, reverse=True)
        return summaries

    async def conversation_detail(self, conversation_id: int) -> ConversationDetail:
        conversation = await self.get_conversation(conversation_id)
        customer = await self.storage.get_customer(conversation.customer_id)
        if customer is None:
            raise NotFoundError(f"Customer {conversation.customer_id} not found")
        messages = await self.storage.list_messages(conversation_id)
        return ConversationDetail(conversation=conversation, customer=customer, messages=messages)

    async def latest_active_conversation(self, customer_id: int) -> Optional[Conversation]:
        rows = [c for c in await self.storage.list_conversations(customer_id=customer_id) if c.status != ConversationStatus.CLOSED]
        return rows[-1] if rows else None
