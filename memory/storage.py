from __future__ import annotations

import json
import logging
import os
from abc import ABC, abstractmethod
from threading import Lock
from typing import Any, Dict, List, Optional

from models.schemas import (
    Agent,
    Conversation,
    ConversationStatus,
    Customer,
    Message,
    Sender,
    SessionRecord,
    utcnow,
)
from settings import SETTINGS

logger = logging.getLogger(__name__)


class Storage(ABC):
    """Persistence collaborator. Every method is awaited; implementations may block on I/O."""

    @abstractmethod
    async def get_agent(self, agent_id: int) -> Optional[Agent]: ...

    @abstractmethod
    async def get_agent_by_email(self, email: str) -> Optional[Agent]: ...

    @abstractmethod
    async def list_agents(self) -> List[Agent]: ...

    @abstractmethod
    async def create_agent(self, fields: Dict[str, Any]) -> Agent: ...

    @abstractmethod
    async def update_agent(self, agent_id: int, fields: Dict[str, Any]) -> Optional[Agent]: ...

    @abstractmethod
    async def get_customer(self, customer_id: int) -> Optional[Customer]: ...

    @abstractmethod
    async def get_customer_by_session_id(self, session_id: str) -> Optional[Customer]: ...

    @abstractmethod
    async def get_customer_by_email(self, email: str) -> Optional[Customer]: ...

    @abstractmethod
    async def get_customer_by_ip(self, ip_address: str) -> Optional[Customer]: ...

    @abstractmethod
    async def create_customer(self, fields: Dict[str, Any]) -> Customer: ...

    @abstractmethod
    async def update_customer(self, customer_id: int, fields: Dict[str, Any]) -> Optional[Customer]: ...

    @abstractmethod
    async def get_conversation(self, conversation_id: int) -> Optional[Conversation]: ...

    @abstractmethod
    async def list_conversations(self, customer_id: int | None = None) -> List[Conversation]: ...

    @abstractmethod
    async def create_conversation(self, fields: Dict[str, Any]) -> Conversation: ...

    @abstractmethod
    async def update_conversation(self, conversation_id: int, fields: Dict[str, Any]) -> Optional[Conversation]: ...

    @abstractmethod
    async def create_message(self, conversation_id: int, sender: Sender, content: str) -> Message: ...

    @abstractmethod
    async def list_messages(self, conversation_id: int) -> List[Message]: ...

    @abstractmethod
    async def get_session(self, token: str) -> Optional[SessionRecord]: ...

    @abstractmethod
    async def create_session(self, record: SessionRecord) -> SessionRecord: ...

    @abstractmethod
    async def delete_session(self, token: str) -> None: ...

    @abstractmethod
    async def list_sessions(self) -> List[SessionRecord]: ...


class InMemoryStorage(Storage):
    """Dictionary-backed store, optionally mirrored to a JSON file after every write."""

    def __init__(self, path: str | None = None) -> None:
        self.path = SETTINGS.store_path if path is None else path
        self._agents: Dict[int, Agent] = {}
        self._customers: Dict[int, Customer] = {}
        self._conversations: Dict[int, Conversation] = {}
        self._messages: Dict[int, List[Message]] = {}
        self._sessions: Dict[str, SessionRecord] = {}
        self._counters: Dict[str, int] = {"agent": 0, "customer": 0, "conversation": 0, "message": 0}
        self._lock = Lock()
        self._load()

    def _next_id(self, table: str) -> int:
        self._counters[table] += 1
        return self._counters[table]

    def _load(self) -> None:
        if not self.path or not os.path.exists(self.path):
            return
        try:
            with open(self.path, "r", encoding="utf-8") as fh:
                payload = json.load(fh)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("store_load_failed", extra={"path": self.path, "error": repr(exc)})
            return
        for raw in payload.get("agents", []):
            agent = Agent.model_validate(raw)
            self._agents[agent.id] = agent
        for raw in payload.get("customers", []):
            customer = Customer.model_validate(raw)
            self._customers[customer.id] = customer
        for raw in payload.get("conversations", []):
            conversation = Conversation.model_validate(raw)
            self._conversations[conversation.id] = conversation
        for raw in payload.get("messages", []):
            message = Message.model_validate(raw)
            self._messages.setdefault(message.conversation_id, []).append(message)
        for raw in payload.get("sessions", []):
            record = SessionRecord.model_validate(raw)
            self._sessions[record.token] = record
        self._counters.update({k: int(v) for k, v in dict(payload.get("counters", {})).items()})

    def _persist(self) -> None:
        if not self.path:
            return
        os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
        payload = {
            # password_hash is excluded from normal dumps; keep it in the durable copy.
            "agents": [{**a.model_dump(mode="json"), "password_hash": a.password_hash} for a in self._agents.values()],
            "customers": [c.model_dump(mode="json") for c in self._customers.values()],
            "conversations": [c.model_dump(mode="json") for c in self._conversations.values()],
            "messages": [
                m.model_dump(mode="json", exclude={"sender_type", "sender_id"})
                for rows in self._messages.values()
                for m in rows
            ],
            "sessions": [s.model_dump(mode="json") for s in self._sessions.values()],
            "counters": self._counters,
        }
        tmp = f"{self.path}.tmp"
        with open(tmp, "w", encoding="utf-8") as fh:
            json.dump(payload, fh, ensure_ascii=True)
        os.replace(tmp, self.path)

    # Agents

    async def get_agent(self, agent_id: int) -> Optional[Agent]:
        return self._agents.get(agent_id)

    async def get_agent_by_email(self, email: str) -> Optional[Agent]:
        needle = email.strip().lower()
        return next((a for a in self._agents.values() if a.email.lower() == needle), None)

    async def list_agents(self) -> List[Agent]:
        return sorted(self._agents.values(), key=lambda a: a.id)

    async def create_agent(self, fields: Dict[str, Any]) -> Agent:
        with self._lock:
            agent = Agent(id=self._next_id("agent"), **fields)
            self._agents[agent.id] = agent
            self._persist()
            return agent

    async def update_agent(self, agent_id: int, fields: Dict[str, Any]) -> Optional[Agent]:
        with self._lock:
            agent = self._agents.get(agent_id)
            if agent is None:
                return None
            updated = agent.model_copy(update={**fields, "updated_at": utcnow()})
            self._agents[agent_id] = updated
            self._persist()
            return updated

    # Customers

    async def get_customer(self, customer_id: int) -> Optional[Customer]:
        return self._customers.get(customer_id)

    async def get_customer_by_session_id(self, session_id: str) -> Optional[Customer]:
        return next((c for c in self._customers.values() if c.session_id == session_id), None)

    async def get_customer_by_email(self, email: str) -> Optional[Customer]:
        needle = email.strip().lower()
        return next((c for c in self._customers.values() if (c.email or "").lower() == needle), None)

    async def get_customer_by_ip(self, ip_address: str) -> Optional[Customer]:
        return next((c for c in self._customers.values() if c.ip_address == ip_address), None)

    async def create_customer(self, fields: Dict[str, Any]) -> Customer:
        with self._lock:
            customer = Customer(id=self._next_id("customer"), **fields)
            self._customers[customer.id] = customer
            self._persist()
            return customer

    async def update_customer(self, customer_id: int, fields: Dict[str, Any]) -> Optional[Customer]:
        with self._lock:
            customer = self._customers.get(customer_id)
            if customer is None:
                return None
            updated = customer.model_copy(update=fields)
            self._customers[customer_id] = updated
            self._persist()
            return updated

    # Conversations

    async def get_conversation(self, conversation_id: int) -> Optional[Conversation]:
        return self._conversations.get(conversation_id)

    async def list_conversations(self, customer_id: int | None = None) -> List[Conversation]:
        rows = [c for c in self._conversations.values() if customer_id is None or c.customer_id == customer_id]
        return sorted(rows, key=lambda c: c.id)

    async def create_conversation(self, fields: Dict[str, Any]) -> Conversation:
        with self._lock:
            conversation = Conversation(id=self._next_id("conversation"), **fields)
            self._conversations[conversation.id] = conversation
            self._messages.setdefault(conversation.id, [])
            self._persist()
            return conversation

    async def update_conversation(self, conversation_id: int, fields: Dict[str, Any]) -> Optional[Conversation]:
        with self._lock:
            conversation = self._conversations.get(conversation_id)
            if conversation is None:
                return None
            updated = conversation.model_copy(update=fields)
            self._conversations[conversation_id] = updated
            self._persist()
            return updated

    # Messages

    async def create_message(self, conversation_id: int, sender: Sender, content: str) -> Message:
        with self._lock:
            message = Message(id=self._next_id("message"), conversation_id=conversation_id, sender=sender, content=content)
            self._messages.setdefault(conversation_id, []).append(message)
            self._persist()
            return message

    async def list_messages(self, conversation_id: int) -> List[Message]:
        return list(self._messages.get(conversation_id, []))

    # Sessions

    async def get_session(self, token: str) -> Optional[SessionRecord]:
        return self._sessions.get(token)

    async def create_session(self, record: SessionRecord) -> SessionRecord:
        with self._lock:
            self._sessions[record.token] = record
            self._persist()
            return record

    async def delete_session(self, token: str) -> None:
        with self._lock:
            if self._sessions.pop(token, None) is not None:
                self._persist()

    async def list_sessions(self) -> List[SessionRecord]:
        return list(self._sessions.values())
