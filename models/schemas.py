from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, computed_field, model_validator
from pydantic.alias_generators import to_camel

from settings import SETTINGS


AUTOMATED_SENDER_NAME = "HelpBoard AI Assistant"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    """Snake-case in Python, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class AgentRole(str, Enum):
    ADMIN = "admin"
    AGENT = "agent"
    SUPERVISOR = "supervisor"


class ConversationStatus(str, Enum):
    OPEN = "open"
    ASSIGNED = "assigned"
    CLOSED = "closed"


class SenderRole(str, Enum):
    CUSTOMER = "customer"
    AGENT = "agent"
    AUTOMATED = "automated"
    SYSTEM = "system"


class Sender(CamelModel):
    role: SenderRole
    id: Optional[int] = None
    name: Optional[str] = None

    @model_validator(mode="after")
    def _check_identity(self) -> "Sender":
        if self.role in {SenderRole.CUSTOMER, SenderRole.AGENT} and self.id is None:
            raise ValueError(f"{self.role.value} sender requires an id")
        if self.role in {SenderRole.AUTOMATED, SenderRole.SYSTEM} and self.id is not None:
            raise ValueError(f"{self.role.value} sender carries no id")
        return self

    @classmethod
    def for_customer(cls, customer: "Customer") -> "Sender":
        return cls(role=SenderRole.CUSTOMER, id=customer.id, name=customer.name)

    @classmethod
    def for_agent(cls, agent: "Agent") -> "Sender":
        return cls(role=SenderRole.AGENT, id=agent.id, name=agent.name)

    @classmethod
    def automated(cls) -> "Sender":
        return cls(role=SenderRole.AUTOMATED, name=AUTOMATED_SENDER_NAME)

    @classmethod
    def system(cls) -> "Sender":
        return cls(role=SenderRole.SYSTEM, name="System")


class Agent(CamelModel):
    id: int
    email: str
    name: str
    password_hash: str = Field(default="", exclude=True, repr=False)
    role: AgentRole = AgentRole.AGENT
    is_active: bool = True
    is_available: bool = True
    department: Optional[str] = None
    phone: Optional[str] = None
    last_login_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Customer(CamelModel):
    id: int
    session_id: str
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    country: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    timezone: Optional[str] = None
    language: Optional[str] = None
    platform: Optional[str] = None
    page_url: Optional[str] = None
    page_title: Optional[str] = None
    referrer: Optional[str] = None
    is_identified: bool = False
    last_seen: datetime = Field(default_factory=utcnow)
    created_at: datetime = Field(default_factory=utcnow)


class Conversation(CamelModel):
    id: int
    customer_id: int
    assigned_agent_id: Optional[int] = None
    status: ConversationStatus = ConversationStatus.OPEN
    last_agent_intervention_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Message(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: int
    conversation_id: int
    sender: Sender
    content: str
    created_at: datetime = Field(default_factory=utcnow)

    @computed_field(alias="senderType")  # type: ignore[misc]
    @property
    def sender_type(self) -> str:
        return self.sender.role.value

    @computed_field(alias="senderId")  # type: ignore[misc]
    @property
    def sender_id(self) -> Optional[int]:
        return self.sender.id


class SessionRecord(CamelModel):
    token: str
    agent_id: int
    expires_at: datetime
    data: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or utcnow()) >= self.expires_at


class TrainingEntry(CamelModel):
    question: str = Field(min_length=1)
    answer: str = Field(min_length=1)
    category: str = Field(min_length=1)
    context: Optional[str] = None


class AISettings(CamelModel):
    enable_auto_response: bool = True
    response_delay_ms: int = Field(default=2000, ge=0)
    agent_grace_window_ms: int = Field(default=30_000, ge=0)
    max_response_length: int = Field(default=300, ge=1)
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    model: str = "gpt-4o"
    match_threshold: float = Field(default=0.6, gt=0.0, le=1.0)
    history_limit: int = Field(default=10, ge=2)

    @classmethod
    def from_settings(cls) -> "AISettings":
        return cls(
            enable_auto_response=SETTINGS.auto_response_enabled,
            response_delay_ms=SETTINGS.response_delay_ms,
            agent_grace_window_ms=SETTINGS.agent_grace_window_ms,
            max_response_length=SETTINGS.max_response_length,
            temperature=SETTINGS.temperature,
            model=SETTINGS.llm_model,
            match_threshold=SETTINGS.match_threshold,
            history_limit=SETTINGS.history_limit,
        )


class AISettingsUpdate(CamelModel):
    enable_auto_response: Optional[bool] = None
    response_delay_ms: Optional[int] = Field(default=None, ge=0)
    agent_grace_window_ms: Optional[int] = Field(default=None, ge=0)
    max_response_length: Optional[int] = Field(default=None, ge=1)
    temperature: Optional[float] = Field(default=None, ge=0.0, le=2.0)
    model: Optional[str] = None
    match_threshold: Optional[float] = Field(default=None, gt=0.0, le=1.0)
    history_limit: Optional[int] = Field(default=None, ge=2)


class LoginRequest(CamelModel):
    email: EmailStr
    password: str = Field(min_length=1)


class CustomerInitiateRequest(CamelModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    country: Optional[str] = None
    timezone: Optional[str] = None
    language: Optional[str] = None
    user_agent: Optional[str] = None
    platform: Optional[str] = None
    page_url: Optional[str] = None
    page_title: Optional[str] = None
    referrer: Optional[str] = None

    def contact_fields(self) -> Dict[str, Any]:
        return {k: v for k, v in self.model_dump().items() if v not in (None, "")}


class CreateAgentRequest(CamelModel):
    email: EmailStr
    name: str = Field(min_length=1)
    password: str = Field(min_length=6)
    role: AgentRole = AgentRole.AGENT
    department: Optional[str] = None
    phone: Optional[str] = None


class AssignRequest(CamelModel):
    agent_id: Optional[int] = None


class SendMessageRequest(CamelModel):
    content: str = Field(min_length=1)


class AvailabilityRequest(CamelModel):
    is_available: bool


class RetrainRequest(CamelModel):
    conversation_id: Optional[int] = None


class LoginResult(CamelModel):
    session_token: str
    expires_at: datetime
    agent: Agent


class InitiationResult(CamelModel):
    session_id: str
    conversation_id: int
    is_returning_customer: bool
    customer: Customer


class ConversationSummary(Conversation):
    customer: Customer
    assigned_agent: Optional[Agent] = None
    last_message: Optional[Message] = None
    message_count: int = 0
    unread_count: int = 0


class ConversationDetail(CamelModel):
    conversation: Conversation
    customer: Customer
    messages: List[Message] = Field(default_factory=list)
