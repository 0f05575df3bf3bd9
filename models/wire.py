from __future__ import annotations

from typing import Annotated, Any, Dict, Literal, Optional, Union, get_args

from pydantic import Field, TypeAdapter, model_validator

from models.schemas import Agent, CamelModel, Conversation, CustomerInitiateRequest, Message, SenderRole


class AgentAuthFrame(CamelModel):
    type: Literal["agent_auth"]
    email: Optional[str] = None
    password: Optional[str] = None
    session_token: Optional[str] = None

    @model_validator(mode="after")
    def _credentials_or_token(self) -> "AgentAuthFrame":
        if self.session_token:
            return self
        if not (self.email and self.password):
            raise ValueError("agent_auth requires email and password or a sessionToken")
        return self


class CustomerInitFrame(CustomerInitiateRequest):
    type: Literal["customer_init"]
    session_id: Optional[str] = None
    conversation_id: Optional[int] = None


class ChatMessageFrame(CamelModel):
    type: Literal["chat_message"]
    conversation_id: int
    content: str = Field(min_length=1)
    sender_id: Optional[int] = None
    sender_type: Optional[SenderRole] = None


class TypingFrame(CamelModel):
    type: Literal["typing"]
    conversation_id: int
    is_typing: bool


class AgentAvailabilityFrame(CamelModel):
    type: Literal["agent_availability"]
    is_available: bool


InboundFrame = Annotated[
    Union[AgentAuthFrame, CustomerInitFrame, ChatMessageFrame, TypingFrame, AgentAvailabilityFrame],
    Field(discriminator="type"),
]

INBOUND_FRAME_ADAPTER: TypeAdapter = TypeAdapter(InboundFrame)

# Every frame type the dispatcher has to handle, keyed by its "type" literal.
INBOUND_FRAME_TYPES: Dict[str, type] = {
    get_args(model.model_fields["type"].annotation)[0]: model for model in get_args(get_args(InboundFrame)[0])
}


def parse_inbound(raw: Any) -> Union[AgentAuthFrame, CustomerInitFrame, ChatMessageFrame, TypingFrame, AgentAvailabilityFrame]:
    return INBOUND_FRAME_ADAPTER.validate_python(raw)


def auth_success_event(agent: Agent, session_token: str | None = None) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"type": "auth_success", "agent": agent.to_wire()}
    if session_token:
        payload["sessionToken"] = session_token
    return payload


def auth_error_event(message: str) -> Dict[str, Any]:
    return {"type": "auth_error", "message": message}


def new_message_event(message: Message) -> Dict[str, Any]:
    return {"type": "new_message", "conversationId": message.conversation_id, "message": message.to_wire()}


def typing_event(conversation_id: int, is_typing: bool, sender_type: str, sender_id: int | None = None, sender_name: str | None = None) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "type": "typing",
        "conversationId": conversation_id,
        "isTyping": is_typing,
        "senderType": sender_type,
        "senderId": sender_id,
    }
    if sender_name:
        payload["senderName"] = sender_name
    return payload


def conversation_assigned_event(conversation: Conversation) -> Dict[str, Any]:
    return {
        "type": "conversation_assigned",
        "conversationId": conversation.id,
        "agentId": conversation.assigned_agent_id,
        "conversation": conversation.to_wire(),
    }


def conversation_closed_event(conversation: Conversation) -> Dict[str, Any]:
    return {"type": "conversation_closed", "conversationId": conversation.id, "conversation": conversation.to_wire()}


def takeover_suggested_event(conversation_id: int, reason: str, signal: Dict[str, Any]) -> Dict[str, Any]:
    return {"type": "takeover_suggested", "conversationId": conversation_id, "reason": reason, "signal": signal}


def agent_status_changed_event(agent: Agent) -> Dict[str, Any]:
    return {
        "type": "agent_status_changed",
        "agent": {"id": agent.id, "name": agent.name, "isAvailable": agent.is_available},
    }


def error_event(message: str, code: str = "error") -> Dict[str, Any]:
    return {"type": "error", "message": message, "code": code}
