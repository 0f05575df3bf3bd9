from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

import pydantic
from fastapi import WebSocket, WebSocketDisconnect

from channels.hub import ConnectionRole, ConnectionTag
from conversations.router import ConversationRouter
from errors import AuthenticationError, HelpBoardError, NotFoundError, ValidationError
from models.schemas import Agent, Sender
from models.wire import (
    INBOUND_FRAME_TYPES,
    AgentAuthFrame,
    AgentAvailabilityFrame,
    ChatMessageFrame,
    CustomerInitFrame,
    TypingFrame,
    auth_error_event,
    auth_success_event,
    error_event,
    parse_inbound,
    typing_event,
)
from settings import SETTINGS

logger = logging.getLogger(__name__)


class WebChatSession:
    """Per-socket state: who is on the other end and their typing timers."""

    def __init__(self, websocket: WebSocket, router: ConversationRouter, client_ip: str | None = None) -> None:
        self.websocket = websocket
        self.router = router
        self.client_ip = client_ip
        self.agent: Optional[Agent] = None
        self._typing_timers: Dict[int, asyncio.TimerHandle] = {}

    @property
    def tag(self) -> Optional[ConnectionTag]:
        return self.router.hub.tag_of(self.websocket)

    def reply(self, event: Dict[str, Any]) -> None:
        self.router.hub.send(self.websocket, event)

    def cancel_typing(self, conversation_id: int | None = None) -> None:
        ids = list(self._typing_timers) if conversation_id is None else [conversation_id]
        for cid in ids:
            handle = self._typing_timers.pop(cid, None)
            if handle is not None:
                handle.cancel()

    def _typing_sender(self) -> Dict[str, Any]:
        tag = self.tag
        if tag is not None and tag.role == ConnectionRole.AGENT and self.agent is not None:
            return {"sender_type": "agent", "sender_id": self.agent.id, "sender_name": self.agent.name}
        return {"sender_type": "customer", "sender_id": tag.customer_id if tag else None}

    def broadcast_typing(self, conversation_id: int, is_typing: bool) -> None:
        self.cancel_typing(conversation_id)
        sender = self._typing_sender()
        self.router.hub.broadcast_to_conversation(
            conversation_id, typing_event(conversation_id, is_typing, **sender), exclude=self.websocket
        )
        if is_typing:
            loop = asyncio.get_running_loop()
            self._typing_timers[conversation_id] = loop.call_later(
                SETTINGS.typing_timeout_seconds, self._expire_typing, conversation_id, sender
            )

    def _expire_typing(self, conversation_id: int, sender: Dict[str, Any]) -> None:
        self._typing_timers.pop(conversation_id, None)
        self.router.hub.broadcast_to_conversation(
            conversation_id, typing_event(conversation_id, False, **sender), exclude=self.websocket
        )


async def _on_agent_auth(session: WebChatSession, frame: AgentAuthFrame) -> None:
    router = session.router
    token = frame.session_token
    try:
        if token:
            agent = await router.session_store.validate(token)
        else:
            result = await router.login(frame.email or "", frame.password or "")
            agent, token = result.agent, result.session_token
    except AuthenticationError as exc:
        session.reply(auth_error_event(exc.message))
        return
    session.agent = agent
    router.hub.register(session.websocket, ConnectionTag.agent(agent.id))
    session.reply(auth_success_event(agent, token if not frame.session_token else None))
    logger.info("ws_agent_authenticated", extra={"agent_id": agent.id})


async def _on_customer_init(session: WebChatSession, frame: CustomerInitFrame) -> None:
    router = session.router
    if frame.session_id:
        customer = await router.identity.customer_for_session(frame.session_id)
        if frame.conversation_id is not None:
            conversation = await router.lifecycle.get_conversation(frame.conversation_id)
            if conversation.customer_id != customer.id:
                raise NotFoundError(f"Conversation {frame.conversation_id} not found")
        else:
            conversation = await router.lifecycle.latest_active_conversation(customer.id)
            if conversation is None:
                raise NotFoundError("No open conversation for this session")
        payload = {
            "customer": customer.to_wire(),
            "conversationId": conversation.id,
            "sessionId": customer.session_id,
            "isReturningCustomer": True,
        }
    else:
        result = await router.identity.resolve(frame, session.client_ip)
        customer, conversation_id = result.customer, result.conversation_id
        conversation = await router.lifecycle.get_conversation(conversation_id)
        payload = {
            "customer": customer.to_wire(),
            "conversationId": conversation.id,
            "sessionId": result.session_id,
            "isReturningCustomer": result.is_returning_customer,
        }
    router.hub.register(session.websocket, ConnectionTag.customer(conversation.id, customer.id))
    session.reply({"type": "init_success", **payload})
    logger.info("ws_customer_initialized", extra={"customer_id": customer.id, "conversation_id": conversation.id})


async def _on_chat_message(session: WebChatSession, frame: ChatMessageFrame) -> None:
    tag = session.tag
    if tag is None:
        raise AuthenticationError("Connection is not authenticated")
    if tag.role == ConnectionRole.AGENT:
        if session.agent is None:
            raise AuthenticationError("Connection is not authenticated")
        sender = Sender.for_agent(session.agent)
    else:
        if tag.conversation_id != frame.conversation_id:
            raise ValidationError("Customers may only post to their own conversation")
        customer = await session.router.storage.get_customer(tag.customer_id) if tag.customer_id else None
        if customer is None:
            raise NotFoundError("Customer not found")
        sender = Sender.for_customer(customer)
    if frame.sender_type is not None and frame.sender_type != sender.role:
        raise ValidationError("senderType does not match this connection")
    if frame.sender_id is not None and frame.sender_id != sender.id:
        raise ValidationError("senderId does not match this connection")
    session.cancel_typing(frame.conversation_id)
    await session.router.handle_message(frame.conversation_id, sender, frame.content)


async def _on_typing(session: WebChatSession, frame: TypingFrame) -> None:
    tag = session.tag
    if tag is None:
        raise AuthenticationError("Connection is not authenticated")
    if tag.role == ConnectionRole.CUSTOMER and tag.conversation_id != frame.conversation_id:
        raise ValidationError("Customers may only signal typing in their own conversation")
    session.broadcast_typing(frame.conversation_id, frame.is_typing)


async def _on_agent_availability(session: WebChatSession, frame: AgentAvailabilityFrame) -> None:
    tag = session.tag
    if tag is None or tag.role != ConnectionRole.AGENT or session.agent is None:
        raise AuthenticationError("Only agents can change availability")
    session.agent = await session.router.set_availability(session.agent, frame.is_available)


FRAME_HANDLERS: Dict[str, Callable[[WebChatSession, Any], Awaitable[None]]] = {
    "agent_auth": _on_agent_auth,
    "customer_init": _on_customer_init,
    "chat_message": _on_chat_message,
    "typing": _on_typing,
    "agent_availability": _on_agent_availability,
}

_unhandled = set(INBOUND_FRAME_TYPES) - set(FRAME_HANDLERS)
if _unhandled:
    raise RuntimeError(f"no websocket handler for frame types: {sorted(_unhandled)}")


async def dispatch_frame(session: WebChatSession, raw_text: str) -> None:
    try:
        frame = parse_inbound(json.loads(raw_text))
    except json.JSONDecodeError:
        session.reply(error_event("Malformed JSON frame", ValidationError.code))
        return
    except pydantic.ValidationError as exc:
        session.reply(error_event(f"Invalid frame: {exc.errors()[0].get('msg', 'invalid')}", ValidationError.code))
        return
    try:
        await FRAME_HANDLERS[frame.type](session, frame)
    except HelpBoardError as exc:
        session.reply(error_event(exc.message, exc.code))
    except Exception:
        logger.exception("ws_frame_failed", extra={"frame_type": frame.type})
        session.reply(error_event("Internal error processing frame"))


async def websocket_chat_handler(websocket: WebSocket, router: ConversationRouter) -> None:
    await websocket.accept()
    client_ip = websocket.client.host if websocket.client else None
    session = WebChatSession(websocket, router, client_ip=client_ip)
    router.hub.register(websocket)
    try:
        while True:
            raw = await websocket.receive_text()
            await dispatch_frame(session, raw)
    except WebSocketDisconnect:
        logger.info("ws_disconnected", extra={"role": session.tag.role.value if session.tag else None})
    finally:
        session.cancel_typing()
        router.hub.unregister(websocket)
