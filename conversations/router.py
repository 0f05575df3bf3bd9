from __future__ import annotations

import asyncio
import logging
from typing import Dict, Optional, Set

import bcrypt

from agents.distress_detector import DistressDetector
from agents.escalation_policy import should_automate_conversation
from agents.llm_runtime import LLMRuntime
from agents.response_engine import AutomatedResponseEngine
from channels.hub import ConnectionHub
from conversations.identity import CustomerIdentityResolver
from conversations.lifecycle import AcceptedMessage, ConversationLifecycleController
from errors import AuthenticationError, InvalidTransitionError, ValidationError
from memory.session_store import SessionStore
from memory.storage import InMemoryStorage, Storage
from models.schemas import (
    Agent,
    AgentRole,
    ConversationStatus,
    CreateAgentRequest,
    LoginResult,
    Message,
    Sender,
    SenderRole,
    utcnow,
)
from models.wire import agent_status_changed_event, takeover_suggested_event, typing_event
from settings import SETTINGS

logger = logging.getLogger(__name__)


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


class ConversationRouter:
    """Wires the components together and routes every accepted message.

    Customer messages may schedule an automated reply. Replies for one
    conversation run on a chain so they come out in message order, while other
    conversations proceed independently.
    """

    def __init__(
        self,
        storage: Storage | None = None,
        hub: ConnectionHub | None = None,
        llm: LLMRuntime | None = None,
        engine: AutomatedResponseEngine | None = None,
        session_store: SessionStore | None = None,
        identity: CustomerIdentityResolver | None = None,
        lifecycle: ConversationLifecycleController | None = None,
        distress: DistressDetector | None = None,
    ) -> None:
        self.storage = storage or InMemoryStorage()
        self.hub = hub or ConnectionHub()
        self.llm = llm or LLMRuntime()
        self.engine = engine or AutomatedResponseEngine(llm=self.llm)
        self.session_store = session_store or SessionStore(self.storage)
        self.identity = identity or CustomerIdentityResolver(self.storage)
        self.distress = distress or DistressDetector()
        self.lifecycle = lifecycle or ConversationLifecycleController(
            self.storage, self.hub, self.engine, distress=self.distress
        )
        self._reply_chains: Dict[int, asyncio.Task] = {}
        self._pending: Set[asyncio.Task] = set()

    # Agents and sessions

    async def ensure_bootstrap_agent(self) -> Optional[Agent]:
        if await self.storage.list_agents():
            return None
        agent = await self.storage.create_agent(
            {
                "email": SETTINGS.bootstrap_agent_email,
                "name": SETTINGS.bootstrap_agent_name,
                "password_hash": hash_password(SETTINGS.bootstrap_agent_password),
                "role": AgentRole(SETTINGS.bootstrap_agent_role),
            }
        )
        logger.info("bootstrap_agent_created", extra={"agent_id": agent.id, "email": agent.email})
        return agent

    async def login(self, email: str, password: str) -> LoginResult:
        agent = await self.storage.get_agent_by_email(email)
        if agent is None or not agent.is_active or not verify_password(password, agent.password_hash):
            logger.warning("login_rejected", extra={"email": email})
            raise AuthenticationError("Invalid credentials")
        agent = await self.storage.update_agent(agent.id, {"last_login_at": utcnow()}) or agent
        record = await self.session_store.create_session(agent, {"email": agent.email})
        return LoginResult(session_token=record.token, expires_at=record.expires_at, agent=agent)

    async def create_agent(self, request: CreateAgentRequest) -> Agent:
        if await self.storage.get_agent_by_email(request.email) is not None:
            raise ValidationError("An agent with this email already exists")
        fields = request.model_dump(exclude={"password"})
        fields["password_hash"] = hash_password(request.password)
        agent = await self.storage.create_agent(fields)
        logger.info("agent_created", extra={"agent_id": agent.id, "role": agent.role.value})
        return agent

    async def set_availability(self, agent: Agent, is_available: bool) -> Agent:
        updated = await self.storage.update_agent(agent.id, {"is_available": is_available}) or agent
        self.hub.broadcast_to_agents(agent_status_changed_event(updated))
        return updated

    # Training

    async def retrain(self, conversation_id: int | None = None) -> int:
        if conversation_id is not None:
            conversations = [await self.lifecycle.get_conversation(conversation_id)]
        else:
            conversations = await self.storage.list_conversations()
        learned = 0
        for conversation in conversations:
            questions, answers = [], []
            pending: Optional[str] = None
            for message in await self.storage.list_messages(conversation.id):
                if message.sender.role == SenderRole.CUSTOMER:
                    pending = message.content
                elif message.sender.role == SenderRole.AGENT and pending is not None:
                    questions.append(pending)
                    answers.append(message.content)
                    pending = None
            if questions:
                learned += self.engine.train_from_conversation(conversation.id, questions, answers)
        return learned

    async def conversation_sentiment(self, conversation_id: int) -> Dict[str, object]:
        await self.lifecycle.get_conversation(conversation_id)
        messages = await self.storage.list_messages(conversation_id)
        lines = [f"{m.sender.role.value}: {m.content}" for m in messages]
        return await self.engine.analyze_sentiment(lines)

    # Messages

    async def handle_message(self, conversation_id: int, sender: Sender, content: str) -> Message:
        accepted = await self.lifecycle.accept_message(conversation_id, sender, content)
        if sender.role == SenderRole.CUSTOMER:
            self._check_distress(conversation_id, accepted.message.content)
            if self._automation_allowed(accepted):
                self._schedule_reply(conversation_id, accepted.message)
        return accepted.message

    def _check_distress(self, conversation_id: int, text: str) -> None:
        signal = self.distress.analyze(conversation_id, text)
        if signal.escalate:
            logger.info("takeover_suggested", extra={"conversation_id": conversation_id, "reason": signal.reason})
            self.hub.broadcast_to_agents(takeover_suggested_event(conversation_id, signal.reason, signal.to_wire()))

    def _automation_allowed(self, accepted: AcceptedMessage) -> bool:
        settings = self.engine.settings
        if not settings.enable_auto_response:
            return False
        # Response delay is waited out by the reply task.
        gate = settings.model_copy(update={"response_delay_ms": 0})
        return should_automate_conversation(accepted.conversation, gate, utcnow())

    def _schedule_reply(self, conversation_id: int, message: Message) -> None:
        previous = self._reply_chains.get(conversation_id)
        task = asyncio.get_running_loop().create_task(self._reply(conversation_id, message, previous))
        self._reply_chains[conversation_id] = task
        self._pending.add(task)
        task.add_done_callback(lambda t: self._reply_done(conversation_id, t))

    def _reply_done(self, conversation_id: int, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if self._reply_chains.get(conversation_id) is task:
            self._reply_chains.pop(conversation_id, None)

    async def _reply(self, conversation_id: int, message: Message, previous: asyncio.Task | None) -> None:
        if previous is not None:
            await asyncio.gather(previous, return_exceptions=True)
        try:
            await asyncio.sleep(self.engine.settings.response_delay_ms / 1000)
            conversation = await self.storage.get_conversation(conversation_id)
            if conversation is None or not should_automate_conversation(conversation, self.engine.settings, utcnow()):
                logger.info("auto_reply_skipped", extra={"conversation_id": conversation_id, "message_id": message.id})
                return
            customer = await self.storage.get_customer(conversation.customer_id)
            customer_info = customer.model_dump(include={"email", "country", "timezone"}) if customer else {}
            self.hub.broadcast_to_conversation(conversation_id, typing_event(conversation_id, True, SenderRole.AUTOMATED.value))
            try:
                reply = await self.engine.respond(
                    conversation_id,
                    message.content,
                    customer_display_name=customer.name if customer else None,
                    customer_info=customer_info,
                )
            finally:
                self.hub.broadcast_to_conversation(conversation_id, typing_event(conversation_id, False, SenderRole.AUTOMATED.value))
            current = await self.storage.get_conversation(conversation_id)
            if current is None or current.status == ConversationStatus.CLOSED:
                self._drop_reply(conversation_id)
                return
            await self.lifecycle.accept_message(conversation_id, Sender.automated(), reply)
        except asyncio.CancelledError:
            raise
        except InvalidTransitionError:
            self._drop_reply(conversation_id)
        except Exception:
            logger.exception("auto_reply_failed", extra={"conversation_id": conversation_id, "message_id": message.id})

    def _drop_reply(self, conversation_id: int) -> None:
        # The engine recorded the reply after close cleared its history.
        self.engine.clear_history(conversation_id)
        logger.info("auto_reply_dropped_closed", extra={"conversation_id": conversation_id})

    async def wait_idle(self) -> None:
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
        await self.hub.drain()

    async def shutdown(self) -> None:
        for task in list(self._pending):
            task.cancel()
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
        self._reply_chains.clear()
        self.hub.close_all()
