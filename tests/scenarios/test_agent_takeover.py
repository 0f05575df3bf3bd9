from __future__ import annotations

import asyncio

from agents.llm_runtime import LLMResult
from agents.response_engine import AutomatedResponseEngine
from channels.hub import ConnectionTag
from conversations.router import ConversationRouter
from memory.storage import InMemoryStorage
from models.schemas import AISettings, CustomerInitiateRequest, Sender


class FakeLLM:
    provider = "fake"
    model = "fake-model"

    def __init__(self) -> None:
        self.calls = 0

    def available(self) -> bool:
        return True

    async def generate(self, system_prompt, history, **kwargs):
        self.calls += 1
        return LLMResult(text="Automated answer", provider=self.provider, model=self.model, raw={})


class FakeConnection:
    def __init__(self) -> None:
        self.sent = []

    async def send_json(self, data):
        self.sent.append(data)


def test_assigned_agent_suppresses_automation_within_grace_window():
    async def _run():
        llm = FakeLLM()
        router = ConversationRouter(
            storage=InMemoryStorage(path=""),
            llm=llm,
            engine=AutomatedResponseEngine(llm=llm, settings=AISettings(response_delay_ms=0)),
        )
        agent = await router.ensure_bootstrap_agent()
        agent_conn = FakeConnection()
        router.hub.register(agent_conn, ConnectionTag.agent(agent.id))

        started = await router.identity.resolve(CustomerInitiateRequest(name="Dee"), "10.2.2.2")
        await router.lifecycle.assign(started.conversation_id, agent.id)
        await router.handle_message(started.conversation_id, Sender.for_customer(started.customer), "Hello again")
        await router.wait_idle()

        senders = [e["message"]["senderType"] for e in agent_conn.sent if e["type"] == "new_message"]
        assert senders == ["customer"]
        assert llm.calls == 0

    asyncio.run(_run())


def test_distressed_customer_triggers_takeover_suggestion():
    async def _run():
        llm = FakeLLM()
        router = ConversationRouter(
            storage=InMemoryStorage(path=""),
            llm=llm,
            engine=AutomatedResponseEngine(llm=llm, settings=AISettings(enable_auto_response=False)),
        )
        agent_conn = FakeConnection()
        router.hub.register(agent_conn, ConnectionTag.agent(1))
        started = await router.identity.resolve(CustomerInitiateRequest(name="Eve"), "10.2.2.3")
        await router.handle_message(started.conversation_id, Sender.for_customer(started.customer), "I want to speak to a human")
        await router.wait_idle()

        suggestions = [e for e in agent_conn.sent if e["type"] == "takeover_suggested"]
        assert len(suggestions) == 1
        assert suggestions[0]["reason"] == "customer_requested_human"
        assert llm.calls == 0

    asyncio.run(_run())
