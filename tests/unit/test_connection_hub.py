from __future__ import annotations

import asyncio

import pytest

from channels.hub import ConnectionHub, ConnectionTag


class FakeConnection:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.sent = []

    async def send_json(self, data):
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(data)


def test_conversation_broadcast_reaches_participants_and_agents():
    async def _run():
        hub = ConnectionHub()
        customer_a, customer_b, agent, anonymous = FakeConnection(), FakeConnection(), FakeConnection(), FakeConnection()
        hub.register(customer_a, ConnectionTag.customer(1, customer_id=10))
        hub.register(customer_b, ConnectionTag.customer(2, customer_id=20))
        hub.register(agent, ConnectionTag.agent(5))
        hub.register(anonymous)

        assert hub.broadcast_to_conversation(1, {"type": "new_message", "n": 1}) == 2
        assert hub.broadcast_to_agents({"type": "conversation_assigned"}) == 1
        await hub.drain()

        assert [e["type"] for e in customer_a.sent] == ["new_message"]
        assert customer_b.sent == []
        assert [e["type"] for e in agent.sent] == ["new_message", "conversation_assigned"]
        assert anonymous.sent == []

    asyncio.run(_run())


def test_per_target_order_follows_producer_order():
    async def _run():
        hub = ConnectionHub()
        agent = FakeConnection()
        hub.register(agent, ConnectionTag.agent(1))
        for n in range(50):
            hub.broadcast_to_conversation(n % 3, {"type": "new_message", "n": n})
        await hub.drain()
        assert [e["n"] for e in agent.sent] == list(range(50))

    asyncio.run(_run())


def test_failed_delivery_unregisters_only_that_connection():
    async def _run():
        hub = ConnectionHub()
        broken, healthy = FakeConnection(fail=True), FakeConnection()
        hub.register(broken, ConnectionTag.agent(1))
        hub.register(healthy, ConnectionTag.agent(2))
        hub.broadcast_to_agents({"type": "ping"})
        await hub.drain()
        await asyncio.sleep(0)

        assert healthy.sent == [{"type": "ping"}]
        assert hub.tag_of(broken) is None
        assert hub.snapshot()["agents"] == 1
        assert hub.broadcast_to_agents({"type": "ping"}) == 1

    asyncio.run(_run())


def test_exclude_and_retag():
    async def _run():
        hub = ConnectionHub()
        sender, other = FakeConnection(), FakeConnection()
        hub.register(sender)
        hub.register(other, ConnectionTag.customer(3))
        hub.send(sender, {"type": "hello"})
        hub.register(sender, ConnectionTag.customer(3))
        hub.broadcast_to_conversation(3, {"type": "typing"}, exclude=sender)
        await hub.drain()
        assert sender.sent == [{"type": "hello"}]
        assert other.sent == [{"type": "typing"}]

        hub.unregister(sender)
        hub.unregister(sender)
        assert hub.send(sender, {"type": "late"}) is False

    asyncio.run(_run())


def test_tags_require_their_binding():
    with pytest.raises(ValueError):
        ConnectionTag(role="customer")
    with pytest.raises(ValueError):
        ConnectionTag(role="agent")
