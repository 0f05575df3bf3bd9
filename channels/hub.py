from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Protocol

logger = logging.getLogger(__name__)


class Connection(Protocol):
    async def send_json(self, data: Any) -> None: ...


class ConnectionRole(str, Enum):
    CUSTOMER = "customer"
    AGENT = "agent"


@dataclass(frozen=True)
class ConnectionTag:
    role: ConnectionRole
    conversation_id: Optional[int] = None
    customer_id: Optional[int] = None
    agent_id: Optional[int] = None

    def __post_init__(self) -> None:
        if self.role == ConnectionRole.CUSTOMER and self.conversation_id is None:
            raise ValueError("customer connections are bound to a conversation")
        if self.role == ConnectionRole.AGENT and self.agent_id is None:
            raise ValueError("agent connections are bound to an agent id")

    @classmethod
    def customer(cls, conversation_id: int, customer_id: int | None = None) -> "ConnectionTag":
        return cls(role=ConnectionRole.CUSTOMER, conversation_id=conversation_id, customer_id=customer_id)

    @classmethod
    def agent(cls, agent_id: int) -> "ConnectionTag":
        return cls(role=ConnectionRole.AGENT, agent_id=agent_id)


class _Peer:
    """One registered connection: FIFO queue drained by a single writer task."""

    def __init__(self, connection: Connection, tag: ConnectionTag | None, on_failure: Callable[[Connection], None]) -> None:
        self.connection = connection
        self.tag = tag
        self.queue: asyncio.Queue = asyncio.Queue()
        self._on_failure = on_failure
        self._closed = False
        self.task = asyncio.get_running_loop().create_task(self._write_loop())

    def enqueue(self, event: Dict[str, Any]) -> bool:
        if self._closed:
            return False
        self.queue.put_nowait(event)
        return True

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.task.cancel()
        self._discard_pending()

    def _discard_pending(self) -> None:
        while not self.queue.empty():
            self.queue.get_nowait()
            self.queue.task_done()

    async def _write_loop(self) -> None:
        while True:
            event = await self.queue.get()
            failed = False
            try:
                await self.connection.send_json(event)
            except Exception as exc:
                failed = True
                logger.warning("hub_delivery_failed", extra={"event_type": event.get("type"), "error": repr(exc)})
            finally:
                self.queue.task_done()
            if failed:
                self._closed = True
                self._discard_pending()
                self._on_failure(self.connection)
                return


class ConnectionHub:
    """Registry of live connections and targeted fan-out.

    Broadcasts enqueue synchronously onto each target's queue, so producer call
    order is the delivery order per target. Iteration runs over a snapshot of the
    registry.
    """

    def __init__(self) -> None:
        self._peers: Dict[int, _Peer] = {}

    def register(self, connection: Connection, tag: ConnectionTag | None = None) -> None:
        peer = self._peers.get(id(connection))
        if peer is not None:
            peer.tag = tag
        else:
            self._peers[id(connection)] = _Peer(connection, tag, on_failure=self.unregister)
        logger.info("hub_registered", extra={"role": tag.role.value if tag else None})

    def unregister(self, connection: Connection) -> None:
        peer = self._peers.pop(id(connection), None)
        if peer is None:
            return
        peer.close()
        logger.info("hub_unregistered", extra={"role": peer.tag.role.value if peer.tag else None})

    def tag_of(self, connection: Connection) -> Optional[ConnectionTag]:
        peer = self._peers.get(id(connection))
        return peer.tag if peer else None

    def send(self, connection: Connection, event: Dict[str, Any]) -> bool:
        peer = self._peers.get(id(connection))
        if peer is None:
            return False
        return peer.enqueue(event)

    def broadcast_to_conversation(self, conversation_id: int, event: Dict[str, Any], exclude: Connection | None = None) -> int:
        delivered = 0
        for peer in list(self._peers.values()):
            if peer.tag is None or peer.connection is exclude:
                continue
            if peer.tag.role == ConnectionRole.AGENT or peer.tag.conversation_id == conversation_id:
                delivered += int(peer.enqueue(event))
        return delivered

    def broadcast_to_agents(self, event: Dict[str, Any]) -> int:
        delivered = 0
        for peer in list(self._peers.values()):
            if peer.tag is not None and peer.tag.role == ConnectionRole.AGENT:
                delivered += int(peer.enqueue(event))
        return delivered

    async def drain(self) -> None:
        await asyncio.gather(*(peer.queue.join() for peer in list(self._peers.values())))

    def snapshot(self) -> Dict[str, int]:
        peers: List[_Peer] = list(self._peers.values())
        return {
            "connections": len(peers),
            "agents": sum(1 for p in peers if p.tag and p.tag.role == ConnectionRole.AGENT),
            "customers": sum(1 for p in peers if p.tag and p.tag.role == ConnectionRole.CUSTOMER),
        }

    def close_all(self) -> None:
        for peer in list(self._peers.values()):
            self.unregister(peer.connection)
