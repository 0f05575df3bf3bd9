from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.middleware.auth import require_agent
from models.schemas import Agent, AssignRequest, Sender, SendMessageRequest


router = APIRouter(prefix="/conversations", tags=["conversations"])


def _conversation_router(request: Request):
    return request.app.state.router


@router.get("")
async def list_conversations(request: Request, _agent: Agent = Depends(require_agent)):
    summaries = await _conversation_router(request).lifecycle.list_conversations()
    return [s.to_wire() for s in summaries]


@router.get("/{conversation_id}")
async def get_conversation(conversation_id: int, request: Request, _agent: Agent = Depends(require_agent)):
    detail = await _conversation_router(request).lifecycle.conversation_detail(conversation_id)
    return detail.to_wire()


@router.patch("/{conversation_id}/assign")
async def assign_conversation(
    conversation_id: int,
    request: Request,
    payload: AssignRequest | None = None,
    agent: Agent = Depends(require_agent),
):
    agent_id = payload.agent_id if payload and payload.agent_id is not None else agent.id
    conversation = await _conversation_router(request).lifecycle.assign(conversation_id, agent_id)
    return conversation.to_wire()


@router.patch("/{conversation_id}/close")
async def close_conversation(conversation_id: int, request: Request, _agent: Agent = Depends(require_agent)):
    conversation = await _conversation_router(request).lifecycle.close(conversation_id)
    return conversation.to_wire()


@router.post("/{conversation_id}/messages")
async def send_agent_message(
    conversation_id: int,
    payload: SendMessageRequest,
    request: Request,
    agent: Agent = Depends(require_agent),
):
    message = await _conversation_router(request).handle_message(conversation_id, Sender.for_agent(agent), payload.content)
    return message.to_wire()
