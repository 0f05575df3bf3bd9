from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.middleware.auth import require_agent, require_role
from models.schemas import Agent, AvailabilityRequest, CreateAgentRequest


router = APIRouter(tags=["agents"])


@router.get("/agents")
async def list_agents(request: Request, _agent: Agent = Depends(require_agent)):
    agents = await request.app.state.router.storage.list_agents()
    return [a.to_wire() for a in agents if a.is_active]


@router.post("/agents", status_code=201)
async def create_agent(payload: CreateAgentRequest, request: Request, _admin: Agent = Depends(require_role("admin"))):
    agent = await request.app.state.router.create_agent(payload)
    return agent.to_wire()


@router.patch("/agent/availability")
async def set_availability(payload: AvailabilityRequest, request: Request, agent: Agent = Depends(require_agent)):
    updated = await request.app.state.router.set_availability(agent, payload.is_available)
    return updated.to_wire()
