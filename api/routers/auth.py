from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.middleware.auth import get_token_from_request, require_agent
from models.schemas import Agent, LoginRequest


router = APIRouter(tags=["auth"])


def _conversation_router(request: Request):
    return request.app.state.router


@router.post("/login")
async def login(payload: LoginRequest, request: Request):
    result = await _conversation_router(request).login(payload.email, payload.password)
    return result.to_wire()


@router.post("/logout")
async def logout(request: Request, _agent: Agent = Depends(require_agent)):
    await _conversation_router(request).session_store.invalidate(get_token_from_request(request))
    return {"ok": True}


@router.get("/me")
async def me(agent: Agent = Depends(require_agent)):
    return agent.to_wire()


@router.post("/session/refresh")
async def refresh_session(request: Request, _agent: Agent = Depends(require_agent)):
    record = await _conversation_router(request).session_store.refresh(get_token_from_request(request))
    return {"sessionToken": record.token, "expiresAt": record.expires_at.isoformat()}
