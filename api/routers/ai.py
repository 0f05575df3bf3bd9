from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.middleware.auth import require_agent, require_role
from models.schemas import Agent, AISettingsUpdate, RetrainRequest, TrainingEntry


router = APIRouter(prefix="/ai", tags=["ai"])


def _engine(request: Request):
    return request.app.state.router.engine


@router.get("/stats")
async def ai_stats(request: Request, _agent: Agent = Depends(require_agent)):
    return _engine(request).get_stats()


@router.get("/training-data")
async def list_training_data(request: Request, _agent: Agent = Depends(require_agent)):
    return [e.to_wire() for e in _engine(request).get_training_data()]


@router.post("/training-data", status_code=201)
async def add_training_data(payload: TrainingEntry, request: Request, _agent: Agent = Depends(require_agent)):
    return _engine(request).add_training_data(payload).to_wire()


@router.put("/training-data/{index}")
async def update_training_data(index: int, payload: TrainingEntry, request: Request, _agent: Agent = Depends(require_agent)):
    return _engine(request).update_training_data(index, payload).to_wire()


@router.delete("/training-data/{index}")
async def delete_training_data(index: int, request: Request, _agent: Agent = Depends(require_agent)):
    removed = _engine(request).remove_training_data(index)
    return {"ok": True, "removed": removed.to_wire()}


@router.get("/settings")
async def get_ai_settings(request: Request, _agent: Agent = Depends(require_agent)):
    return _engine(request).get_settings().to_wire()


@router.put("/settings")
async def update_ai_settings(
    payload: AISettingsUpdate,
    request: Request,
    _agent: Agent = Depends(require_role("admin", "supervisor")),
):
    return _engine(request).update_settings(payload).to_wire()


@router.post("/retrain")
async def retrain(request: Request, payload: RetrainRequest | None = None, _agent: Agent = Depends(require_agent)):
    conversation_id = payload.conversation_id if payload else None
    learned = await request.app.state.router.retrain(conversation_id)
    return {"learned": learned, "stats": _engine(request).get_stats()}


@router.post("/sentiment/{conversation_id}")
async def conversation_sentiment(conversation_id: int, request: Request, _agent: Agent = Depends(require_agent)):
    return await request.app.state.router.conversation_sentiment(conversation_id)
