from __future__ import annotations

from fastapi import APIRouter, WebSocket

from channels.web_chat import websocket_chat_handler


router = APIRouter(tags=["chat"])


@router.websocket("/ws")
async def chat_ws(websocket: WebSocket):
    await websocket_chat_handler(websocket, router=websocket.app.state.router)
