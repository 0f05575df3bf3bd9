from __future__ import annotations

from fastapi import APIRouter, Header, Request

from models.schemas import CustomerInitiateRequest


router = APIRouter(tags=["customers"])


@router.post("/initiate")
async def initiate_chat(payload: CustomerInitiateRequest, request: Request):
    forwarded = request.headers.get("X-Forwarded-For", "")
    ip_address = forwarded.split(",")[0].strip() or (request.client.host if request.client else None)
    result = await request.app.state.router.identity.resolve(payload, ip_address)
    return result.to_wire()


@router.post("/customers/update")
async def update_customer(
    payload: CustomerInitiateRequest,
    request: Request,
    x_session_id: str = Header(default=""),
):
    customer = await request.app.state.router.identity.update_profile(x_session_id, payload)
    return customer.to_wire()
