from __future__ import annotations

from fastapi import Depends, Request

from errors import AuthenticationError, PermissionDeniedError
from models.schemas import Agent


def get_token_from_request(request: Request) -> str:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthenticationError("Authorization required")
    return token.strip()


async def require_agent(request: Request) -> Agent:
    token = get_token_from_request(request)
    return await request.app.state.router.session_store.validate(token)


def require_role(*allowed_roles: str):
    allowed = {r.lower() for r in allowed_roles}

    async def _dependency(agent: Agent = Depends(require_agent)) -> Agent:
        if allowed and agent.role.value not in allowed:
            raise PermissionDeniedError("Insufficient permissions")
        return agent

    return _dependency
