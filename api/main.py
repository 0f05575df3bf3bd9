from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from api.middleware.logging import RequestLoggingMiddleware
from api.routers import agents, ai, auth, chat, conversations, customers
from conversations.router import ConversationRouter
from errors import HelpBoardError
from tasks.session_sweeper import SessionSweeper

logger = logging.getLogger(__name__)


def create_app(router: ConversationRouter | None = None) -> FastAPI:
    conversation_router = router or ConversationRouter()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await conversation_router.ensure_bootstrap_agent()
        sweeper = SessionSweeper(conversation_router.session_store)
        sweep_task = asyncio.create_task(sweeper.run_forever())
        logger.info("app_started", extra={"llm_available": conversation_router.llm.available()})
        try:
            yield
        finally:
            sweep_task.cancel()
            await asyncio.gather(sweep_task, return_exceptions=True)
            await conversation_router.shutdown()
            logger.info("app_stopped")

    app = FastAPI(title="HelpBoard", version="0.1.0", lifespan=lifespan)
    app.add_middleware(RequestLoggingMiddleware)
    app.state.router = conversation_router

    @app.exception_handler(HelpBoardError)
    async def helpboard_error_handler(request: Request, exc: HelpBoardError):
        return JSONResponse({"message": exc.message, "code": exc.code}, status_code=exc.status_code)

    api_prefix = "/api"
    app.include_router(auth.router, prefix=api_prefix)
    app.include_router(customers.router, prefix=api_prefix)
    app.include_router(conversations.router, prefix=api_prefix)
    app.include_router(agents.router, prefix=api_prefix)
    app.include_router(ai.router, prefix=api_prefix)
    app.include_router(chat.router)

    @app.get("/health")
    async def health():
        llm = conversation_router.llm
        return {
            "ok": True,
            "service": "helpboard",
            "llm_provider": llm.provider,
            "llm_model": llm.model,
            "llm_runtime_available": llm.available(),
            "connections": conversation_router.hub.snapshot(),
            "cached_sessions": conversation_router.session_store.cached_count(),
        }

    return app


app = create_app()
