from __future__ import annotations

import asyncio
import logging

from memory.session_store import SessionStore
from settings import SETTINGS

logger = logging.getLogger(__name__)


class SessionSweeper:
    """Periodic eviction of expired sessions.

    Runs inside the app process against the app's own session store, so the
    in-process cache and the durable copy are swept together.
    """

    def __init__(self, session_store: SessionStore) -> None:
        self.session_store = session_store

    async def run_once(self) -> dict:
        evicted = await self.session_store.sweep_expired()
        return {"evicted": evicted, "cached": self.session_store.cached_count()}

    async def run_forever(self, interval_seconds: float | None = None) -> None:
        interval = interval_seconds or SETTINGS.session_sweep_interval_seconds
        while True:
            await asyncio.sleep(interval)
            try:
                await self.run_once()
            except Exception:
                logger.exception("session_sweep_failed")
