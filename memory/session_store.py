from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from errors import AuthenticationError
from memory.storage import Storage
from models.schemas import Agent, SessionRecord, utcnow
from settings import SETTINGS

logger = logging.getLogger(__name__)


class SessionStore:
    """Agent sessions: in-process cache in front of the durable store.

    The cache is only ever filled through ``_adopt``, which keeps whichever record
    reached the cache first, so concurrent validations of one token agree on a
    single expiry.
    """

    def __init__(
        self,
        storage: Storage,
        ttl_seconds: int | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.storage = storage
        self.ttl_seconds = ttl_seconds or SETTINGS.session_ttl_seconds
        self._clock = clock or utcnow
        self._cache: Dict[str, SessionRecord] = {}

    def _adopt(self, record: SessionRecord) -> SessionRecord:
        return self._cache.setdefault(record.token, record)

    async def create_session(self, agent: Agent, metadata: Dict[str, Any] | None = None) -> SessionRecord:
        now = self._clock()
        record = SessionRecord(
            token=secrets.token_urlsafe(24),
            agent_id=agent.id,
            expires_at=now + timedelta(seconds=self.ttl_seconds),
            data=dict(metadata or {"email": agent.email}),
            created_at=now,
        )
        await self.storage.create_session(record)
        self._cache[record.token] = record
        logger.info("session_created", extra={"agent_id": agent.id})
        return record

    async def _lookup(self, token: str) -> Optional[SessionRecord]:
        cached = self._cache.get(token)
        if cached is not None:
            return cached
        try:
            record = await self.storage.get_session(token)
        except Exception as exc:
            logger.warning("session_lookup_failed", extra={"error": repr(exc)})
            return None
        if record is None:
            return None
        return self._adopt(record)

    async def _evict(self, token: str) -> None:
        self._cache.pop(token, None)
        try:
            await self.storage.delete_session(token)
        except Exception as exc:
            logger.warning("session_evict_failed", extra={"error": repr(exc)})

    async def get_valid_session(self, token: str) -> SessionRecord:
        if not token:
            raise AuthenticationError("Authorization required")
        record = await self._lookup(token)
        if record is None:
            raise AuthenticationError("Invalid or expired session")
        if record.is_expired(self._clock()):
            await self._evict(token)
            raise AuthenticationError("Invalid or expired session")
        return record

    async def validate(self, token: str) -> Agent:
        record = await self.get_valid_session(token)
        try:
            agent = await self.storage.get_agent(record.agent_id)
        except Exception as exc:
            logger.warning("session_agent_lookup_failed", extra={"agent_id": record.agent_id, "error": repr(exc)})
            raise AuthenticationError("Invalid or expired session") from exc
        if agent is None or not agent.is_active:
            await self._evict(token)
            raise AuthenticationError("Invalid or expired session")
        return agent

    async def refresh(self, token: str) -> SessionRecord:
        record = await self.get_valid_session(token)
        refreshed = record.model_copy(update={"expires_at": self._clock() + timedelta(seconds=self.ttl_seconds)})
        await self.storage.create_session(refreshed)
        self._cache[token] = refreshed
        return refreshed

    async def invalidate(self, token: str) -> None:
        await self._evict(token)
        logger.info("session_invalidated")

    async def sweep_expired(self) -> int:
        now = self._clock()
        expired = {token for token, record in list(self._cache.items()) if record.is_expired(now)}
        try:
            durable = await self.storage.list_sessions()
        except Exception as exc:
            logger.warning("session_sweep_listing_failed", extra={"error": repr(exc)})
            durable = []
        expired.update(record.token for record in durable if record.is_expired(now))
        for token in expired:
            await self._evict(token)
        if expired:
            logger.info("session_sweep_completed", extra={"evicted": len(expired)})
        return len(expired)

    def cached_count(self) -> int:
        return len(self._cache)
