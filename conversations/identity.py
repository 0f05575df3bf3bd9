from __future__ import annotations

import logging
import random
import secrets
from typing import Any, Dict

from errors import NotFoundError
from memory.storage import Storage
from models.schemas import ConversationStatus, Customer, CustomerInitiateRequest, InitiationResult, utcnow

logger = logging.getLogger(__name__)


class CustomerIdentityResolver:
    """Finds or creates the customer behind a widget initiation.

    Lookup is by email first, then by origin address. Every initiation gets a
    fresh session id and a fresh open conversation.
    """

    def __init__(self, storage: Storage, rng: random.Random | None = None) -> None:
        self.storage = storage
        self._rng = rng or random.Random()

    @staticmethod
    def new_session_id() -> str:
        return f"session_{secrets.token_urlsafe(18)}"

    def visitor_name(self) -> str:
        return f"Friendly Visitor {self._rng.randint(0, 999)}"

    async def resolve(self, request: CustomerInitiateRequest, ip_address: str | None = None) -> InitiationResult:
        fields = request.contact_fields()
        if ip_address:
            fields["ip_address"] = ip_address

        existing: Customer | None = None
        if fields.get("email"):
            existing = await self.storage.get_customer_by_email(fields["email"])
        if existing is None and ip_address:
            existing = await self.storage.get_customer_by_ip(ip_address)

        session_id = self.new_session_id()
        now = utcnow()
        if existing is not None:
            merged: Dict[str, Any] = {**fields, "session_id": session_id, "last_seen": now}
            merged["is_identified"] = bool(
                existing.is_identified or fields.get("email") or fields.get("name") or existing.email
            )
            customer = await self.storage.update_customer(existing.id, merged) or existing
            returning = True
        else:
            identified = bool(fields.get("email") or fields.get("name"))
            fields.setdefault("name", self.visitor_name())
            customer = await self.storage.create_customer(
                {**fields, "session_id": session_id, "is_identified": identified, "last_seen": now}
            )
            returning = False

        conversation = await self.storage.create_conversation(
            {"customer_id": customer.id, "status": ConversationStatus.OPEN}
        )
        logger.info(
            "customer_initiated",
            extra={"customer_id": customer.id, "conversation_id": conversation.id, "returning": returning},
        )
        return InitiationResult(
            session_id=session_id,
            conversation_id=conversation.id,
            is_returning_customer=returning,
            customer=customer,
        )

    async def customer_for_session(self, session_id: str) -> Customer:
        customer = await self.storage.get_customer_by_session_id(session_id) if session_id else None
        if customer is None:
            raise NotFoundError("Customer session not found")
        return customer

    async def update_profile(self, session_id: str, request: CustomerInitiateRequest) -> Customer:
        customer = await self.customer_for_session(session_id)
        fields = request.contact_fields()
        if fields.get("email") or fields.get("name"):
            fields["is_identified"] = True
        fields["last_seen"] = utcnow()
        updated = await self.storage.update_customer(customer.id, fields)
        if updated is None:
            raise NotFoundError("Customer session not found")
        logger.info("customer_profile_updated", extra={"customer_id": customer.id, "fields": sorted(fields)})
        return updated
