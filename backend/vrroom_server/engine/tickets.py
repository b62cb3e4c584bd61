"""
Support ticket stub.

Tickets are recorded and listed for their author; there is no moderation
workflow behind them.
"""

from __future__ import annotations

import logging
from typing import Any

from ..errors import NotFoundError, ValidationError
from ..store.database import Store, Transaction
from ..store.records import Ticket, is_valid_id, new_id, now_ms

logger = logging.getLogger(__name__)

TICKET_TYPES = ("bug", "report", "support", "other")


def ticket_to_dict(ticket: Ticket) -> dict[str, Any]:
    return {
        "id": ticket.id,
        "type": ticket.type,
        "title": ticket.title,
        "status": ticket.status,
        "contentId": ticket.content_id,
        "createdAt": ticket.created_at,
        "updatedAt": ticket.updated_at,
    }


class TicketService:
    def __init__(self, store: Store) -> None:
        self.store = store

    async def open_ticket(
        self,
        account_id: str,
        ticket_type: str,
        title: str,
        content_id: str | None = None,
    ) -> Ticket:
        if ticket_type not in TICKET_TYPES:
            raise ValidationError("Invalid ticket type")
        if not isinstance(title, str) or not title.strip():
            raise ValidationError("Missing required fields")
        if content_id is not None and not is_valid_id(content_id):
            raise ValidationError("Invalid content ID")

        def create(txn: Transaction) -> Ticket:
            if content_id is not None and txn.contents.get(content_id) is None:
                raise NotFoundError("Content not found")
            now = now_ms()
            ticket = Ticket(
                id=new_id(),
                account_id=account_id,
                type=ticket_type,
                title=title.strip(),
                content_id=content_id,
                created_at=now,
                updated_at=now,
            )
            txn.tickets.insert(ticket)
            return ticket

        ticket = await self.store.execute(create)
        logger.info("Opened ticket", extra={"ticket_id": ticket.id, "type": ticket_type})
        return ticket

    async def list_tickets(self, account_id: str) -> list[Ticket]:
        return await self.store.execute(lambda txn: txn.tickets.find(account_id=account_id))
