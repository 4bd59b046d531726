"""Ticket record store - ticket entities and their status state machine.

    active --check-in--> used
    active --transfer--> transferred
    active --cancel----> cancelled

Nothing leaves used, cancelled or transferred. Every transition is a
compare-and-set on ``status = 'active'``, so of two concurrent
transitions exactly one wins.

A ticket NFT minted at purchase is recorded once in ``mint_address``;
its stage in the ticket metadata moves from valid to used at check-in.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from attendmint.errors import (
    AlreadyUsedError,
    MintAddressSetError,
    NotFoundError,
    NotOwnerError,
    TicketNotActiveError,
)
from attendmint.interfaces.store import DurableStore
from attendmint.models.entities import Ticket, TicketStatus
from attendmint.models.records import PaymentReceipt, Reservation

log = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class TicketRecordStore:
    """Creates tickets against reservations and applies status transitions."""

    def __init__(self, store: DurableStore) -> None:
        self._store = store

    async def create(
        self,
        reservation: Reservation,
        owner_id: str,
        price: float,
        ticket_type: str = "general",
        payment: PaymentReceipt | None = None,
    ) -> Ticket:
        metadata: dict[str, Any] = {"ticket_type": ticket_type}
        if payment is not None:
            metadata["payment_tx"] = payment.tx_hash
            metadata["payment_chain"] = payment.chain
        row = await self._store.insert("tickets", {
            "event_id": reservation.event_id,
            "owner_id": owner_id,
            "purchase_price": price,
            "purchase_date": _now(),
            "status": TicketStatus.ACTIVE,
            "metadata": metadata,
        })
        ticket = Ticket.from_row(row)
        log.info("Created ticket %s for %s on %s", ticket.id, owner_id, reservation.event_id)
        return ticket

    async def get(self, ticket_id: str) -> Ticket:
        row = await self._store.get("tickets", ticket_id)
        if row is None:
            raise NotFoundError(f"Ticket not found: {ticket_id}")
        return Ticket.from_row(row)

    async def list_for_owner(self, owner_id: str) -> list[Ticket]:
        rows = await self._store.query(
            "tickets", {"owner_id": owner_id}, order_by="purchase_date", descending=True,
        )
        return [Ticket.from_row(r) for r in rows]

    async def list_for_event(
        self, event_id: str, status: TicketStatus | None = None,
    ) -> list[Ticket]:
        filters: dict[str, Any] = {"event_id": event_id}
        if status is not None:
            filters["status"] = status
        rows = await self._store.query("tickets", filters, order_by="purchase_date")
        return [Ticket.from_row(r) for r in rows]

    async def assign_mint_address(self, ticket_id: str, mint_address: str) -> Ticket:
        """Record the ticket NFT. Raises MintAddressSetError if one is already set."""
        ticket = await self.get(ticket_id)
        row = await self._store.update_where(
            "tickets",
            ticket_id,
            {"mint_address": mint_address, "metadata": {**ticket.metadata, "nft_stage": "valid"}},
            {"mint_address": None},
        )
        if row is None:
            current = await self.get(ticket_id)
            raise MintAddressSetError(
                f"Ticket {ticket_id} already has mint address {current.mint_address}"
            )
        log.info("Ticket %s minted as %s", ticket_id, mint_address)
        return Ticket.from_row(row)

    # ── Transitions ────────────────────────────────────────

    async def check_in(
        self,
        ticket_id: str,
        acting_user_id: str,
        organizer_id: str | None = None,
    ) -> Ticket:
        """Mark an active ticket used.

        The owner may check in, and so may the event organizer scanning at
        the door. A second check-in raises AlreadyUsedError and leaves the
        ticket unchanged.
        """
        ticket = await self.get(ticket_id)
        if acting_user_id not in (ticket.owner_id, organizer_id):
            raise NotOwnerError(f"User {acting_user_id} cannot check in ticket {ticket_id}")
        fields: dict[str, Any] = {"checked_in_at": _now()}
        if ticket.mint_address:
            fields["metadata"] = {**ticket.metadata, "nft_stage": "used"}
        return await self._transition(ticket, TicketStatus.USED, fields)

    async def transfer(self, ticket_id: str, acting_user_id: str, new_owner_id: str) -> Ticket:
        ticket = await self.get(ticket_id)
        if acting_user_id != ticket.owner_id:
            raise NotOwnerError(f"User {acting_user_id} does not own ticket {ticket_id}")
        return await self._transition(
            ticket, TicketStatus.TRANSFERRED, {"owner_id": new_owner_id},
        )

    async def cancel(self, ticket_id: str, acting_user_id: str) -> Ticket:
        ticket = await self.get(ticket_id)
        if acting_user_id != ticket.owner_id:
            raise NotOwnerError(f"User {acting_user_id} does not own ticket {ticket_id}")
        return await self._transition(ticket, TicketStatus.CANCELLED, {})

    async def _transition(
        self, ticket: Ticket, target: TicketStatus, fields: dict[str, Any],
    ) -> Ticket:
        _ensure_active(ticket)
        row = await self._store.update_where(
            "tickets",
            ticket.id,
            {"status": target, **fields},
            {"status": TicketStatus.ACTIVE},
        )
        if row is None:
            # Lost a race: report against whatever state won.
            _ensure_active(await self.get(ticket.id))
            raise TicketNotActiveError(f"Ticket {ticket.id} changed concurrently")
        log.info("Ticket %s: %s -> %s", ticket.id, ticket.status.value, target.value)
        return Ticket.from_row(row)


def _ensure_active(ticket: Ticket) -> None:
    if ticket.status == TicketStatus.USED:
        raise AlreadyUsedError(f"Ticket {ticket.id} was already checked in at {ticket.checked_in_at}")
    if ticket.status != TicketStatus.ACTIVE:
        raise TicketNotActiveError(f"Ticket {ticket.id} is {ticket.status.value}")
