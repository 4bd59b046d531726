"""Inventory ledger - sold vs. capacity per event."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from attendmint.errors import EventNotPublishedError, NotFoundError, SoldOutError
from attendmint.interfaces.store import DurableStore
from attendmint.models.entities import Event
from attendmint.models.records import Reservation

log = logging.getLogger(__name__)


class InventoryLedger:
    """Takes and returns capacity slots.

    A reservation is one conditional increment in the store, so concurrent
    buyers can never push ``tickets_sold`` past ``total_tickets``.
    """

    def __init__(self, store: DurableStore) -> None:
        self._store = store

    async def get_event(self, event_id: str) -> Event:
        row = await self._store.get("events", event_id)
        if row is None:
            raise NotFoundError(f"Event not found: {event_id}")
        return Event.from_row(row)

    async def remaining(self, event_id: str) -> int:
        return (await self.get_event(event_id)).remaining

    async def reserve_one(self, event_id: str) -> Reservation:
        """Take one slot. Raises SoldOutError when none are left."""
        event = await self.get_event(event_id)
        if not event.is_published:
            raise EventNotPublishedError(f"Event is not published: {event_id}")

        row = await self._store.increment(
            "events", event_id, "tickets_sold", 1, ceiling_column="total_tickets",
        )
        if row is None:
            # Either sold out or deleted between the read and the increment
            if await self._store.get("events", event_id) is None:
                raise NotFoundError(f"Event not found: {event_id}")
            log.info("Event %s is sold out (%d tickets)", event_id, event.total_tickets)
            raise SoldOutError(f"Event is sold out: {event.title}")

        log.debug(
            "Reserved slot on %s: %d/%d", event_id, row["tickets_sold"], row["total_tickets"],
        )
        return Reservation(
            event_id=event_id,
            tickets_sold=row["tickets_sold"],
            total_tickets=row["total_tickets"],
            reserved_at=datetime.now(timezone.utc).isoformat(),
        )

    async def release(self, reservation: Reservation) -> bool:
        """Give a reserved slot back. Never drops ``tickets_sold`` below zero."""
        row = await self._store.increment("events", reservation.event_id, "tickets_sold", -1)
        if row is None:
            log.warning("Could not release slot on %s", reservation.event_id)
            return False
        log.info(
            "Released slot on %s: %d/%d",
            reservation.event_id, row["tickets_sold"], row["total_tickets"],
        )
        return True
