"""Check-in coordinator - turns a valid ticket into an attendance record."""

from __future__ import annotations

import json
import logging
from typing import Any, Awaitable, Callable

from attendmint.errors import InvalidQRCodeError, NotFoundError
from attendmint.interfaces.store import DurableStore
from attendmint.models.entities import (
    AttendanceRecord,
    Event,
    NftStatus,
    Ticket,
    TicketStatus,
)
from attendmint.services.tickets import TicketRecordStore

log = logging.getLogger(__name__)

AttendanceCallback = Callable[[AttendanceRecord], Awaitable[None]]


def qr_payload(ticket: Ticket) -> str:
    """The JSON a ticket's QR code carries."""
    return json.dumps(
        {"ticketId": ticket.id, "eventId": ticket.event_id, "attendeeId": ticket.owner_id},
        separators=(",", ":"),
    )


def parse_qr_payload(payload: str, event_id: str) -> str:
    """Return the ticket id in ``payload`` if it is a ticket for ``event_id``."""
    try:
        data = json.loads(payload)
    except ValueError:
        raise InvalidQRCodeError("QR code is not valid ticket data") from None
    if not isinstance(data, dict) or not data.get("ticketId") or not data.get("eventId"):
        raise InvalidQRCodeError("QR code is missing ticket details")
    if data["eventId"] != event_id:
        raise InvalidQRCodeError("This ticket is not for this event")
    return str(data["ticketId"])


class CheckInCoordinator:
    """Validates and applies check-ins.

    The ticket transition happens first; the attendance record is created
    only once the ticket is durably ``used``. A used ticket missing its
    record can be rebuilt from the ticket with ``repair_missing_attendance``.
    """

    def __init__(
        self,
        store: DurableStore,
        tickets: TicketRecordStore,
        loyalty_points: int = 10,
        on_attendance: AttendanceCallback | None = None,
    ) -> None:
        self._store = store
        self._tickets = tickets
        self._loyalty_points = loyalty_points
        self.on_attendance = on_attendance

    async def check_in(
        self,
        ticket_id: str,
        acting_user_id: str,
        location: str | None = None,
    ) -> AttendanceRecord:
        ticket = await self._tickets.get(ticket_id)
        event = await self._get_event(ticket.event_id)

        used = await self._tickets.check_in(
            ticket_id, acting_user_id, organizer_id=event.creator_id,
        )
        record = await self._record_attendance(used, event, location)
        await self._credit_attendee(used.owner_id)
        await self._store.log_activity(
            "check_in",
            f"Checked in ticket {used.id} at {location or 'default location'}",
            event_id=event.id,
            ticket_id=used.id,
            attendance_id=record.id,
        )

        if self.on_attendance is not None:
            try:
                await self.on_attendance(record)
            except Exception as exc:
                # The check-in is already durable; minting can be retried later.
                log.error("Attendance hook failed for %s: %s", record.id, exc, exc_info=True)
        return record

    async def check_in_from_qr(
        self,
        payload: str,
        event_id: str,
        acting_user_id: str,
        location: str | None = None,
    ) -> AttendanceRecord:
        """Check in from a scanned QR code at the door of ``event_id``."""
        ticket_id = parse_qr_payload(payload, event_id)
        ticket = await self._tickets.get(ticket_id)
        if ticket.event_id != event_id:
            raise InvalidQRCodeError("This ticket is not for this event")
        return await self.check_in(ticket_id, acting_user_id, location)

    async def get_attendance(self, attendance_id: str) -> AttendanceRecord:
        row = await self._store.get("attendance", attendance_id)
        if row is None:
            raise NotFoundError(f"Attendance record not found: {attendance_id}")
        return AttendanceRecord.from_row(row)

    async def attendance_for_ticket(self, ticket_id: str) -> AttendanceRecord | None:
        rows = await self._store.query("attendance", {"ticket_id": ticket_id}, limit=1)
        return AttendanceRecord.from_row(rows[0]) if rows else None

    async def list_for_event(self, event_id: str) -> list[AttendanceRecord]:
        rows = await self._store.query(
            "attendance", {"event_id": event_id}, order_by="checked_in_at",
        )
        return [AttendanceRecord.from_row(r) for r in rows]

    async def repair_missing_attendance(self, event_id: str | None = None) -> int:
        """Create attendance records for used tickets that have none."""
        filters: dict[str, Any] = {"status": TicketStatus.USED}
        if event_id is not None:
            filters["event_id"] = event_id
        repaired = 0
        events: dict[str, Event] = {}
        for row in await self._store.query("tickets", filters):
            ticket = Ticket.from_row(row)
            if await self.attendance_for_ticket(ticket.id) is not None:
                continue
            if ticket.event_id not in events:
                events[ticket.event_id] = await self._get_event(ticket.event_id)
            record = await self._record_attendance(ticket, events[ticket.event_id], None)
            await self._store.log_activity(
                "reconcile_attendance",
                f"Rebuilt attendance for used ticket {ticket.id}",
                event_id=ticket.event_id,
                ticket_id=ticket.id,
                attendance_id=record.id,
            )
            repaired += 1
        if repaired:
            log.warning("Rebuilt %d missing attendance record(s)", repaired)
        return repaired

    async def _get_event(self, event_id: str) -> Event:
        row = await self._store.get("events", event_id)
        if row is None:
            raise NotFoundError(f"Event not found: {event_id}")
        return Event.from_row(row)

    async def _record_attendance(
        self, ticket: Ticket, event: Event, location: str | None,
    ) -> AttendanceRecord:
        row = await self._store.insert("attendance", {
            "ticket_id": ticket.id,
            "event_id": event.id,
            "attendee_id": ticket.owner_id,
            "checked_in_at": ticket.checked_in_at,
            "check_in_location": location,
            "nft_status": NftStatus.PENDING if event.nft_enabled else None,
        })
        record = AttendanceRecord.from_row(row)
        log.info("Attendance %s recorded for ticket %s", record.id, ticket.id)
        return record

    async def _credit_attendee(self, user_id: str) -> None:
        await self._store.upsert_increment("profiles", user_id, {
            "events_attended": 1,
            "loyalty_points": self._loyalty_points,
        })
