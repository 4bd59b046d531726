"""NFT metadata builder - deterministic attendance NFT documents."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone, tzinfo
from zoneinfo import ZoneInfo

from attendmint.models.entities import AttendanceRecord, Event, Ticket, parse_ts
from attendmint.models.metadata import NFTAttribute, NFTMetadata

DEFAULT_IMAGE = "https://via.placeholder.com/400x400?text=Event+NFT"
DEFAULT_ATTENDEE = "Anonymous Attendee"
DEFAULT_LOCATION = "Main Entrance"
EARLY_BIRD_WINDOW = timedelta(hours=2)

EARLY_BIRD = "Early Bird"
REGULAR = "Regular"


def resolve_timezone(name: str | None) -> tzinfo:
    if not name or name.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(name)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def time_of_day(local: datetime) -> str:
    if local.hour < 12:
        return "Morning"
    if local.hour < 18:
        return "Afternoon"
    return "Evening"


def attendee_type(
    checked_in_at: datetime, event_start: datetime, window: timedelta = EARLY_BIRD_WINDOW,
) -> str:
    """Early Bird iff the check-in came strictly more than ``window`` before the start."""
    if _as_utc(checked_in_at) < _as_utc(event_start) - window:
        return EARLY_BIRD
    return REGULAR


def build_metadata(
    event: Event,
    attendance: AttendanceRecord,
    attendee_name: str | None = None,
    *,
    tz: tzinfo = timezone.utc,
    external_url_base: str = "",
    default_image: str = DEFAULT_IMAGE,
    default_location: str = DEFAULT_LOCATION,
    early_bird_window: timedelta = EARLY_BIRD_WINDOW,
) -> NFTMetadata:
    """Build the metadata for one attendance NFT.

    Pure: the same event, record and name always give identical output.
    Time-of-day and dates are rendered in ``tz``, the venue's timezone.
    """
    event_start = _as_utc(parse_ts(event.date))
    checked_in = _as_utc(parse_ts(attendance.checked_in_at))
    event_local = event_start.astimezone(tz)
    checked_local = checked_in.astimezone(tz)

    event_date = event_local.strftime("%Y-%m-%d")
    location = attendance.check_in_location or default_location
    name = attendee_name or DEFAULT_ATTENDEE

    description = (
        f"This NFT certifies attendance at {event.title} on {event_date}. "
        f"Checked in at {location} on {checked_local:%Y-%m-%d %H:%M}."
    )

    attributes = (
        NFTAttribute("Event", event.title),
        NFTAttribute("Date", event_date),
        NFTAttribute("Location", event.location),
        NFTAttribute("Check-in Location", location),
        NFTAttribute("Check-in Time", time_of_day(checked_local)),
        NFTAttribute("Attendee Type", attendee_type(checked_in, event_start, early_bird_window)),
        NFTAttribute("Attendee", name),
    )

    external_url = None
    if external_url_base:
        external_url = f"{external_url_base.rstrip('/')}/events/{event.id}"

    return NFTMetadata(
        name=f"{event.title} - Attendance NFT",
        description=description,
        image=event.nft_artwork_url or event.image_url or default_image,
        attributes=attributes,
        external_url=external_url,
    )


def build_ticket_metadata(
    event: Event, ticket: Ticket, default_image: str = DEFAULT_IMAGE,
) -> NFTMetadata:
    """Metadata for the ticket NFT minted at purchase."""
    event_date = _as_utc(parse_ts(event.date)).strftime("%Y-%m-%d")
    return NFTMetadata(
        name=f"{event.title} - Ticket",
        description=f"Admits one to {event.title} at {event.location} on {event_date}.",
        image=event.image_url or default_image,
        attributes=(
            NFTAttribute("Event", event.title),
            NFTAttribute("Date", event_date),
            NFTAttribute("Ticket Type", ticket.ticket_type),
            NFTAttribute("Ticket", ticket.id),
        ),
    )
