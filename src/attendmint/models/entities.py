"""Persisted entities: events, profiles, tickets, attendance records."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping


class TicketStatus(str, Enum):
    """Lifecycle state of a ticket."""

    ACTIVE = "active"
    USED = "used"  # checked in, terminal
    CANCELLED = "cancelled"
    TRANSFERRED = "transferred"


class NftStatus(str, Enum):
    """Mint state of an attendance record. ``None`` means NFTs are not issued."""

    PENDING = "pending"
    MINTED = "minted"
    FAILED = "failed"


class Chain(str, Enum):
    """Chains a wallet or mint capability can target."""

    ETHEREUM = "ethereum"
    POLYGON = "polygon"
    SOLANA = "solana"


def parse_ts(value: str) -> datetime:
    """Parse a stored ISO-8601 timestamp (accepts a trailing ``Z``)."""
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value)


@dataclass
class Event:
    """A ticketed event with a fixed capacity."""

    id: str
    title: str
    date: str  # ISO 8601
    location: str
    creator_id: str
    total_tickets: int
    tickets_sold: int = 0
    base_price: float = 0.0
    description: str = ""
    image_url: str | None = None
    is_published: bool = False
    nft_enabled: bool = False
    nft_artwork_url: str | None = None
    created_at: str = ""
    updated_at: str = ""

    @property
    def remaining(self) -> int:
        return self.total_tickets - self.tickets_sold

    @property
    def sold_out(self) -> bool:
        return self.tickets_sold >= self.total_tickets

    @property
    def starts_at(self) -> datetime:
        return parse_ts(self.date)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> Event:
        return cls(
            id=row["id"],
            title=row["title"],
            date=row["date"],
            location=row["location"],
            creator_id=row["creator_id"],
            total_tickets=row["total_tickets"],
            tickets_sold=row["tickets_sold"],
            base_price=row["base_price"],
            description=row["description"] or "",
            image_url=row["image_url"],
            is_published=bool(row["is_published"]),
            nft_enabled=bool(row["nft_enabled"]),
            nft_artwork_url=row["nft_artwork_url"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


@dataclass
class Profile:
    """Attendee profile: display name, wallets and attendance counters."""

    id: str
    display_name: str | None = None
    wallet_address: str | None = None  # primary (EVM) wallet
    alt_wallet_address: str | None = None  # alternate (Solana) wallet
    events_attended: int = 0
    loyalty_points: int = 0

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> Profile:
        return cls(
            id=row["id"],
            display_name=row["display_name"],
            wallet_address=row["wallet_address"],
            alt_wallet_address=row["alt_wallet_address"],
            events_attended=row["events_attended"],
            loyalty_points=row["loyalty_points"],
        )


@dataclass
class Ticket:
    """A purchased ticket."""

    id: str
    event_id: str
    owner_id: str
    purchase_price: float
    purchase_date: str
    status: TicketStatus = TicketStatus.ACTIVE
    checked_in_at: str | None = None
    mint_address: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def ticket_type(self) -> str:
        return self.metadata.get("ticket_type", "general")

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> Ticket:
        return cls(
            id=row["id"],
            event_id=row["event_id"],
            owner_id=row["owner_id"],
            purchase_price=row["purchase_price"],
            purchase_date=row["purchase_date"],
            status=TicketStatus(row["status"]),
            checked_in_at=row["checked_in_at"],
            mint_address=row["mint_address"],
            metadata=row["metadata"] or {},
        )


@dataclass
class AttendanceRecord:
    """Proof that a ticket was checked in, and the state of its NFT."""

    id: str
    ticket_id: str
    event_id: str
    attendee_id: str
    checked_in_at: str
    check_in_location: str | None = None
    nft_status: NftStatus | None = None
    nft_mint_address: str | None = None
    nft_metadata_uri: str | None = None
    nft_minted_at: str | None = None
    nft_tx_hash: str | None = None
    nft_chain: str | None = None
    nft_error: str | None = None
    nft_attempts: int = 0
    nft_claimed_at: str | None = None

    @property
    def is_minted(self) -> bool:
        return self.nft_status == NftStatus.MINTED and bool(self.nft_mint_address)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> AttendanceRecord:
        status = row["nft_status"]
        return cls(
            id=row["id"],
            ticket_id=row["ticket_id"],
            event_id=row["event_id"],
            attendee_id=row["attendee_id"],
            checked_in_at=row["checked_in_at"],
            check_in_location=row["check_in_location"],
            nft_status=NftStatus(status) if status else None,
            nft_mint_address=row["nft_mint_address"],
            nft_metadata_uri=row["nft_metadata_uri"],
            nft_minted_at=row["nft_minted_at"],
            nft_tx_hash=row["nft_tx_hash"],
            nft_chain=row["nft_chain"],
            nft_error=row["nft_error"],
            nft_attempts=row["nft_attempts"],
            nft_claimed_at=row["nft_claimed_at"],
        )
