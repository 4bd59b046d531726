"""Operation results and internal record types."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class Reservation:
    """One capacity slot taken from an event's inventory.

    Handed to ticket creation, or back to the ledger for release.
    """

    event_id: str
    tickets_sold: int  # count after this reservation
    total_tickets: int
    reserved_at: str


@dataclass(frozen=True)
class PaymentReceipt:
    """A wallet transaction paying for a ticket."""

    tx_hash: str
    chain: str
    amount: float
    sender: str
    recipient: str


@dataclass(frozen=True)
class MintReceipt:
    """What the mint capability returns for a successful mint."""

    mint_address: str
    tx_hash: str
    chain: str


@dataclass
class MintResult:
    """Outcome of minting an attendance NFT."""

    attendance_id: str
    mint_address: str
    metadata_uri: str
    chain: str | None = None
    tx_hash: str | None = None
    marketplace_url: str | None = None
    already_minted: bool = False
    duration_ms: int = 0


@dataclass
class MintBatchReport:
    """Summary of one pass over pending attendance records."""

    total: int = 0
    minted: int = 0
    failed: int = 0
    skipped: int = 0
    duration_ms: int = 0
    errors: dict[str, str] = field(default_factory=dict)  # attendance_id -> message


@dataclass
class ReconcileReport:
    """Summary of a reconciliation sweep."""

    receipts_applied: int = 0
    stale_claims_failed: int = 0
    attendance_repaired: int = 0


@dataclass
class PricingFactors:
    """Sales signals feeding a price recommendation."""

    base_price: float
    time_to_event_hours: float
    sold_ratio: float  # 0..1
    recent_sales: int  # purchases in the last 7 days
    popularity: float  # recent_sales / 10, capped at 1.0


@dataclass
class PricingRecommendation:
    """Suggested ticket price with its rationale."""

    suggested_price: float
    confidence: float
    reasoning: str
    demand_level: str  # low | medium | high | critical
    factors: PricingFactors | None = None


@dataclass
class ActivityRecord:
    """A single activity log entry."""

    id: int
    event_type: str
    message: str
    event_id: str | None = None
    ticket_id: str | None = None
    attendance_id: str | None = None
    created_at: str = ""
