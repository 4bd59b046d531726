"""Data models for attendmint."""

from attendmint.models.config import EngineConfig, MintMode
from attendmint.models.entities import (
    AttendanceRecord,
    Chain,
    Event,
    NftStatus,
    Profile,
    Ticket,
    TicketStatus,
)
from attendmint.models.events import ChangeEvent
from attendmint.models.metadata import NFTAttribute, NFTMetadata
from attendmint.models.records import (
    ActivityRecord,
    MintBatchReport,
    MintReceipt,
    MintResult,
    PaymentReceipt,
    PricingFactors,
    PricingRecommendation,
    ReconcileReport,
    Reservation,
)

__all__ = [
    "EngineConfig", "MintMode",
    "AttendanceRecord", "Chain", "Event", "NftStatus", "Profile", "Ticket", "TicketStatus",
    "ChangeEvent",
    "NFTAttribute", "NFTMetadata",
    "ActivityRecord", "MintBatchReport", "MintReceipt", "MintResult", "PaymentReceipt",
    "PricingFactors", "PricingRecommendation", "ReconcileReport", "Reservation",
]
