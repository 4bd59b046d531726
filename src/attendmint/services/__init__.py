"""Engine components: inventory, tickets, check-in, metadata, minting, pricing."""

from attendmint.services.checkin import CheckInCoordinator
from attendmint.services.inventory import InventoryLedger
from attendmint.services.metadata import build_metadata
from attendmint.services.minting import MintingOrchestrator
from attendmint.services.tickets import TicketRecordStore

__all__ = [
    "CheckInCoordinator",
    "InventoryLedger",
    "build_metadata",
    "MintingOrchestrator",
    "TicketRecordStore",
]
