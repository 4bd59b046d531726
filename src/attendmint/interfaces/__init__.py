"""Protocol interfaces for all attendmint collaborators."""

from attendmint.interfaces.content import ContentStorage
from attendmint.interfaces.identity import IdentityProvider, StaticIdentity
from attendmint.interfaces.minter import MintCapability
from attendmint.interfaces.store import ChangeCallback, DurableStore, Row
from attendmint.interfaces.wallet import WalletCapability

__all__ = [
    "ContentStorage",
    "IdentityProvider", "StaticIdentity",
    "MintCapability",
    "ChangeCallback", "DurableStore", "Row",
    "WalletCapability",
]
