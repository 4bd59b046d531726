"""MintCapability protocol - issues an NFT for a metadata URI."""

from __future__ import annotations

from typing import Protocol

from attendmint.models.entities import Chain
from attendmint.models.records import MintReceipt


class MintCapability(Protocol):
    """Mints one token on ``chain`` to ``recipient``."""

    async def mint(self, metadata_uri: str, chain: Chain, recipient: str) -> MintReceipt:
        """Mint and return the receipt. Raises MintFailedError on rejection."""
        ...
