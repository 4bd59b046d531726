"""WalletCapability protocol - a connected wallet on one chain."""

from __future__ import annotations

from typing import Protocol

from attendmint.models.entities import Chain


class WalletCapability(Protocol):
    """A user's wallet. Primary (EVM) and alternate (Solana) variants exist."""

    @property
    def chain(self) -> Chain:
        ...

    def address(self) -> str | None:
        """Connected address, or None if disconnected."""
        ...

    def is_connected(self) -> bool:
        ...

    async def connect(self) -> str:
        """Connect and return the address."""
        ...

    async def disconnect(self) -> None:
        ...

    async def send_transaction(self, amount: float, recipient: str) -> str:
        """Send ``amount`` to ``recipient`` and return the transaction hash."""
        ...
