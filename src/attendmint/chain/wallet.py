"""Simulated wallets for the primary (EVM) and alternate (Solana) chains."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from attendmint.chain.addresses import is_evm_address, is_solana_address
from attendmint.chain.minter import mock_tx_hash
from attendmint.errors import WalletError
from attendmint.models.entities import Chain

log = logging.getLogger(__name__)


class SimulatedWallet(ABC):
    """A wallet bound to one address; transactions return mock hashes.

    The two chains are separate variants, chosen explicitly by the caller.
    """

    chain: Chain = Chain.ETHEREUM

    def __init__(self, address: str, balance: float | None = None) -> None:
        if not self.valid_address(address):
            raise WalletError(f"Invalid {self.chain.value} address: {address}")
        self._address = address
        self._connected = False
        self.balance = balance  # None means unlimited
        self.sent: list[tuple[float, str, str]] = []  # (amount, recipient, tx_hash)

    @staticmethod
    @abstractmethod
    def valid_address(address: str) -> bool:
        ...

    def address(self) -> str | None:
        return self._address if self._connected else None

    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> str:
        self._connected = True
        log.info("Connected %s wallet %s", self.chain.value, self._address)
        return self._address

    async def disconnect(self) -> None:
        self._connected = False

    async def send_transaction(self, amount: float, recipient: str) -> str:
        if not self._connected:
            raise WalletError("Wallet not connected")
        if amount < 0:
            raise WalletError("Amount must not be negative")
        if not self.valid_address(recipient):
            raise WalletError(f"Invalid {self.chain.value} recipient: {recipient}")
        if self.balance is not None:
            if amount > self.balance:
                raise WalletError(
                    f"Insufficient balance: {self.balance} < {amount}"
                )
            self.balance -= amount

        tx_hash = mock_tx_hash()
        self.sent.append((amount, recipient, tx_hash))
        log.info("Sent %s on %s to %s (%s)", amount, self.chain.value, recipient, tx_hash)
        return tx_hash


class EvmWallet(SimulatedWallet):
    chain = Chain.ETHEREUM

    @staticmethod
    def valid_address(address: str) -> bool:
        return is_evm_address(address)


class SolanaWallet(SimulatedWallet):
    chain = Chain.SOLANA

    @staticmethod
    def valid_address(address: str) -> bool:
        return is_solana_address(address)
