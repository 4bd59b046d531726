"""Mock implementations of the external capabilities."""

from __future__ import annotations

import asyncio

from attendmint.chain.addresses import BASE58_ALPHABET
from attendmint.errors import MintFailedError, UploadFailedError
from attendmint.models.entities import Chain
from attendmint.models.records import MintReceipt


class MockContentStorage:
    """Implements ContentStorage protocol."""

    def __init__(
        self,
        succeed: bool = True,
        cid: str = "bafymockmetadata",
        delay: float = 0.0,
        error: str | None = None,
    ) -> None:
        self.succeed = succeed
        self.cid = cid
        self.delay = delay
        self._error = error
        self.upload_calls: list[tuple[bytes, str]] = []

    async def upload(self, data: bytes, filename: str = "metadata.json") -> str:
        self.upload_calls.append((data, filename))
        if self.delay:
            await asyncio.sleep(self.delay)
        if not self.succeed:
            raise UploadFailedError(self._error or "mock upload failure")
        return f"https://ipfs.io/ipfs/{self.cid}"


class MockMinter:
    """Implements MintCapability protocol.

    Fails the first ``fail_times`` calls, then succeeds with predictable
    addresses (one per call).
    """

    def __init__(
        self,
        fail_times: int = 0,
        delay: float = 0.0,
        error: str | None = None,
    ) -> None:
        self.fail_times = fail_times
        self.delay = delay
        self._error = error
        self.mint_calls: list[tuple[str, Chain, str]] = []

    async def mint(self, metadata_uri: str, chain: Chain, recipient: str) -> MintReceipt:
        self.mint_calls.append((metadata_uri, chain, recipient))
        n = len(self.mint_calls)
        if self.delay:
            await asyncio.sleep(self.delay)
        if n <= self.fail_times:
            raise MintFailedError(self._error or "mock mint failure")
        if chain == Chain.SOLANA:
            address = (BASE58_ALPHABET[n % len(BASE58_ALPHABET)] * 44)
        else:
            address = "0x" + f"{n:040x}"
        return MintReceipt(mint_address=address, tx_hash="0x" + f"{n:064x}", chain=chain.value)
