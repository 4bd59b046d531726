"""Mint capabilities - an HTTP mint service client and a simulated minter."""

from __future__ import annotations

import asyncio
import logging
import secrets

import httpx

from attendmint.chain.addresses import BASE58_ALPHABET
from attendmint.errors import MintFailedError, MintTimeoutError
from attendmint.models.entities import Chain
from attendmint.models.records import MintReceipt

log = logging.getLogger(__name__)


def mock_mint_address(chain: Chain) -> str:
    """A random token address in the format native to ``chain``."""
    if chain == Chain.SOLANA:
        return "".join(secrets.choice(BASE58_ALPHABET) for _ in range(44))
    return "0x" + secrets.token_hex(20)


def mock_tx_hash() -> str:
    return "0x" + secrets.token_hex(32)


class SimulatedMinter:
    """Mints nothing on-chain; returns well-formed addresses and hashes.

    Stands in for a real chain during demos and local runs.
    """

    def __init__(self, delay: float = 0.0) -> None:
        self._delay = delay

    async def mint(self, metadata_uri: str, chain: Chain, recipient: str) -> MintReceipt:
        if not recipient:
            raise MintFailedError("No recipient address")
        if self._delay:
            await asyncio.sleep(self._delay)
        receipt = MintReceipt(
            mint_address=mock_mint_address(chain),
            tx_hash=mock_tx_hash(),
            chain=chain.value,
        )
        log.info(
            "Simulated mint on %s for %s: %s", chain.value, recipient, receipt.mint_address,
        )
        return receipt


class HttpMintCapability:
    """Calls a remote mint service.

    POSTs ``{"metadataUri", "chain", "recipient"}`` as JSON and expects
    ``{"success": true, "mintAddress", "transactionHash", "chain"}`` back,
    or ``{"success": false, "error"}``.
    """

    def __init__(self, endpoint: str, api_key: str = "", timeout: float = 60.0) -> None:
        self._endpoint = endpoint
        self._api_key = api_key
        self._timeout = timeout

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    async def mint(self, metadata_uri: str, chain: Chain, recipient: str) -> MintReceipt:
        log.info("Requesting mint on %s for %s", chain.value, recipient)
        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout, connect=10),
            ) as client:
                resp = await client.post(
                    self._endpoint,
                    json={
                        "metadataUri": metadata_uri,
                        "chain": chain.value,
                        "recipient": recipient,
                    },
                    headers=self._headers(),
                )
                data = resp.json()
        except httpx.TimeoutException as exc:
            raise MintTimeoutError(f"mint service timeout: {exc}") from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise MintFailedError(f"mint service error: {exc}") from exc

        if resp.status_code >= 400 or not data.get("success"):
            error = data.get("error") or f"HTTP {resp.status_code}"
            log.error("Mint rejected: %s", error)
            raise MintFailedError(str(error))

        mint_address = data.get("mintAddress")
        tx_hash = data.get("transactionHash")
        if not mint_address or not tx_hash:
            raise MintFailedError("mint service response missing mintAddress or transactionHash")

        return MintReceipt(
            mint_address=mint_address,
            tx_hash=tx_hash,
            chain=data.get("chain") or chain.value,
        )
