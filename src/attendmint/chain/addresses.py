"""Wallet address formats, chain selection and marketplace links."""

from __future__ import annotations

import re

from attendmint.errors import NoWalletError
from attendmint.models.entities import Chain, Profile

BASE58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"

_EVM_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")
_SOLANA_RE = re.compile(rf"^[{BASE58_ALPHABET}]{{32,44}}$")

OPENSEA_BASE = "https://opensea.io/assets"
_OPENSEA_SEGMENTS = {
    Chain.ETHEREUM: "ethereum",
    Chain.POLYGON: "matic",
    Chain.SOLANA: "solana",
}


def is_evm_address(address: str | None) -> bool:
    return bool(address) and _EVM_RE.match(address) is not None


def is_solana_address(address: str | None) -> bool:
    return bool(address) and _SOLANA_RE.match(address) is not None


def address_chain(address: str | None) -> Chain | None:
    """Guess the chain an address belongs to from its format."""
    if is_evm_address(address):
        return Chain.ETHEREUM
    if is_solana_address(address):
        return Chain.SOLANA
    return None


def select_chain(profile: Profile | None, chain: Chain | None = None) -> tuple[Chain, str]:
    """Pick the chain and recipient address for minting to ``profile``.

    An explicit ``chain`` picks the first wallet whose format fits it
    (polygon shares EVM addresses). Otherwise the primary wallet wins,
    then the alternate one.
    """
    if profile is None:
        raise NoWalletError("No profile for attendee")

    candidates = [profile.wallet_address, profile.alt_wallet_address]

    if chain is not None:
        wanted = Chain.ETHEREUM if chain == Chain.POLYGON else chain
        for address in candidates:
            if address_chain(address) == wanted:
                return chain, address  # type: ignore[return-value]
        raise NoWalletError(f"No {chain.value} wallet address for attendee {profile.id}")

    for address in candidates:
        guessed = address_chain(address)
        if guessed is not None:
            return guessed, address  # type: ignore[return-value]
    raise NoWalletError(f"No wallet address found for attendee {profile.id}")


def opensea_url(mint_address: str, chain: Chain | str | None) -> str:
    """Marketplace page for a minted token."""
    try:
        segment = _OPENSEA_SEGMENTS.get(Chain(chain)) if chain else None
    except ValueError:
        segment = None
    if segment is None:
        return f"{OPENSEA_BASE}/{mint_address}"
    return f"{OPENSEA_BASE}/{segment}/{mint_address}"
