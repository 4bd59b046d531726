"""Chain integration: wallets, mint capabilities and address handling."""

from attendmint.chain.addresses import opensea_url, select_chain
from attendmint.chain.minter import HttpMintCapability, SimulatedMinter
from attendmint.chain.wallet import EvmWallet, SolanaWallet

__all__ = [
    "opensea_url", "select_chain",
    "HttpMintCapability", "SimulatedMinter",
    "EvmWallet", "SolanaWallet",
]
