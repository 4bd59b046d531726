"""Wallet formats, chain selection, wallets and mint capabilities."""

from __future__ import annotations

import asyncio

import pytest
from aiohttp import web

from attendmint.chain.addresses import (
    address_chain,
    is_evm_address,
    is_solana_address,
    opensea_url,
    select_chain,
)
from attendmint.chain.minter import HttpMintCapability, SimulatedMinter
from attendmint.chain.wallet import EvmWallet, SimulatedWallet, SolanaWallet
from attendmint.errors import MintFailedError, MintTimeoutError, NoWalletError, WalletError
from attendmint.models.entities import Chain, Profile

from tests.factories import EVM_WALLET, EVM_WALLET_2, SOL_WALLET

MINT_PORT = 9312


# ── Addresses ──────────────────────────────────────────────


def test_address_formats():
    assert is_evm_address(EVM_WALLET)
    assert not is_evm_address(EVM_WALLET[:-1])
    assert is_solana_address(SOL_WALLET)
    assert not is_solana_address("0OIl" * 10)
    assert address_chain(EVM_WALLET) == Chain.ETHEREUM
    assert address_chain(SOL_WALLET) == Chain.SOLANA
    assert address_chain("") is None
    assert address_chain(None) is None


def test_select_chain_prefers_primary_wallet():
    profile = Profile(id="u", wallet_address=EVM_WALLET, alt_wallet_address=SOL_WALLET)
    assert select_chain(profile) == (Chain.ETHEREUM, EVM_WALLET)


def test_select_chain_falls_back_to_alternate():
    profile = Profile(id="u", wallet_address="garbage", alt_wallet_address=SOL_WALLET)
    assert select_chain(profile) == (Chain.SOLANA, SOL_WALLET)


def test_select_chain_explicit():
    profile = Profile(id="u", wallet_address=EVM_WALLET, alt_wallet_address=SOL_WALLET)

    assert select_chain(profile, Chain.SOLANA) == (Chain.SOLANA, SOL_WALLET)
    # Polygon shares the EVM address format
    assert select_chain(profile, Chain.POLYGON) == (Chain.POLYGON, EVM_WALLET)


def test_select_chain_without_wallet():
    with pytest.raises(NoWalletError):
        select_chain(Profile(id="u"))
    with pytest.raises(NoWalletError):
        select_chain(None)
    with pytest.raises(NoWalletError):
        select_chain(Profile(id="u", wallet_address=EVM_WALLET), Chain.SOLANA)


def test_opensea_url():
    assert opensea_url("0xabc", "ethereum") == "https://opensea.io/assets/ethereum/0xabc"
    assert opensea_url("0xabc", Chain.POLYGON) == "https://opensea.io/assets/matic/0xabc"
    assert opensea_url("Sol1", "solana") == "https://opensea.io/assets/solana/Sol1"
    assert opensea_url("0xabc", "unknown-chain") == "https://opensea.io/assets/0xabc"
    assert opensea_url("0xabc", None) == "https://opensea.io/assets/0xabc"


# ── Wallets ────────────────────────────────────────────────


async def test_wallet_connect_and_send():
    wallet = EvmWallet(EVM_WALLET, balance=1.0)
    assert wallet.address() is None

    assert await wallet.connect() == EVM_WALLET
    assert wallet.is_connected()
    tx_hash = await wallet.send_transaction(0.25, EVM_WALLET_2)

    assert tx_hash.startswith("0x") and len(tx_hash) == 66
    assert wallet.balance == pytest.approx(0.75)
    assert wallet.sent == [(0.25, EVM_WALLET_2, tx_hash)]

    await wallet.disconnect()
    with pytest.raises(WalletError):
        await wallet.send_transaction(0.1, EVM_WALLET_2)


async def test_wallet_rejects_foreign_recipient():
    wallet = SolanaWallet(SOL_WALLET)
    await wallet.connect()
    with pytest.raises(WalletError, match="recipient"):
        await wallet.send_transaction(0.1, EVM_WALLET)


def test_wallet_rejects_bad_address():
    with pytest.raises(WalletError):
        EvmWallet(SOL_WALLET)
    with pytest.raises(WalletError):
        SolanaWallet(EVM_WALLET)


def test_wallet_needs_a_chain():
    with pytest.raises(TypeError):
        SimulatedWallet(EVM_WALLET)


# ── Simulated minter ───────────────────────────────────────


async def test_simulated_minter_formats():
    minter = SimulatedMinter()

    evm = await minter.mint("ipfs://x", Chain.ETHEREUM, EVM_WALLET)
    sol = await minter.mint("ipfs://x", Chain.SOLANA, SOL_WALLET)

    assert is_evm_address(evm.mint_address)
    assert is_solana_address(sol.mint_address)
    assert evm.chain == "ethereum"
    assert sol.chain == "solana"
    assert evm.mint_address != (await minter.mint("ipfs://x", Chain.ETHEREUM, EVM_WALLET)).mint_address


async def test_simulated_minter_needs_recipient():
    with pytest.raises(MintFailedError):
        await SimulatedMinter().mint("ipfs://x", Chain.ETHEREUM, "")


# ── HTTP mint capability ───────────────────────────────────


@pytest.fixture
async def fake_mint_service():
    """Fake mint service; ``state["reply"]`` overrides the response body."""
    state = {"requests": [], "reply": None, "status": 200, "delay": 0.0}

    async def handle_mint(request):
        body = await request.json()
        state["requests"].append({"body": body, "auth": request.headers.get("Authorization")})
        if state["delay"]:
            await asyncio.sleep(state["delay"])
        reply = state["reply"] or {
            "success": True,
            "mintAddress": "0x" + "12" * 20,
            "transactionHash": "0x" + "34" * 32,
            "chain": body["chain"],
        }
        return web.json_response(reply, status=state["status"])

    app = web.Application()
    app.router.add_post("/mint", handle_mint)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "127.0.0.1", MINT_PORT)
    await site.start()
    yield f"http://127.0.0.1:{MINT_PORT}/mint", state
    await runner.cleanup()


async def test_http_mint_success(fake_mint_service):
    endpoint, state = fake_mint_service
    minter = HttpMintCapability(endpoint, api_key="secret", timeout=5)

    receipt = await minter.mint("https://ipfs.io/ipfs/bafy", Chain.POLYGON, EVM_WALLET)

    assert receipt.mint_address == "0x" + "12" * 20
    assert receipt.tx_hash == "0x" + "34" * 32
    assert receipt.chain == "polygon"
    request = state["requests"][0]
    assert request["body"] == {
        "metadataUri": "https://ipfs.io/ipfs/bafy",
        "chain": "polygon",
        "recipient": EVM_WALLET,
    }
    assert request["auth"] == "Bearer secret"


async def test_http_mint_rejected(fake_mint_service):
    endpoint, state = fake_mint_service
    state["reply"] = {"success": False, "error": "insufficient gas"}

    with pytest.raises(MintFailedError, match="insufficient gas"):
        await HttpMintCapability(endpoint, timeout=5).mint("ipfs://x", Chain.ETHEREUM, EVM_WALLET)


async def test_http_mint_server_error(fake_mint_service):
    endpoint, state = fake_mint_service
    state["reply"] = {"detail": "oops"}
    state["status"] = 502

    with pytest.raises(MintFailedError, match="HTTP 502"):
        await HttpMintCapability(endpoint, timeout=5).mint("ipfs://x", Chain.ETHEREUM, EVM_WALLET)


async def test_http_mint_incomplete_response(fake_mint_service):
    endpoint, state = fake_mint_service
    state["reply"] = {"success": True, "mintAddress": "0xabc"}

    with pytest.raises(MintFailedError, match="transactionHash"):
        await HttpMintCapability(endpoint, timeout=5).mint("ipfs://x", Chain.ETHEREUM, EVM_WALLET)


async def test_http_mint_timeout(fake_mint_service):
    endpoint, state = fake_mint_service
    state["delay"] = 1.0

    with pytest.raises(MintTimeoutError, match="timeout"):
        await HttpMintCapability(endpoint, timeout=0.2).mint("ipfs://x", Chain.ETHEREUM, EVM_WALLET)
