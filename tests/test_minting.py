"""Minting orchestrator: the upload-and-mint pipeline for attendance NFTs."""

from __future__ import annotations

import asyncio
import base64
import json
from datetime import datetime, timedelta, timezone

import pytest

from attendmint.errors import (
    MintFailedError,
    MintInProgressError,
    MintTimeoutError,
    NoWalletError,
    NotEligibleError,
    NotFoundError,
)
from attendmint.models.entities import AttendanceRecord, Chain, NftStatus
from attendmint.services.minting import MintingOrchestrator

from tests.factories import EVM_WALLET, SOL_WALLET, seed_attendance
from tests.mocks import MockContentStorage, MockMinter


async def _record(store, attendance_id) -> AttendanceRecord:
    return AttendanceRecord.from_row(await store.get("attendance", attendance_id))


# ── Test 1: Happy path ─────────────────────────────────────


async def test_mint_happy_path(store, orchestrator, mock_storage, mock_minter):
    """Upload → mint → record: the attendance row carries the minted NFT."""
    record = await seed_attendance(store)

    result = await orchestrator.mint_for_attendance(record.id)

    assert result.mint_address == "0x" + f"{1:040x}"
    assert result.metadata_uri == "https://ipfs.io/ipfs/bafymockmetadata"
    assert result.chain == "ethereum"
    assert result.marketplace_url == f"https://opensea.io/assets/ethereum/{result.mint_address}"
    assert not result.already_minted

    uri, chain, recipient = mock_minter.mint_calls[0]
    assert uri == result.metadata_uri
    assert chain == Chain.ETHEREUM
    assert recipient == EVM_WALLET

    data, filename = mock_storage.upload_calls[0]
    assert filename == f"attendance-{record.id}.json"
    assert json.loads(data)["attributes"][-1] == {"trait_type": "Attendee", "value": "Ada"}

    stored = await _record(store, record.id)
    assert stored.nft_status == NftStatus.MINTED
    assert stored.nft_mint_address == result.mint_address
    assert stored.nft_metadata_uri == result.metadata_uri
    assert stored.nft_tx_hash == result.tx_hash
    assert stored.nft_minted_at is not None
    assert stored.nft_attempts == 1

    receipts = await store.query("mint_receipts", {"attendance_id": record.id})
    assert len(receipts) == 1 and receipts[0]["applied"]
    assert (await store.get_recent_activity())[0].event_type == "mint_success"


# ── Test 2: Idempotency ────────────────────────────────────


async def test_second_mint_returns_existing(store, orchestrator, mock_minter):
    record = await seed_attendance(store)
    first = await orchestrator.mint_for_attendance(record.id)

    second = await orchestrator.mint_for_attendance(record.id)

    assert second.already_minted
    assert second.mint_address == first.mint_address
    assert second.metadata_uri == first.metadata_uri
    assert len(mock_minter.mint_calls) == 1


async def test_concurrent_requests_mint_once(store, orchestrator, mock_minter):
    """Simultaneous requests for one record share a single mint."""
    mock_minter.delay = 0.05
    record = await seed_attendance(store)

    results = await asyncio.gather(
        *(orchestrator.mint_for_attendance(record.id) for _ in range(5))
    )

    assert len(mock_minter.mint_calls) == 1
    assert len({r.mint_address for r in results}) == 1
    assert sum(not r.already_minted for r in results) == 1


# ── Test 3: Failure & retry ────────────────────────────────


async def test_failed_mint_is_recorded_and_retryable(store, mock_storage):
    minter = MockMinter(fail_times=1, error="rpc unavailable")
    orchestrator = MintingOrchestrator(store, mock_storage, minter)
    record = await seed_attendance(store)

    with pytest.raises(MintFailedError, match="rpc unavailable"):
        await orchestrator.mint_for_attendance(record.id)

    failed = await _record(store, record.id)
    assert failed.nft_status == NftStatus.FAILED
    assert failed.nft_error == "rpc unavailable"
    assert failed.nft_mint_address is None

    result = await orchestrator.mint_for_attendance(record.id)
    minted = await _record(store, record.id)
    assert minted.nft_status == NftStatus.MINTED
    assert minted.nft_mint_address == result.mint_address
    assert minted.nft_error is None
    assert minted.nft_attempts == 2


async def test_mint_timeout(store, mock_storage):
    orchestrator = MintingOrchestrator(
        store, mock_storage, MockMinter(delay=1.0), mint_timeout=0.05,
    )
    record = await seed_attendance(store)

    with pytest.raises(MintTimeoutError):
        await orchestrator.mint_for_attendance(record.id)
    assert (await _record(store, record.id)).nft_status == NftStatus.FAILED


async def test_unexpected_error_becomes_mint_failed(store, mock_storage):
    class BrokenMinter:
        async def mint(self, metadata_uri, chain, recipient):
            raise RuntimeError("boom")

    orchestrator = MintingOrchestrator(store, mock_storage, BrokenMinter())
    record = await seed_attendance(store)

    with pytest.raises(MintFailedError, match="boom"):
        await orchestrator.mint_for_attendance(record.id)
    assert (await _record(store, record.id)).nft_error == "boom"


async def test_unjournaled_mint_fails_cleanly(store, orchestrator, monkeypatch):
    """A store error while journaling surfaces as MintFailedError and frees the claim."""
    record = await seed_attendance(store)
    insert = store.insert

    async def failing_insert(entity, fields):
        if entity == "mint_receipts":
            raise RuntimeError("disk I/O error")
        return await insert(entity, fields)

    monkeypatch.setattr(store, "insert", failing_insert)

    with pytest.raises(MintFailedError, match="disk I/O error"):
        await orchestrator.mint_for_attendance(record.id)

    stored = await _record(store, record.id)
    assert stored.nft_status == NftStatus.FAILED
    assert stored.nft_mint_address is None


async def test_journaled_mint_is_applied_on_retry(store, orchestrator, mock_minter, monkeypatch):
    """A mint journaled before the attendance write failed is applied, not minted twice."""
    record = await seed_attendance(store)
    update_where = store.update_where
    broken = {"attendance": True}

    async def flaky_update_where(entity, record_id, fields, expected):
        if entity == "attendance" and "nft_mint_address" in fields and broken["attendance"]:
            broken["attendance"] = False
            raise RuntimeError("database is locked")
        return await update_where(entity, record_id, fields, expected)

    monkeypatch.setattr(store, "update_where", flaky_update_where)

    with pytest.raises(MintFailedError, match="could not record it"):
        await orchestrator.mint_for_attendance(record.id)
    assert (await _record(store, record.id)).nft_status == NftStatus.FAILED

    result = await orchestrator.mint_for_attendance(record.id)

    assert result.already_minted
    assert result.mint_address == "0x" + f"{1:040x}"
    assert len(mock_minter.mint_calls) == 1
    stored = await _record(store, record.id)
    assert stored.nft_status == NftStatus.MINTED
    assert stored.nft_error is None


async def test_late_failure_keeps_newer_state(store, mock_storage):
    """A worker whose claim was taken over cannot overwrite the newer result."""
    record = await seed_attendance(store)

    class SupersededMinter:
        async def mint(self, metadata_uri, chain, recipient):
            current = await _record(store, record.id)
            await store.update("attendance", record.id, {
                "nft_status": NftStatus.MINTED,
                "nft_mint_address": "0x" + "ef" * 20,
                "nft_attempts": current.nft_attempts + 1,
            })
            raise MintFailedError("rpc unavailable")

    orchestrator = MintingOrchestrator(store, mock_storage, SupersededMinter())

    with pytest.raises(MintFailedError):
        await orchestrator.mint_for_attendance(record.id)

    stored = await _record(store, record.id)
    assert stored.nft_status == NftStatus.MINTED
    assert stored.nft_mint_address == "0x" + "ef" * 20
    assert stored.nft_error is None


# ── Test 4: Upload fallback ────────────────────────────────


async def test_upload_failure_falls_back_to_inline(store, mock_minter):
    orchestrator = MintingOrchestrator(store, MockContentStorage(succeed=False), mock_minter)
    record = await seed_attendance(store)

    result = await orchestrator.mint_for_attendance(record.id)

    assert result.metadata_uri.startswith("data:application/json;base64,")
    encoded = result.metadata_uri.split(",", 1)[1]
    document = json.loads(base64.b64decode(encoded))
    assert document["name"] == "Summer Synth Night - Attendance NFT"
    assert mock_minter.mint_calls[0][0] == result.metadata_uri

    events = [a.event_type for a in await store.get_recent_activity()]
    assert "mint_fallback_upload" in events


async def test_upload_timeout_falls_back_to_inline(store, mock_minter):
    orchestrator = MintingOrchestrator(
        store, MockContentStorage(delay=1.0), mock_minter, upload_timeout=0.05,
    )
    record = await seed_attendance(store)

    result = await orchestrator.mint_for_attendance(record.id)
    assert result.metadata_uri.startswith("data:")


# ── Test 5: Eligibility ────────────────────────────────────


async def test_not_eligible_leaves_record_untouched(store, orchestrator, mock_minter):
    record = await seed_attendance(store, nft_enabled=False)

    with pytest.raises(NotEligibleError):
        await orchestrator.mint_for_attendance(record.id)

    stored = await _record(store, record.id)
    assert stored.nft_status is None
    assert stored.nft_attempts == 0
    assert mock_minter.mint_calls == []


async def test_unknown_attendance(orchestrator):
    with pytest.raises(NotFoundError):
        await orchestrator.mint_for_attendance("missing")


# ── Test 6: Chain selection ────────────────────────────────


async def test_solana_wallet_mints_on_solana(store, orchestrator, mock_minter):
    record = await seed_attendance(store, wallet_address=SOL_WALLET)

    result = await orchestrator.mint_for_attendance(record.id)

    assert result.chain == "solana"
    assert mock_minter.mint_calls[0][1:] == (Chain.SOLANA, SOL_WALLET)
    assert result.marketplace_url.startswith("https://opensea.io/assets/solana/")


async def test_explicit_chain_picks_matching_wallet(store, orchestrator, mock_minter):
    record = await seed_attendance(store, alt_wallet_address=SOL_WALLET)

    await orchestrator.mint_for_attendance(record.id, chain=Chain.SOLANA)

    assert mock_minter.mint_calls[0][1:] == (Chain.SOLANA, SOL_WALLET)


async def test_no_wallet_fails(store, orchestrator, mock_minter):
    record = await seed_attendance(store, wallet_address=None)

    with pytest.raises(NoWalletError):
        await orchestrator.mint_for_attendance(record.id)

    stored = await _record(store, record.id)
    assert stored.nft_status == NftStatus.FAILED
    assert mock_minter.mint_calls == []


# ── Test 7: Claims & reconciliation ────────────────────────


async def test_live_claim_blocks_second_worker(store, orchestrator, mock_minter):
    """A claim held by another process is respected until its lease runs out."""
    record = await seed_attendance(store)
    await store.update("attendance", record.id, {
        "nft_attempts": 1,
        "nft_claimed_at": datetime.now(timezone.utc).isoformat(),
    })

    with pytest.raises(MintInProgressError):
        await orchestrator.mint_for_attendance(record.id)
    assert mock_minter.mint_calls == []


async def test_reconcile_expires_stale_claim(store, orchestrator):
    record = await seed_attendance(store)
    stale = datetime.now(timezone.utc) - timedelta(hours=1)
    await store.update("attendance", record.id, {
        "nft_attempts": 1,
        "nft_claimed_at": stale.isoformat(),
    })

    report = await orchestrator.reconcile()

    assert report.stale_claims_failed == 1
    stored = await _record(store, record.id)
    assert stored.nft_status == NftStatus.FAILED
    assert stored.nft_error == "mint claim expired"

    # Retry after expiry mints normally
    result = await orchestrator.mint_for_attendance(record.id)
    assert result.mint_address


async def test_reconcile_applies_orphaned_receipt(store, orchestrator, mock_minter):
    """A journaled mint whose attendance update was lost is applied, not re-minted."""
    record = await seed_attendance(store)
    await store.insert("mint_receipts", {
        "attendance_id": record.id,
        "mint_address": "0x" + "ab" * 20,
        "tx_hash": "0x" + "cd" * 32,
        "chain": "ethereum",
        "metadata_uri": "https://ipfs.io/ipfs/bafyorphan",
        "applied": False,
    })

    report = await orchestrator.reconcile()

    assert report.receipts_applied == 1
    stored = await _record(store, record.id)
    assert stored.nft_status == NftStatus.MINTED
    assert stored.nft_mint_address == "0x" + "ab" * 20

    result = await orchestrator.mint_for_attendance(record.id)
    assert result.already_minted
    assert mock_minter.mint_calls == []
    assert await store.query("mint_receipts", {"applied": False}) == []


# ── Test 8: Batch pass ─────────────────────────────────────


async def test_mint_pending_batch(store, orchestrator, mock_minter):
    first = await seed_attendance(store)
    second = await seed_attendance(store, event_id=first.event_id)

    report = await orchestrator.mint_pending()

    assert report.total == 2
    assert report.minted == 2
    assert report.failed == 0
    assert len(mock_minter.mint_calls) == 2
    assert (await _record(store, second.id)).is_minted


async def test_mint_pending_counts_failures(store, mock_storage):
    orchestrator = MintingOrchestrator(store, mock_storage, MockMinter(fail_times=5))
    record = await seed_attendance(store)

    report = await orchestrator.mint_pending()

    assert report.failed == 1
    assert report.errors[record.id] == "mock mint failure"

    # Failed records are only picked up when asked for
    assert (await orchestrator.mint_pending()).total == 0
    retry = await orchestrator.mint_pending(statuses=(NftStatus.FAILED,))
    assert retry.total == 1


async def test_build_metadata_for(store, orchestrator):
    record = await seed_attendance(store)
    meta = await orchestrator.build_metadata_for(record.id)

    assert meta.trait("Attendee") == "Ada"
    assert meta.external_url.endswith(f"/events/{record.event_id}")
