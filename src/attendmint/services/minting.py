"""Minting orchestrator - upload, mint and record attendance NFTs at most once."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from datetime import datetime, timedelta, timezone, tzinfo
from typing import AsyncIterator, Iterable

from attendmint.chain.addresses import opensea_url, select_chain
from attendmint.errors import (
    MintError,
    MintFailedError,
    MintInProgressError,
    MintTimeoutError,
    NotEligibleError,
    NotFoundError,
)
from attendmint.interfaces.content import ContentStorage
from attendmint.interfaces.minter import MintCapability
from attendmint.interfaces.store import DurableStore
from attendmint.ipfs.uploader import inline_data_uri
from attendmint.models.entities import (
    AttendanceRecord,
    Chain,
    Event,
    NftStatus,
    Profile,
    parse_ts,
)
from attendmint.models.metadata import NFTMetadata
from attendmint.models.records import (
    MintBatchReport,
    MintReceipt,
    MintResult,
    ReconcileReport,
)
from attendmint.services.metadata import (
    DEFAULT_IMAGE,
    DEFAULT_LOCATION,
    EARLY_BIRD_WINDOW,
    build_metadata,
)

log = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MintingOrchestrator:
    """Runs the mint pipeline for attendance records.

    Pipeline per record:
    1. Load the record and its event; refuse events without NFTs
    2. Return the existing result if already minted
    3. Claim the record (pending) with a compare-and-set plus a lease
    4. Build metadata and upload it, falling back to an inline data URI
    5. Mint on the chain of the attendee's wallet
    6. Journal a receipt, then write the minted fields

    Within one process a per-record lock makes concurrent requests share a
    single mint; across processes the claim lease does.
    """

    def __init__(
        self,
        store: DurableStore,
        storage: ContentStorage,
        minter: MintCapability,
        *,
        tz: tzinfo = timezone.utc,
        external_url_base: str = "",
        default_image: str = DEFAULT_IMAGE,
        default_location: str = DEFAULT_LOCATION,
        early_bird_window: timedelta = EARLY_BIRD_WINDOW,
        upload_timeout: float = 30.0,
        mint_timeout: float = 60.0,
        claim_lease: int = 300,
        max_concurrent: int = 3,
    ) -> None:
        self._store = store
        self._storage = storage
        self._minter = minter
        self._tz = tz
        self._external_url_base = external_url_base
        self._default_image = default_image
        self._default_location = default_location
        self._early_bird_window = early_bird_window
        self._upload_timeout = upload_timeout
        self._mint_timeout = mint_timeout
        self._claim_lease = timedelta(seconds=claim_lease)
        self._max_concurrent = max(1, max_concurrent)
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    # ── Public API ─────────────────────────────────────────

    async def mint_for_attendance(
        self, attendance_id: str, chain: Chain | None = None,
    ) -> MintResult:
        """Mint the NFT for one attendance record.

        ``chain`` forces the target chain; by default it follows the format
        of the attendee's wallet address. Raises NotFoundError,
        NotEligibleError or a MintError subclass.
        """
        record = await self._get_attendance(attendance_id)
        event = await self._get_event(record.event_id)
        if not event.nft_enabled:
            raise NotEligibleError(f"Event {event.id} does not issue attendance NFTs")
        if record.is_minted:
            return _existing_result(record)

        async with self._single_flight(attendance_id):
            # Someone may have finished while we waited for the lock.
            record = await self._get_attendance(attendance_id)
            if record.is_minted:
                return _existing_result(record)
            if await self._apply_journaled(attendance_id):
                return _existing_result(await self._get_attendance(attendance_id))

            claimed = await self._claim(record)
            if claimed.is_minted:
                return _existing_result(claimed)
            return await self._run_pipeline(claimed, event, chain)

    async def build_metadata_for(self, attendance_id: str) -> NFTMetadata:
        """Metadata the record would be minted with, without minting."""
        record = await self._get_attendance(attendance_id)
        event = await self._get_event(record.event_id)
        profile = await self._get_profile(record.attendee_id)
        return self._metadata(event, record, profile)

    async def mint_pending(
        self,
        limit: int | None = None,
        statuses: Iterable[NftStatus] = (NftStatus.PENDING,),
    ) -> MintBatchReport:
        """Mint every record in ``statuses``, a few at a time."""
        start = time.monotonic()
        rows = await self._store.query(
            "attendance",
            {"nft_status": list(statuses)},
            order_by="checked_in_at",
            limit=limit,
        )
        report = MintBatchReport(total=len(rows))
        semaphore = asyncio.Semaphore(self._max_concurrent)

        async def _mint_one(attendance_id: str) -> str:
            async with semaphore:
                try:
                    await self.mint_for_attendance(attendance_id)
                    return "minted"
                except (MintInProgressError, NotEligibleError):
                    return "skipped"
                except MintError as exc:
                    report.errors[attendance_id] = exc.message
                    return "failed"

        results = await asyncio.gather(
            *(_mint_one(row["id"]) for row in rows), return_exceptions=True,
        )
        for row, result in zip(rows, results):
            if isinstance(result, Exception):
                log.error("Unexpected mint error for %s: %s", row["id"], result)
                report.errors[row["id"]] = str(result)
                report.failed += 1
            elif result == "minted":
                report.minted += 1
            elif result == "skipped":
                report.skipped += 1
            else:
                report.failed += 1

        report.duration_ms = int((time.monotonic() - start) * 1000)
        if report.total:
            log.info(
                "Mint pass: %d total, %d minted, %d failed, %d skipped in %dms",
                report.total, report.minted, report.failed, report.skipped, report.duration_ms,
            )
        return report

    async def reconcile(self) -> ReconcileReport:
        """Repair state left behind by crashes mid-pipeline.

        Receipts whose attendance update never landed are applied, then
        pending claims whose lease ran out are marked failed so they can
        be retried.
        """
        report = ReconcileReport()

        for row in await self._store.query("mint_receipts", {"applied": False}):
            if await self._apply_receipt(row):
                report.receipts_applied += 1

        cutoff = _utcnow() - self._claim_lease
        for row in await self._store.query("attendance", {"nft_status": NftStatus.PENDING}):
            record = AttendanceRecord.from_row(row)
            if not record.nft_claimed_at or parse_ts(record.nft_claimed_at) >= cutoff:
                continue
            updated = await self._store.update_where(
                "attendance",
                record.id,
                {"nft_status": NftStatus.FAILED, "nft_error": "mint claim expired"},
                {"nft_status": NftStatus.PENDING, "nft_attempts": record.nft_attempts},
            )
            if updated is not None:
                report.stale_claims_failed += 1
                await self._store.log_activity(
                    "reconcile_stale_claim",
                    f"Expired mint claim on {record.id} (attempt {record.nft_attempts})",
                    event_id=record.event_id,
                    attendance_id=record.id,
                )

        if report.receipts_applied or report.stale_claims_failed:
            log.warning(
                "Reconciled %d receipt(s), %d stale claim(s)",
                report.receipts_applied, report.stale_claims_failed,
            )
        return report

    # ── Pipeline ───────────────────────────────────────────

    async def _claim(self, record: AttendanceRecord) -> AttendanceRecord:
        now = _utcnow()
        if (
            record.nft_status == NftStatus.PENDING
            and record.nft_claimed_at
            and now - parse_ts(record.nft_claimed_at) < self._claim_lease
        ):
            raise MintInProgressError(f"Mint already in progress for {record.id}")

        row = await self._store.update_where(
            "attendance",
            record.id,
            {
                "nft_status": NftStatus.PENDING,
                "nft_attempts": record.nft_attempts + 1,
                "nft_claimed_at": now.isoformat(),
            },
            {"nft_status": record.nft_status, "nft_attempts": record.nft_attempts},
        )
        if row is None:
            current = await self._get_attendance(record.id)
            if current.is_minted:
                return current
            raise MintInProgressError(f"Mint already in progress for {record.id}")
        return AttendanceRecord.from_row(row)

    async def _run_pipeline(
        self, record: AttendanceRecord, event: Event, chain: Chain | None,
    ) -> MintResult:
        start = time.monotonic()
        log.info("Minting attendance NFT for %s (attempt %d)", record.id, record.nft_attempts)
        try:
            profile = await self._get_profile(record.attendee_id)
            metadata = self._metadata(event, record, profile)
            metadata_uri = await self._upload(metadata, record)
            target_chain, recipient = select_chain(profile, chain)
            receipt = await self._mint(metadata_uri, target_chain, recipient)
        except MintError as exc:
            await self._mark_failed(record, exc)
            raise
        except Exception as exc:
            await self._mark_failed(record, exc)
            raise MintFailedError(str(exc)) from exc

        try:
            return await self._persist(record, receipt, metadata_uri, start)
        except Exception as exc:
            await self._mark_failed(record, exc)
            raise MintFailedError(
                f"Minted {receipt.mint_address} but could not record it: {exc}"
            ) from exc

    def _metadata(
        self, event: Event, record: AttendanceRecord, profile: Profile | None,
    ) -> NFTMetadata:
        return build_metadata(
            event,
            record,
            profile.display_name if profile else None,
            tz=self._tz,
            external_url_base=self._external_url_base,
            default_image=self._default_image,
            default_location=self._default_location,
            early_bird_window=self._early_bird_window,
        )

    async def _upload(self, metadata: NFTMetadata, record: AttendanceRecord) -> str:
        payload = metadata.to_json().encode("utf-8")
        try:
            return await asyncio.wait_for(
                self._storage.upload(payload, f"attendance-{record.id}.json"),
                self._upload_timeout,
            )
        except Exception as exc:
            reason = "timed out" if isinstance(exc, asyncio.TimeoutError) else str(exc)
            log.warning("Metadata upload failed for %s, embedding inline: %s", record.id, reason)
            await self._store.log_activity(
                "mint_fallback_upload",
                f"Upload failed ({reason}); using inline metadata",
                event_id=record.event_id,
                attendance_id=record.id,
            )
            return inline_data_uri(payload)

    async def _mint(self, metadata_uri: str, chain: Chain, recipient: str) -> MintReceipt:
        try:
            return await asyncio.wait_for(
                self._minter.mint(metadata_uri, chain, recipient), self._mint_timeout,
            )
        except asyncio.TimeoutError as exc:
            raise MintTimeoutError(f"Mint timed out after {self._mint_timeout}s") from exc

    async def _persist(
        self,
        record: AttendanceRecord,
        receipt: MintReceipt,
        metadata_uri: str,
        start: float,
    ) -> MintResult:
        try:
            journal = await self._store.insert("mint_receipts", {
                "attendance_id": record.id,
                "mint_address": receipt.mint_address,
                "tx_hash": receipt.tx_hash,
                "chain": receipt.chain,
                "metadata_uri": metadata_uri,
                "applied": False,
            })
        except Exception:
            log.critical(
                "Minted %s for %s (tx %s on %s) but could not journal it",
                receipt.mint_address, record.id, receipt.tx_hash, receipt.chain,
            )
            raise

        if not await self._apply_receipt(journal):
            current = await self._get_attendance(record.id)
            log.error(
                "Attendance %s already held mint %s; new mint %s left unapplied",
                record.id, current.nft_mint_address, receipt.mint_address,
            )
            return _existing_result(current)

        duration = int((time.monotonic() - start) * 1000)
        log.info("Minted %s for %s in %dms", receipt.mint_address, record.id, duration)
        await self._store.log_activity(
            "mint_success",
            f"Minted {receipt.mint_address} on {receipt.chain}",
            event_id=record.event_id,
            attendance_id=record.id,
        )
        return MintResult(
            attendance_id=record.id,
            mint_address=receipt.mint_address,
            metadata_uri=metadata_uri,
            chain=receipt.chain,
            tx_hash=receipt.tx_hash,
            marketplace_url=opensea_url(receipt.mint_address, receipt.chain),
            duration_ms=duration,
        )

    async def _apply_receipt(self, receipt: dict) -> bool:
        """Write a journaled mint onto its attendance record.

        The mint address is written only once; returns False if the record
        already carries one.
        """
        updated = await self._store.update_where(
            "attendance",
            receipt["attendance_id"],
            {
                "nft_status": NftStatus.MINTED,
                "nft_mint_address": receipt["mint_address"],
                "nft_metadata_uri": receipt["metadata_uri"],
                "nft_minted_at": _utcnow().isoformat(),
                "nft_tx_hash": receipt["tx_hash"],
                "nft_chain": receipt["chain"],
                "nft_error": None,
            },
            {"nft_mint_address": None},
        )
        await self._store.update("mint_receipts", receipt["id"], {"applied": True})
        return updated is not None

    async def _apply_journaled(self, attendance_id: str) -> bool:
        rows = await self._store.query(
            "mint_receipts",
            {"attendance_id": attendance_id, "applied": False},
            order_by="created_at",
            limit=1,
        )
        return bool(rows) and await self._apply_receipt(rows[0])

    async def _mark_failed(self, record: AttendanceRecord, exc: Exception) -> None:
        message = str(exc) or type(exc).__name__
        log.error("Mint failed for %s: %s", record.id, message)
        try:
            updated = await self._store.update_where(
                "attendance",
                record.id,
                {"nft_status": NftStatus.FAILED, "nft_error": message[:500]},
                {"nft_status": NftStatus.PENDING, "nft_attempts": record.nft_attempts},
            )
            if updated is None:
                log.warning("Attendance %s moved on during the mint; keeping its state", record.id)
                return
            await self._store.log_activity(
                "mint_failed",
                f"Mint failed: {message}",
                event_id=record.event_id,
                attendance_id=record.id,
            )
        except Exception as store_exc:
            log.error("Could not record mint failure for %s: %s", record.id, store_exc)

    # ── Helpers ────────────────────────────────────────────

    @contextlib.asynccontextmanager
    async def _single_flight(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                del self._locks[key]

    async def _get_attendance(self, attendance_id: str) -> AttendanceRecord:
        row = await self._store.get("attendance", attendance_id)
        if row is None:
            raise NotFoundError(f"Attendance record not found: {attendance_id}")
        return AttendanceRecord.from_row(row)

    async def _get_event(self, event_id: str) -> Event:
        row = await self._store.get("events", event_id)
        if row is None:
            raise NotFoundError(f"Event not found: {event_id}")
        return Event.from_row(row)

    async def _get_profile(self, user_id: str) -> Profile | None:
        row = await self._store.get("profiles", user_id)
        return Profile.from_row(row) if row else None


def _existing_result(record: AttendanceRecord) -> MintResult:
    return MintResult(
        attendance_id=record.id,
        mint_address=record.nft_mint_address or "",
        metadata_uri=record.nft_metadata_uri or "",
        chain=record.nft_chain,
        tx_hash=record.nft_tx_hash,
        marketplace_url=opensea_url(record.nft_mint_address or "", record.nft_chain),
        already_minted=True,
    )
