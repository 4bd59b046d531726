"""Ticketing engine - wires all components together."""

from __future__ import annotations

import asyncio
import logging
import signal
from datetime import timedelta
from typing import Any, Callable

from attendmint.chain.addresses import address_chain, select_chain
from attendmint.chain.minter import HttpMintCapability, SimulatedMinter
from attendmint.errors import (
    AttendmintError,
    CapacityError,
    MintInProgressError,
    NoWalletError,
    NotAuthenticatedError,
    NotOwnerError,
    WalletError,
)
from attendmint.interfaces.content import ContentStorage
from attendmint.interfaces.identity import IdentityProvider, StaticIdentity
from attendmint.interfaces.minter import MintCapability
from attendmint.interfaces.store import ChangeCallback, DurableStore
from attendmint.interfaces.wallet import WalletCapability
from attendmint.ipfs.uploader import KuboContentStorage, inline_data_uri
from attendmint.models.config import EngineConfig, MintMode
from attendmint.models.entities import (
    AttendanceRecord,
    Chain,
    Event,
    NftStatus,
    Profile,
    Ticket,
    parse_ts,
)
from attendmint.models.records import (
    MintResult,
    PaymentReceipt,
    PricingRecommendation,
    ReconcileReport,
)
from attendmint.services import pricing
from attendmint.services.checkin import CheckInCoordinator
from attendmint.services.inventory import InventoryLedger
from attendmint.services.metadata import build_ticket_metadata, resolve_timezone
from attendmint.services.minting import MintingOrchestrator
from attendmint.services.tickets import TicketRecordStore
from attendmint.storage.sqlite import SQLiteStore

log = logging.getLogger(__name__)

EDITABLE_EVENT_FIELDS = frozenset({
    "title", "description", "date", "location", "image_url", "base_price",
    "total_tickets", "nft_enabled", "nft_artwork_url",
})


class TicketingEngine:
    """Ticket purchase, check-in and attendance-NFT lifecycle.

    Acts on behalf of whoever the identity provider reports. In auto mint
    mode each check-in is queued for minting by a background worker,
    which also sweeps pending records on an interval.
    """

    def __init__(
        self,
        cfg: EngineConfig,
        identity: IdentityProvider | None = None,
        *,
        store: DurableStore | None = None,
        storage: ContentStorage | None = None,
        minter: MintCapability | None = None,
        ticket_minter: MintCapability | None = None,
    ) -> None:
        self._cfg = cfg
        self.identity = identity or StaticIdentity()

        # Collaborators
        self.store: DurableStore = store or SQLiteStore(cfg.db_path)
        self.storage: ContentStorage = storage or KuboContentStorage(
            cfg.ipfs_api_url, cfg.ipfs_gateway_url, cfg.upload_timeout,
        )
        self.minter: MintCapability = minter or _configured_minter(cfg)
        self.ticket_minter: MintCapability = ticket_minter or _configured_minter(cfg)

        # Core components
        self.inventory = InventoryLedger(self.store)
        self.tickets = TicketRecordStore(self.store)
        self.checkins = CheckInCoordinator(
            self.store, self.tickets, loyalty_points=cfg.loyalty_points_per_check_in,
        )
        self.minting = MintingOrchestrator(
            self.store,
            self.storage,
            self.minter,
            tz=resolve_timezone(cfg.timezone),
            external_url_base=cfg.external_url_base,
            default_image=cfg.default_image_url,
            default_location=cfg.default_check_in_location,
            early_bird_window=timedelta(minutes=cfg.early_bird_minutes),
            upload_timeout=cfg.upload_timeout,
            mint_timeout=cfg.mint_timeout,
            claim_lease=cfg.claim_lease,
            max_concurrent=cfg.max_concurrent_mints,
        )

        self._mint_queue: asyncio.Queue[str] = asyncio.Queue()
        self._worker: asyncio.Task | None = None
        self._running = False
        if cfg.mint_mode == MintMode.AUTO:
            self.checkins.on_attendance = self._enqueue_mint

    @property
    def config(self) -> EngineConfig:
        return self._cfg

    # ── Lifecycle ──────────────────────────────────────────

    async def start(self) -> None:
        """Open the store and, in auto mode, start the mint worker."""
        await self.store.initialize()
        if self._cfg.mint_mode == MintMode.AUTO and self._worker is None:
            self._running = True
            self._worker = asyncio.create_task(self._mint_worker())
        log.debug("Engine started (mint mode: %s)", self._cfg.mint_mode.value)

    async def stop(self) -> None:
        self._running = False
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
        await self.store.close()

    async def __aenter__(self) -> TicketingEngine:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()

    async def wait_for_mints(self) -> None:
        """Block until every queued check-in has been through the mint worker."""
        await self._mint_queue.join()

    # ── Events ─────────────────────────────────────────────

    async def create_event(
        self,
        title: str,
        date: str,
        location: str,
        total_tickets: int,
        base_price: float = 0.0,
        description: str = "",
        image_url: str | None = None,
        nft_enabled: bool = False,
        nft_artwork_url: str | None = None,
        publish: bool = False,
    ) -> Event:
        creator = self._require_user()
        if total_tickets < 0:
            raise CapacityError("Capacity must not be negative")
        parse_ts(date)  # reject unparseable dates early
        row = await self.store.insert("events", {
            "title": title,
            "description": description,
            "date": date,
            "location": location,
            "image_url": image_url,
            "base_price": base_price,
            "total_tickets": total_tickets,
            "tickets_sold": 0,
            "creator_id": creator,
            "is_published": publish,
            "nft_enabled": nft_enabled,
            "nft_artwork_url": nft_artwork_url,
        })
        event = Event.from_row(row)
        log.info("Created event %s (%s, %d tickets)", event.id, title, total_tickets)
        await self.store.log_activity(
            "event_created", f"Created event {title}", event_id=event.id,
        )
        return event

    async def get_event(self, event_id: str) -> Event:
        return await self.inventory.get_event(event_id)

    async def list_events(self, published_only: bool = True) -> list[Event]:
        filters = {"is_published": True} if published_only else None
        rows = await self.store.query("events", filters, order_by="date")
        return [Event.from_row(r) for r in rows]

    async def publish_event(self, event_id: str) -> Event:
        event = await self._require_creator(event_id)
        if event.is_published:
            return event
        row = await self.store.update("events", event_id, {"is_published": True})
        assert row is not None
        await self.store.log_activity(
            "event_published", f"Published event {event.title}", event_id=event_id,
        )
        return Event.from_row(row)

    async def update_event(self, event_id: str, **changes: Any) -> Event:
        """Edit an event the current user created."""
        event = await self._require_creator(event_id)
        unknown = set(changes) - EDITABLE_EVENT_FIELDS
        if unknown:
            raise ValueError(f"Cannot edit event fields: {', '.join(sorted(unknown))}")
        if "date" in changes:
            parse_ts(changes["date"])

        expected: dict[str, Any] = {}
        if "total_tickets" in changes:
            if changes["total_tickets"] < event.tickets_sold:
                raise CapacityError(
                    f"Capacity {changes['total_tickets']} is below {event.tickets_sold} sold"
                )
            expected["tickets_sold"] = event.tickets_sold

        row = await self.store.update_where("events", event_id, changes, expected)
        if row is None:
            raise CapacityError("Tickets were sold while editing; retry")
        await self.store.log_activity(
            "event_updated", f"Updated {', '.join(sorted(changes))}", event_id=event_id,
        )
        return Event.from_row(row)

    # ── Profiles ───────────────────────────────────────────

    async def get_profile(self, user_id: str | None = None) -> Profile | None:
        row = await self.store.get("profiles", user_id or self._require_user())
        return Profile.from_row(row) if row else None

    async def save_profile(
        self,
        display_name: str | None = None,
        wallet_address: str | None = None,
        alt_wallet_address: str | None = None,
    ) -> Profile:
        """Create or update the current user's profile."""
        user = self._require_user()
        for address in (wallet_address, alt_wallet_address):
            if address and address_chain(address) is None:
                raise WalletError(f"Unrecognized wallet address: {address}")

        changes = {
            k: v for k, v in (
                ("display_name", display_name),
                ("wallet_address", wallet_address),
                ("alt_wallet_address", alt_wallet_address),
            ) if v is not None
        }
        if await self.store.get("profiles", user) is None:
            row = await self.store.insert("profiles", {"id": user, **changes})
        else:
            row = await self.store.update("profiles", user, changes)
        assert row is not None
        return Profile.from_row(row)

    # ── Purchase ───────────────────────────────────────────

    async def purchase_ticket(
        self,
        event_id: str,
        ticket_type: str = "general",
        price: float | None = None,
        wallet: WalletCapability | None = None,
    ) -> Ticket:
        """Buy one ticket for the current user.

        Reserves capacity first, then takes payment through ``wallet`` if
        one is given, then records the ticket. If anything after the
        reservation fails the slot is released again.
        """
        buyer = self._require_user()
        event = await self.inventory.get_event(event_id)
        amount = event.base_price if price is None else price

        reservation = await self.inventory.reserve_one(event_id)
        try:
            payment = None
            if wallet is not None and amount > 0:
                payment = await self._collect_payment(wallet, event, amount)
            ticket = await self.tickets.create(reservation, buyer, amount, ticket_type, payment)
        except Exception as exc:
            if self._cfg.compensate_failed_purchases:
                await self.inventory.release(reservation)
                await self.store.log_activity(
                    "purchase_compensated",
                    f"Released slot after failed purchase: {exc}",
                    event_id=event_id,
                )
            else:
                log.error("Purchase failed after reservation on %s; slot kept", event_id)
            raise

        if event.nft_enabled:
            ticket = await self._mint_ticket_nft(ticket, event)

        await self.store.log_activity(
            "purchase",
            f"Ticket {ticket.id} bought by {buyer} for {amount}",
            event_id=event_id,
            ticket_id=ticket.id,
        )
        return ticket

    async def _mint_ticket_nft(self, ticket: Ticket, event: Event) -> Ticket:
        """Mint the ticket NFT to the buyer's wallet.

        Best effort: the purchase stands without it.
        """
        try:
            chain, recipient = select_chain(await self.get_profile(ticket.owner_id))
        except NoWalletError:
            log.info("No wallet for %s; ticket %s not minted", ticket.owner_id, ticket.id)
            return ticket

        metadata = build_ticket_metadata(event, ticket, self._cfg.default_image_url)
        metadata_uri = inline_data_uri(metadata.to_json().encode("utf-8"))
        try:
            receipt = await asyncio.wait_for(
                self.ticket_minter.mint(metadata_uri, chain, recipient),
                self._cfg.mint_timeout,
            )
            minted = await self.tickets.assign_mint_address(ticket.id, receipt.mint_address)
        except Exception as exc:
            log.warning("Ticket NFT mint failed for %s: %s", ticket.id, exc)
            await self.store.log_activity(
                "ticket_mint_failed",
                f"Ticket NFT not minted: {exc}",
                event_id=event.id,
                ticket_id=ticket.id,
            )
            return ticket

        await self.store.log_activity(
            "ticket_minted",
            f"Minted ticket {ticket.id} as {receipt.mint_address} on {receipt.chain}",
            event_id=event.id,
            ticket_id=ticket.id,
        )
        return minted

    async def _collect_payment(
        self, wallet: WalletCapability, event: Event, amount: float,
    ) -> PaymentReceipt:
        if not wallet.is_connected():
            raise WalletError("Wallet not connected")
        organizer = await self.get_profile(event.creator_id)
        try:
            chain, recipient = select_chain(organizer, wallet.chain)
        except NoWalletError:
            raise WalletError(
                f"Organizer has no {wallet.chain.value} wallet to receive payment"
            ) from None
        tx_hash = await wallet.send_transaction(amount, recipient)
        return PaymentReceipt(
            tx_hash=tx_hash,
            chain=chain.value,
            amount=amount,
            sender=wallet.address() or "",
            recipient=recipient,
        )

    # ── Tickets ────────────────────────────────────────────

    async def my_tickets(self) -> list[Ticket]:
        return await self.tickets.list_for_owner(self._require_user())

    async def event_tickets(self, event_id: str) -> list[Ticket]:
        await self._require_creator(event_id)
        return await self.tickets.list_for_event(event_id)

    async def transfer_ticket(self, ticket_id: str, new_owner_id: str) -> Ticket:
        return await self.tickets.transfer(ticket_id, self._require_user(), new_owner_id)

    async def cancel_ticket(self, ticket_id: str) -> Ticket:
        return await self.tickets.cancel(ticket_id, self._require_user())

    # ── Check-in ───────────────────────────────────────────

    async def check_in(self, ticket_id: str, location: str | None = None) -> AttendanceRecord:
        return await self.checkins.check_in(ticket_id, self._require_user(), location)

    async def check_in_qr(
        self, payload: str, event_id: str, location: str | None = None,
    ) -> AttendanceRecord:
        return await self.checkins.check_in_from_qr(
            payload, event_id, self._require_user(), location,
        )

    # ── NFTs ───────────────────────────────────────────────

    async def mint_nft(self, attendance_id: str, chain: Chain | None = None) -> MintResult:
        """Mint (or return) the attendance NFT for a record of the current user."""
        user = self._require_user()
        record = await self.checkins.get_attendance(attendance_id)
        if user != record.attendee_id:
            event = await self.inventory.get_event(record.event_id)
            if user != event.creator_id:
                raise NotOwnerError(f"User {user} cannot mint for {attendance_id}")
        return await self.minting.mint_for_attendance(attendance_id, chain)

    async def my_nfts(self) -> list[AttendanceRecord]:
        rows = await self.store.query(
            "attendance",
            {"attendee_id": self._require_user(), "nft_status": list(NftStatus)},
            order_by="checked_in_at",
            descending=True,
        )
        return [AttendanceRecord.from_row(r) for r in rows]

    async def reconcile(self) -> ReconcileReport:
        """Rebuild missing attendance, apply orphaned mints, expire stale claims."""
        repaired = await self.checkins.repair_missing_attendance()
        report = await self.minting.reconcile()
        report.attendance_repaired = repaired
        return report

    # ── Pricing ────────────────────────────────────────────

    async def suggest_price(self, event_id: str) -> PricingRecommendation:
        event = await self.inventory.get_event(event_id)
        tickets = await self.tickets.list_for_event(event_id)
        factors = pricing.analyze_factors(event, [t.purchase_date for t in tickets])
        recommendation = pricing.recommend(factors)
        log.info(
            "Price suggestion for %s: %.4f (%s, confidence %.2f)",
            event_id, recommendation.suggested_price,
            recommendation.reasoning, recommendation.confidence,
        )
        return recommendation

    async def apply_dynamic_pricing(self, event_id: str) -> tuple[PricingRecommendation, bool]:
        """Adopt the suggested price when the advisor is confident enough."""
        await self._require_creator(event_id)
        recommendation = await self.suggest_price(event_id)
        if not pricing.should_apply(recommendation):
            return recommendation, False
        await self.store.update(
            "events", event_id, {"base_price": recommendation.suggested_price},
        )
        await self.store.log_activity(
            "price_updated",
            f"Price set to {recommendation.suggested_price}: {recommendation.reasoning}",
            event_id=event_id,
        )
        return recommendation, True

    # ── Change feed ────────────────────────────────────────

    def subscribe(self, entity: str, callback: ChangeCallback) -> Callable[[], None]:
        return self.store.subscribe(entity, callback)

    # ── Internals ──────────────────────────────────────────

    def _require_user(self) -> str:
        user = self.identity.current_user_id()
        if not user:
            raise NotAuthenticatedError()
        return user

    async def _require_creator(self, event_id: str) -> Event:
        user = self._require_user()
        event = await self.inventory.get_event(event_id)
        if event.creator_id != user:
            raise NotOwnerError(f"User {user} did not create event {event_id}")
        return event

    async def _enqueue_mint(self, record: AttendanceRecord) -> None:
        if record.nft_status == NftStatus.PENDING:
            self._mint_queue.put_nowait(record.id)

    async def _mint_worker(self) -> None:
        """Mint queued check-ins; sweep pending records when idle."""
        while self._running:
            try:
                attendance_id = await asyncio.wait_for(
                    self._mint_queue.get(), timeout=self._cfg.mint_worker_interval,
                )
            except asyncio.TimeoutError:
                try:
                    await self.minting.mint_pending()
                except Exception as exc:
                    log.error("Pending mint sweep failed: %s", exc, exc_info=True)
                continue

            try:
                await self.minting.mint_for_attendance(attendance_id)
            except MintInProgressError:
                log.debug("Mint for %s already in progress", attendance_id)
            except AttendmintError as exc:
                log.warning("Auto-mint failed for %s: %s", attendance_id, exc)
            except Exception as exc:
                log.error("Auto-mint error for %s: %s", attendance_id, exc, exc_info=True)
            finally:
                self._mint_queue.task_done()


def _configured_minter(cfg: EngineConfig) -> MintCapability:
    if cfg.mint_endpoint:
        return HttpMintCapability(cfg.mint_endpoint, cfg.mint_api_key, cfg.mint_timeout)
    return SimulatedMinter()


async def run_engine(cfg: EngineConfig) -> None:
    """Run the mint worker until interrupted."""
    engine = TicketingEngine(cfg)
    stopped = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stopped.set)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass

    await engine.start()
    log.info("attendmint worker running (mint mode: %s)", cfg.mint_mode.value)
    try:
        await engine.reconcile()
        await stopped.wait()
    finally:
        await engine.stop()
        log.info("Engine shut down cleanly")
