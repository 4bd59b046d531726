"""CLI entry point for attendmint."""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import Any, Awaitable, Callable

import click

from attendmint.config import load_config
from attendmint.engine import TicketingEngine, run_engine
from attendmint.errors import AttendmintError
from attendmint.interfaces.identity import StaticIdentity
from attendmint.models.config import MintMode
from attendmint.models.entities import AttendanceRecord, Chain, Event, Ticket
from attendmint.services.checkin import qr_payload


def _run(ctx: click.Context, fn: Callable[[TicketingEngine], Awaitable[Any]]) -> Any:
    """Run ``fn`` against an engine acting as the --user identity."""
    cfg = load_config(ctx.obj["config_path"])

    async def _go():
        engine = TicketingEngine(cfg, StaticIdentity(ctx.obj["user"]))
        await engine.start()
        try:
            return await fn(engine)
        finally:
            await engine.stop()

    try:
        return asyncio.run(_go())
    except AttendmintError as exc:
        click.echo(f"Error: {exc.message} ({exc.code})", err=True)
        sys.exit(1)


def _echo_event(event: Event) -> None:
    click.echo(f"Event:      {event.id}")
    click.echo(f"  Title:    {event.title}")
    click.echo(f"  Date:     {event.date}")
    click.echo(f"  Location: {event.location}")
    click.echo(f"  Price:    {event.base_price}")
    click.echo(f"  Sold:     {event.tickets_sold}/{event.total_tickets}")
    click.echo(f"  Status:   {'published' if event.is_published else 'draft'}")
    click.echo(f"  NFTs:     {'enabled' if event.nft_enabled else 'disabled'}")


def _echo_ticket(ticket: Ticket) -> None:
    click.echo(
        f"{ticket.id}  event={ticket.event_id}  {ticket.status.value:<11}"
        f"  {ticket.ticket_type}  {ticket.purchase_price}"
    )


def _echo_attendance(record: AttendanceRecord) -> None:
    status = record.nft_status.value if record.nft_status else "n/a"
    click.echo(f"Attendance: {record.id}")
    click.echo(f"  Ticket:   {record.ticket_id}")
    click.echo(f"  At:       {record.checked_in_at}")
    click.echo(f"  NFT:      {status}")
    if record.nft_mint_address:
        click.echo(f"  Mint:     {record.nft_mint_address} ({record.nft_chain})")
    if record.nft_error:
        click.echo(f"  Error:    {record.nft_error}")


@click.group()
@click.option("-c", "--config", "config_path", default=None, help="Path to config TOML file")
@click.option("-u", "--user", envvar="ATTENDMINT_USER", default=None, help="Acting user id")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, config_path: str | None, user: str | None, verbose: bool) -> None:
    """attendmint - ticket purchase, check-in and attendance NFTs."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["user"] = user
    ctx.obj["verbose"] = verbose

    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


# ── Worker ─────────────────────────────────────────────


@cli.command()
@click.pass_context
def serve(ctx: click.Context) -> None:
    """Run the auto-mint worker until interrupted."""
    cfg = load_config(ctx.obj["config_path"])
    cfg.mint_mode = MintMode.AUTO
    click.echo(f"Starting attendmint worker (db: {cfg.db_path})")
    asyncio.run(run_engine(cfg))


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show engine configuration."""
    cfg = load_config(ctx.obj["config_path"])
    click.echo(f"Mint mode:  {cfg.mint_mode.value}")
    click.echo(f"DB path:    {cfg.db_path}")
    click.echo(f"IPFS API:   {cfg.ipfs_api_url}")
    click.echo(f"Gateway:    {cfg.ipfs_gateway_url}")
    click.echo(f"Minter:     {cfg.mint_endpoint or '(simulated)'}")
    click.echo(f"Timezone:   {cfg.timezone}")


@cli.command()
@click.option("--limit", type=int, default=20, help="Entries to show")
@click.pass_context
def activity(ctx: click.Context, limit: int) -> None:
    """Show recent activity."""

    async def _activity(engine: TicketingEngine) -> None:
        for entry in await engine.store.get_recent_activity(limit):
            click.echo(f"{entry.created_at}  {entry.event_type:<22} {entry.message}")

    _run(ctx, _activity)


# ── Events ─────────────────────────────────────────────


@cli.group()
def event() -> None:
    """Create and manage events."""


@event.command("create")
@click.argument("title")
@click.option("--date", "date", required=True, help="Start time, ISO 8601")
@click.option("--location", required=True)
@click.option("--capacity", type=int, required=True, help="Total tickets")
@click.option("--price", type=float, default=0.0)
@click.option("--description", default="")
@click.option("--image-url", default=None)
@click.option("--nft/--no-nft", default=False, help="Issue attendance NFTs")
@click.option("--artwork-url", default=None, help="NFT artwork (defaults to the image)")
@click.option("--publish", is_flag=True, help="Publish immediately")
@click.pass_context
def event_create(
    ctx: click.Context, title: str, date: str, location: str, capacity: int,
    price: float, description: str, image_url: str | None, nft: bool,
    artwork_url: str | None, publish: bool,
) -> None:
    """Create an event owned by the acting user."""

    async def _create(engine: TicketingEngine) -> None:
        created = await engine.create_event(
            title, date, location, capacity,
            base_price=price, description=description, image_url=image_url,
            nft_enabled=nft, nft_artwork_url=artwork_url, publish=publish,
        )
        click.echo(f"Created event {created.id}")

    _run(ctx, _create)


@event.command("publish")
@click.argument("event_id")
@click.pass_context
def event_publish(ctx: click.Context, event_id: str) -> None:
    """Publish an event so tickets can be bought."""

    async def _publish(engine: TicketingEngine) -> None:
        await engine.publish_event(event_id)
        click.echo(f"Published event {event_id}")

    _run(ctx, _publish)


@event.command("show")
@click.argument("event_id")
@click.pass_context
def event_show(ctx: click.Context, event_id: str) -> None:
    """Show an event and its inventory."""

    async def _show(engine: TicketingEngine) -> None:
        _echo_event(await engine.get_event(event_id))

    _run(ctx, _show)


@event.command("list")
@click.option("--all", "show_all", is_flag=True, help="Include unpublished events")
@click.pass_context
def event_list(ctx: click.Context, show_all: bool) -> None:
    """List events."""

    async def _list(engine: TicketingEngine) -> None:
        events = await engine.list_events(published_only=not show_all)
        if not events:
            click.echo("No events.")
        for e in events:
            click.echo(f"{e.id}  {e.date}  {e.tickets_sold}/{e.total_tickets}  {e.title}")

    _run(ctx, _list)


@event.command("price")
@click.argument("event_id")
@click.option("--apply", "apply_price", is_flag=True, help="Adopt the price if confident")
@click.pass_context
def event_price(ctx: click.Context, event_id: str, apply_price: bool) -> None:
    """Suggest a dynamic ticket price."""

    async def _price(engine: TicketingEngine) -> None:
        if apply_price:
            rec, applied = await engine.apply_dynamic_pricing(event_id)
        else:
            rec, applied = await engine.suggest_price(event_id), False
        click.echo(f"Suggested:  {rec.suggested_price}")
        click.echo(f"Confidence: {rec.confidence:.2f}")
        click.echo(f"Demand:     {rec.demand_level}")
        click.echo(f"Reasoning:  {rec.reasoning}")
        if apply_price:
            click.echo("Applied." if applied else "Not applied (confidence too low).")

    _run(ctx, _price)


# ── Profiles & tickets ─────────────────────────────────


@cli.command()
@click.option("--name", default=None, help="Display name")
@click.option("--wallet", default=None, help="Primary (EVM) wallet address")
@click.option("--alt-wallet", default=None, help="Alternate (Solana) wallet address")
@click.pass_context
def profile(ctx: click.Context, name: str | None, wallet: str | None, alt_wallet: str | None) -> None:
    """Create or update the acting user's profile."""

    async def _profile(engine: TicketingEngine) -> None:
        p = await engine.save_profile(name, wallet, alt_wallet)
        click.echo(f"Profile:    {p.id}")
        click.echo(f"  Name:     {p.display_name or '(none)'}")
        click.echo(f"  Wallet:   {p.wallet_address or '(none)'}")
        click.echo(f"  Alt:      {p.alt_wallet_address or '(none)'}")
        click.echo(f"  Attended: {p.events_attended}  Points: {p.loyalty_points}")

    _run(ctx, _profile)


@cli.command()
@click.argument("event_id")
@click.option("--type", "ticket_type", default="general", help="Ticket type")
@click.option("--price", type=float, default=None, help="Override the event price")
@click.pass_context
def buy(ctx: click.Context, event_id: str, ticket_type: str, price: float | None) -> None:
    """Buy one ticket for an event."""

    async def _buy(engine: TicketingEngine) -> None:
        ticket = await engine.purchase_ticket(event_id, ticket_type, price)
        click.echo(f"Purchased ticket {ticket.id}")
        if ticket.mint_address:
            click.echo(f"Ticket NFT: {ticket.mint_address}")
        click.echo(f"QR payload: {qr_payload(ticket)}")

    _run(ctx, _buy)


@cli.command()
@click.pass_context
def tickets(ctx: click.Context) -> None:
    """List the acting user's tickets."""

    async def _tickets(engine: TicketingEngine) -> None:
        owned = await engine.my_tickets()
        if not owned:
            click.echo("No tickets.")
        for t in owned:
            _echo_ticket(t)

    _run(ctx, _tickets)


# ── Check-in & NFTs ────────────────────────────────────


@cli.command("check-in")
@click.argument("ticket_id")
@click.option("--location", default=None, help="Entrance or gate")
@click.pass_context
def check_in(ctx: click.Context, ticket_id: str, location: str | None) -> None:
    """Check in a ticket (owner or organizer)."""

    async def _check_in(engine: TicketingEngine) -> None:
        record = await engine.check_in(ticket_id, location)
        if engine.config.mint_mode == MintMode.AUTO:
            await engine.wait_for_mints()
            record = await engine.checkins.get_attendance(record.id)
        _echo_attendance(record)

    _run(ctx, _check_in)


@cli.command()
@click.argument("event_id")
@click.argument("payload")
@click.option("--location", default=None, help="Entrance or gate")
@click.pass_context
def scan(ctx: click.Context, event_id: str, payload: str, location: str | None) -> None:
    """Check in from a scanned QR payload at an event's door."""

    async def _scan(engine: TicketingEngine) -> None:
        _echo_attendance(await engine.check_in_qr(payload, event_id, location))

    _run(ctx, _scan)


@cli.command()
@click.argument("attendance_id")
@click.option(
    "--chain", type=click.Choice([c.value for c in Chain]), default=None,
    help="Target chain (default: from wallet address)",
)
@click.pass_context
def mint(ctx: click.Context, attendance_id: str, chain: str | None) -> None:
    """Mint the attendance NFT for a check-in."""

    async def _mint(engine: TicketingEngine) -> None:
        result = await engine.mint_nft(attendance_id, Chain(chain) if chain else None)
        if result.already_minted:
            click.echo("Already minted.")
        click.echo(f"Mint address: {result.mint_address}")
        click.echo(f"Chain:        {result.chain}")
        click.echo(f"Metadata:     {result.metadata_uri[:80]}")
        click.echo(f"Marketplace:  {result.marketplace_url}")

    _run(ctx, _mint)


@cli.command()
@click.pass_context
def nfts(ctx: click.Context) -> None:
    """List the acting user's attendance NFTs."""

    async def _nfts(engine: TicketingEngine) -> None:
        records = await engine.my_nfts()
        if not records:
            click.echo("No attendance NFTs.")
        for r in records:
            status = r.nft_status.value if r.nft_status else "n/a"
            click.echo(f"{r.id}  event={r.event_id}  {status:<8} {r.nft_mint_address or ''}")

    _run(ctx, _nfts)


@cli.command()
@click.pass_context
def reconcile(ctx: click.Context) -> None:
    """Repair attendance and mint state after a crash."""

    async def _reconcile(engine: TicketingEngine) -> None:
        report = await engine.reconcile()
        click.echo(f"Attendance rebuilt: {report.attendance_repaired}")
        click.echo(f"Receipts applied:   {report.receipts_applied}")
        click.echo(f"Stale claims:       {report.stale_claims_failed}")

    _run(ctx, _reconcile)


if __name__ == "__main__":
    cli()
