"""
Voyagez CLI - Operate the booking lifecycle from the command line.

Operations:
    voyagez serve                 # Run the booking API (uvicorn)
    voyagez sweep                 # Run the expiry sweeper until stopped
    voyagez sweep --once          # Expire one batch and exit
    voyagez status                # Storage health and draft/booking counts
    voyagez status --draft ID     # Confirmation state of one draft
    voyagez bookings              # Most recent confirmed bookings
    voyagez poll ID --url URL     # Poll a running API until the draft settles

Settings come from VOYAGEZ_* environment variables (or a .env file);
``--storage-url`` overrides the storage backend.
"""

import asyncio
from dataclasses import replace

import click
import httpx
from rich.console import Console
from rich.table import Table

from voyagez.core.config import BookingConfig
from voyagez.core.exceptions import DraftNotFoundError, MissingDependencyError
from voyagez.poller import PollOutcome, StatusPoller, http_fetcher
from voyagez.storage import create_storage_manager
from voyagez.sweeper import ExpirySweeper

console = Console()

_STATUS_STYLES = {
    "collecting": "cyan",
    "pending": "yellow",
    "confirmed": "green",
    "cancelled": "red",
    "expired": "dim",
}


class OrderedGroup(click.Group):
    """Click Group that lists commands in the order they were added."""

    def list_commands(self, ctx):
        return list(self.commands.keys())


def _load_config(storage_url: str | None) -> BookingConfig:
    config = BookingConfig.from_env()
    if storage_url:
        config = config.with_storage(storage_url)
    return config


storage_option = click.option(
    "--storage-url",
    envvar="VOYAGEZ_STORAGE_URL",
    help="Storage connection URL (memory://, sqlite:///path.db, postgresql://...)",
)


@click.group(cls=OrderedGroup)
@click.version_option(version="0.1.0", prog_name="voyagez")
def cli():
    """
    Voyagez - Travel booking lifecycle with BNPL payment confirmation.

    \b
    Commands:
      serve       Run the booking API
      sweep       Expire abandoned drafts
      status      Storage health and draft counts
      bookings    Recent confirmed bookings
      poll        Wait for a draft to settle
    """


# ============================================================================
# voyagez serve
# ============================================================================


@cli.command("serve")
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", default=8000, show_default=True, type=int)
@click.option("--prefix", default="", help="URL prefix for the booking endpoints")
@click.option("--metrics-port", type=int, help="Expose Prometheus metrics on this port")
@click.option("--json-logs", is_flag=True, help="Log as JSON lines with booking context")
@storage_option
def serve_cmd(host, port, prefix, metrics_port, json_logs, storage_url):
    """Run the booking API."""
    try:
        import uvicorn
    except ImportError as e:
        raise MissingDependencyError("uvicorn", "voyagez serve") from e

    from voyagez.core.logger import configure_default_logging
    from voyagez.integrations._base import BookingService
    from voyagez.integrations.fastapi import create_booking_app
    from voyagez.monitoring import setup_json_logging, start_metrics_server

    if json_logs:
        setup_json_logging()
    else:
        configure_default_logging()

    config = _load_config(storage_url)
    if metrics_port:
        start_metrics_server(metrics_port)

    service = BookingService.from_config(config, url_prefix=prefix)
    console.print(
        f"Serving bookings on [bold cyan]http://{host}:{port}{prefix}[/bold cyan] "
        f"({service.storage.backend_name} storage, {service.provider.name} provider)"
    )
    uvicorn.run(create_booking_app(service, url_prefix=prefix), host=host, port=port)


# ============================================================================
# voyagez sweep
# ============================================================================


@cli.command("sweep")
@click.option("--once", is_flag=True, help="Expire one batch and exit")
@click.option("--hold-window", type=float, help="Hold window in seconds")
@storage_option
def sweep_cmd(once, hold_window, storage_url):
    """Expire drafts that outlived the hold window."""
    config = _load_config(storage_url)
    if hold_window:
        config = replace(config, hold_window_seconds=hold_window)

    if not once:
        from voyagez.sweeper import main

        asyncio.run(main(config))
        return

    async def _run():
        async with create_storage_manager(config.storage_url) as storage:
            sweeper = ExpirySweeper(storage, provider=None, config=config)
            return await sweeper.sweep_once()

    expired = asyncio.run(_run())
    console.print(f"Expired [bold]{expired}[/bold] draft(s)")


# ============================================================================
# voyagez status
# ============================================================================


@cli.command("status")
@click.option("--draft", "draft_id", help="Show the confirmation state of one draft")
@storage_option
def status_cmd(draft_id, storage_url):
    """Storage health, draft counts per status, bookings and applied signals."""
    config = _load_config(storage_url)

    if draft_id:
        asyncio.run(_show_draft(config, draft_id))
        return

    async def _collect():
        async with create_storage_manager(config.storage_url) as storage:
            return await storage.health_check(), await storage.get_statistics()

    health, stats = asyncio.run(_collect())

    table = Table(title="Booking Storage")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    icon = "[green]●[/green]" if health.is_healthy else "[red]○[/red]"
    table.add_row("Health", f"{icon} {health.status.value} ({health.latency_ms:.1f} ms)")
    for status, count in sorted(stats.drafts_by_status.items()):
        table.add_row(f"Drafts {status}", str(count))
    table.add_row("Drafts total", str(stats.total_drafts))
    table.add_row("Confirmed bookings", str(stats.total_bookings))
    table.add_row("Signals applied", str(stats.signals_recorded))
    console.print(table)


async def _show_draft(config: BookingConfig, draft_id: str) -> None:
    from voyagez.reconciler import ConfirmationReconciler

    async with create_storage_manager(config.storage_url) as storage:
        try:
            result = await ConfirmationReconciler(storage, config=config).poll_status(draft_id)
        except DraftNotFoundError as e:
            raise click.ClickException(str(e)) from e

    style = _STATUS_STYLES.get(result.public_status, "white")
    table = Table(title=f"Draft {draft_id}")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Status", f"[{style}]{result.public_status}[/{style}]")
    table.add_row("Booking", result.booking_id or "-")
    table.add_row("Reference", result.booking_reference or "-")
    table.add_row("Failure reason", result.failure_reason or "-")
    console.print(table)


# ============================================================================
# voyagez bookings
# ============================================================================


@cli.command("bookings")
@click.option("--limit", default=20, show_default=True, type=int)
@storage_option
def bookings_cmd(limit, storage_url):
    """List the most recent confirmed bookings."""
    config = _load_config(storage_url)

    async def _list():
        async with create_storage_manager(config.storage_url) as storage:
            return await storage.bookings.list_recent(limit)

    bookings = asyncio.run(_list())
    if not bookings:
        console.print("[dim]No bookings yet[/dim]")
        return

    table = Table(title="Recent Bookings")
    table.add_column("Reference", style="bold")
    table.add_column("Package")
    table.add_column("Lead traveler")
    table.add_column("Dates")
    table.add_column("Travelers", justify="right")
    table.add_column("Total", justify="right")
    table.add_column("Payment")
    table.add_column("Created")
    for booking in bookings:
        dates = booking.selection.date_range
        table.add_row(
            booking.booking_reference,
            booking.selection.package_id,
            booking.travelers[0].full_name if booking.travelers else "-",
            f"{dates.start:%Y-%m-%d} → {dates.end:%Y-%m-%d}",
            str(len(booking.travelers)),
            f"{booking.total_price} {booking.currency}",
            booking.payment_status.value,
            f"{booking.created_at:%Y-%m-%d %H:%M}",
        )
    console.print(table)


# ============================================================================
# voyagez poll
# ============================================================================


@cli.command("poll")
@click.argument("draft_id")
@click.option("--url", default="http://127.0.0.1:8000", show_default=True, help="API base URL")
@click.option("--prefix", default="", help="URL prefix of the booking endpoints")
@click.option("--attempts", type=int, help="Maximum polls (default: VOYAGEZ_POLL_ATTEMPTS)")
@click.option("--interval", type=float, help="Seconds between polls")
@click.option("--backoff", default=1.0, show_default=True, type=float)
def poll_cmd(draft_id, url, prefix, attempts, interval, backoff):
    """Poll a running API until DRAFT_ID is confirmed, cancelled or expired."""
    config = BookingConfig.from_env()

    async def _poll():
        async with httpx.AsyncClient(base_url=url, timeout=config.provider_timeout_seconds) as client:
            poller = StatusPoller(
                http_fetcher(client, prefix),
                attempts=attempts or config.poll_attempts,
                interval=interval if interval is not None else config.poll_interval_seconds,
                backoff=backoff,
            )
            return await poller.wait(draft_id)

    try:
        report = asyncio.run(_poll())
    except (DraftNotFoundError, ValueError, httpx.HTTPError) as e:
        raise click.ClickException(str(e)) from e

    if report.outcome is PollOutcome.CONFIRMED:
        console.print(
            f"[green]Confirmed[/green] booking {report.last.booking_id} "
            f"({report.last.booking_reference or 'no reference'})"
        )
    elif report.outcome is PollOutcome.DELAYED:
        console.print(
            f"[yellow]Still pending[/yellow] after {report.attempts} polls; "
            "confirmation may arrive later"
        )
    else:
        reason = f": {report.last.failure_reason}" if report.last.failure_reason else ""
        console.print(f"[red]{report.outcome.value.capitalize()}[/red]{reason}")


if __name__ == "__main__":
    cli()
