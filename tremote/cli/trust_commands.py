"""CLI commands for stored certificate trust."""

from __future__ import annotations

from datetime import datetime

import click
from rich.console import Console
from rich.table import Table

from tremote.i18n import _
from tremote.observability.audit import AuditLogger
from tremote.security.trust_models import ServerIdentity, format_fingerprint
from tremote.security.trust_store import FileTrustStore
from tremote.utils.exceptions import TrustStoreError
from tremote.utils.logging_config import get_logger

logger = get_logger(__name__)
console = Console()


def _trust_store(ctx: click.Context) -> FileTrustStore:
    config_manager = ctx.obj["config_manager"]
    return FileTrustStore(config_manager.config.trust.trust_store_path)


@click.group("trust")
def trust() -> None:
    """Manage trusted server certificates."""


@trust.command("list")
@click.pass_context
def trust_list(ctx: click.Context) -> None:
    """List stored certificate fingerprints."""
    store = _trust_store(ctx)
    try:
        entries = store.list_entries()
    except TrustStoreError as e:
        raise click.ClickException(e.message) from e

    if not entries:
        console.print(_("[yellow]No trusted certificates stored[/yellow]"))
        return

    table = Table(title=_("Trusted Certificates"), show_header=True)
    table.add_column(_("Server"), style="cyan")
    table.add_column(_("Common Name"))
    table.add_column(_("SHA-256 Fingerprint"), style="green")
    table.add_column(_("Stored"))

    for identity, entry in sorted(entries.items(), key=lambda item: item[0].storage_key):
        stored = (
            datetime.fromtimestamp(entry.stored_at).strftime("%Y-%m-%d %H:%M")
            if entry.stored_at
            else "-"
        )
        table.add_row(
            identity.endpoint,
            entry.common_name or "-",
            format_fingerprint(entry.fingerprint),
            stored,
        )

    console.print(table)


@trust.command("forget")
@click.argument("host")
@click.argument("port", type=click.IntRange(1, 65535))
@click.option("--https/--http", "secure", default=True, help=_("Scheme of the entry"))
@click.pass_context
def trust_forget(ctx: click.Context, host: str, port: int, secure: bool) -> None:
    """Remove the stored certificate for HOST PORT."""
    store = _trust_store(ctx)
    identity = ServerIdentity(host, port, secure)
    try:
        removed = store.remove(identity)
    except TrustStoreError as e:
        raise click.ClickException(e.message) from e

    if not removed:
        console.print(
            _("[yellow]No stored certificate for {endpoint}[/yellow]").format(
                endpoint=identity.endpoint
            )
        )
        ctx.exit(1)

    AuditLogger().trust_deleted(identity)
    console.print(
        _("[green]Removed stored certificate for {endpoint}[/green]").format(
            endpoint=identity.endpoint
        )
    )
