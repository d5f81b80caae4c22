"""Command line entry point for tremote."""

from __future__ import annotations

import asyncio
import json
from typing import Any

import click
from rich.console import Console
from rich.prompt import Confirm
from rich.table import Table

from tremote import __version__
from tremote.cli.trust_commands import trust
from tremote.config.config import ConfigManager, init_config
from tremote.i18n import _
from tremote.models import LogLevel, ServerConfig
from tremote.observability.audit import AuditLogger
from tremote.observability.masking import mask_session_token
from tremote.probe.connection_probe import ConnectionProbe, ProbeRegistry, ProbeRequest
from tremote.rpc.protocol import TransmissionHandshakeResult
from tremote.security.credentials import EncryptedFileCredentialStore, ServerCredentials
from tremote.security.ssl_context import SSLContextBuilder, SystemCertificateValidator
from tremote.security.trust_evaluator import TrustEvaluator
from tremote.security.trust_models import (
    ChallengeReason,
    TrustDecision,
    format_fingerprint,
)
from tremote.security.trust_prompt import TrustPrompt, TrustPromptCoordinator
from tremote.security.trust_store import FileTrustStore
from tremote.utils.exceptions import ConfigurationError, TremoteError
from tremote.utils.logging_config import get_logger, setup_logging

logger = get_logger(__name__)
console = Console()

EXIT_FAILED = 1
EXIT_INCOMPATIBLE = 2

_VERBOSITY_LEVELS = {0: LogLevel.WARNING, 1: LogLevel.INFO}


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    help=_("Configuration file path"),
)
@click.option(
    "--verbose",
    "-v",
    count=True,
    help=_("Increase verbosity (-v: info, -vv: debug)"),
)
@click.version_option(__version__, prog_name="tremote")
@click.pass_context
def cli(ctx: click.Context, config: str | None, verbose: int) -> None:
    """Tremote - Transmission remote connection and trust manager."""
    ctx.ensure_object(dict)
    try:
        config_manager = init_config(config)
    except ConfigurationError as e:
        raise click.ClickException(e.message) from e

    # Verbosity only affects console output, the stored config keeps its level
    observability = config_manager.config.observability.model_copy(
        update={"log_level": _VERBOSITY_LEVELS.get(verbose, LogLevel.DEBUG)}
    )
    setup_logging(observability)
    ctx.obj["config_manager"] = config_manager


def _describe_prompt(prompt: TrustPrompt) -> Table:
    challenge = prompt.challenge
    certificate = challenge.certificate
    table = Table(title=_("Untrusted certificate"), show_header=False)
    table.add_column(_("Field"), style="cyan")
    table.add_column(_("Value"))
    table.add_row(_("Server"), challenge.identity.endpoint)
    table.add_row(_("Common Name"), certificate.common_name or "-")
    table.add_row(_("Organization"), certificate.organization or "-")
    if certificate.not_valid_after is not None:
        table.add_row(_("Valid Until"), certificate.not_valid_after.strftime("%Y-%m-%d"))
    table.add_row(_("SHA-256"), format_fingerprint(certificate.fingerprint_hex))
    if challenge.reason is ChallengeReason.FINGERPRINT_MISMATCH:
        table.add_row(
            _("[red]Previously trusted[/red]"),
            format_fingerprint(challenge.previous_fingerprint or ""),
        )
    return table


async def _answer_prompts(coordinator: TrustPromptCoordinator, assume_yes: bool) -> None:
    async for prompt in coordinator.prompts():
        console.print(_describe_prompt(prompt))
        if prompt.challenge.reason is ChallengeReason.FINGERPRINT_MISMATCH:
            console.print(
                _("[red]The certificate differs from the one you trusted before.[/red]")
            )
        if assume_yes:
            accepted = True
        else:
            accepted = await asyncio.to_thread(
                Confirm.ask, _("Trust this certificate?"), console=console, default=False
            )
        decision = TrustDecision.ACCEPTED if accepted else TrustDecision.REJECTED
        coordinator.resolve(decision, prompt.prompt_id)


async def _run_probe(
    config_manager: ConfigManager,
    server: ServerConfig,
    password: str | None,
    assume_yes: bool,
    save_password: bool,
) -> TransmissionHandshakeResult:
    config = config_manager.config
    audit = AuditLogger()
    builder = SSLContextBuilder(config.trust)
    evaluator = TrustEvaluator(
        FileTrustStore(config.trust.trust_store_path),
        SystemCertificateValidator(builder, config.trust.inspect_timeout),
        audit=audit,
    )
    credentials = EncryptedFileCredentialStore(config.trust.credentials_path, audit=audit)
    probe = ConnectionProbe(
        evaluator,
        credentials,
        rpc_config=config.rpc,
        trust_config=config.trust,
        audit=audit,
    )
    registry = ProbeRegistry(probe)
    coordinator = TrustPromptCoordinator()

    prompt_task = asyncio.create_task(_answer_prompts(coordinator, assume_yes))
    try:
        handle = registry.start(ProbeRequest(server, password), coordinator.make_handler())
        result = await handle.result()
    finally:
        prompt_task.cancel()
        await registry.shutdown()

    key = server.credentials_key
    if save_password and key is not None and password is not None:
        await credentials.save(ServerCredentials(key, password))
    return result


def _result_payload(server: ServerConfig, result: TransmissionHandshakeResult) -> dict[str, Any]:
    return {
        "server": server.base_url,
        "rpc_version": result.rpc_version,
        "minimum_supported_rpc_version": result.minimum_supported_rpc_version,
        "server_version": result.server_version_description,
        "is_compatible": result.is_compatible,
        "session_token": mask_session_token(result.session_token)
        if result.session_token
        else None,
    }


def _print_result(server: ServerConfig, result: TransmissionHandshakeResult) -> None:
    table = Table(title=_("Connection Probe"), show_header=True)
    table.add_column(_("Setting"), style="cyan")
    table.add_column(_("Value"), style="green")
    payload = _result_payload(server, result)
    table.add_row(_("Server"), payload["server"])
    table.add_row(_("Server Version"), payload["server_version"] or "-")
    table.add_row(_("RPC Version"), str(payload["rpc_version"]))
    table.add_row(_("Minimum RPC Version"), str(payload["minimum_supported_rpc_version"]))
    table.add_row(_("Compatible"), str(payload["is_compatible"]))
    table.add_row(_("Session"), payload["session_token"] or "-")
    console.print(table)


@cli.command("probe")
@click.argument("host")
@click.option("--port", "-p", type=click.IntRange(1, 65535), default=9091, show_default=True)
@click.option("--path", default=None, help=_("RPC path (default from configuration)"))
@click.option("--https", "secure", is_flag=True, help=_("Connect over HTTPS"))
@click.option(
    "--pin",
    is_flag=True,
    help=_("Only trust certificates you accepted, skipping system CA validation"),
)
@click.option("--user", "-u", "username", default=None, help=_("RPC username"))
@click.option("--password", default=None, help=_("RPC password"))
@click.option("--ask-password", is_flag=True, help=_("Prompt for the RPC password"))
@click.option("--save-password", is_flag=True, help=_("Store the password after success"))
@click.option("--yes", "-y", "assume_yes", is_flag=True, help=_("Accept unknown certificates"))
@click.option("--json", "as_json", is_flag=True, help=_("Print the result as JSON"))
@click.pass_context
def probe(
    ctx: click.Context,
    host: str,
    port: int,
    path: str | None,
    secure: bool,
    pin: bool,
    username: str | None,
    password: str | None,
    ask_password: bool,
    save_password: bool,
    assume_yes: bool,
    as_json: bool,
) -> None:
    """Check that the daemon at HOST is reachable and compatible."""
    config_manager: ConfigManager = ctx.obj["config_manager"]
    if ask_password and password is None:
        password = click.prompt(_("Password"), hide_input=True)

    server = ServerConfig(
        name=host,
        host=host,
        port=port,
        path=path or config_manager.config.rpc.rpc_path,
        is_secure=secure,
        pin_certificate=pin,
        username=username,
    )

    try:
        result = asyncio.run(
            _run_probe(config_manager, server, password, assume_yes, save_password)
        )
    except TremoteError as e:
        logger.debug("Probe failed: %s", e)
        if as_json:
            click.echo(json.dumps({"server": server.base_url, "error": e.user_message()}))
        else:
            console.print(f"[red]{e.user_message()}[/red]")
        ctx.exit(EXIT_FAILED)

    if as_json:
        click.echo(json.dumps(_result_payload(server, result)))
    else:
        _print_result(server, result)

    if not result.is_compatible:
        if not as_json:
            console.print(
                _("[yellow]This server's RPC version is not supported.[/yellow]")
            )
        ctx.exit(EXIT_INCOMPATIBLE)


cli.add_command(trust)


def main() -> None:
    """Main entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
